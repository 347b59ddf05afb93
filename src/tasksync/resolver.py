"""Blocked-state computation and the ``blocked`` label transitions."""

from __future__ import annotations

from typing import Iterable

from tasksync import log
from tasksync.errors import TrackerError, classify_error
from tasksync.retry import RetryPolicy
from tasksync.tracker.base import Issue, TrackerClient
from tasksync.tracker.body import BLOCKED_LABEL, parse_dependency_numbers


class BlockedStateResolver:
    """Decides whether an issue is blocked and keeps its label in step.

    An issue is blocked while any of its dependency issues is open. When a
    dependency cannot be fetched the resolver fails closed: the issue is
    reported as not blocked rather than stuck behind a stale label.
    """

    def __init__(self, client: TrackerClient, retry: RetryPolicy | None = None) -> None:
        self.client = client
        self.retry = retry or RetryPolicy()

    def dependency_numbers(self, issue: Issue) -> list[int]:
        return parse_dependency_numbers(issue.body)

    def is_blocked(self, dependency_numbers: Iterable[int]) -> bool:
        for number in dependency_numbers:
            try:
                dep = self.retry(lambda n=number: self.client.get_issue(n), f"get dependency #{number}")
            except Exception as exc:
                log.error(
                    f"Cannot read dependency #{number}; treating as unblocked: {exc}",
                    category=classify_error(exc).type,
                )
                return False
            if dep.is_open:
                return True
        return False

    def _remove_blocked(self, number: int) -> None:
        try:
            self.client.remove_label(number, BLOCKED_LABEL)
        except TrackerError as exc:
            if exc.status != 404:
                raise
            log.debug(f"#{number}: '{BLOCKED_LABEL}' already removed")

    def apply_blocked_label(self, issue: Issue, blocked: bool) -> str | None:
        """Add or remove ``blocked`` on *issue*; return ``added``, ``removed`` or None."""
        labelled = issue.has_label(BLOCKED_LABEL)
        if blocked and not labelled:
            self.retry(lambda: self.client.add_labels(issue.number, [BLOCKED_LABEL]), f"label #{issue.number} blocked")
            issue.labels.append(BLOCKED_LABEL)
            log.info(f"#{issue.number} is blocked")
            return "added"
        if not blocked and labelled:
            self.retry(lambda: self._remove_blocked(issue.number), f"unblock #{issue.number}")
            issue.labels.remove(BLOCKED_LABEL)
            log.info(f"#{issue.number} is unblocked")
            return "removed"
        return None

    def update_blocked_status(self, issue_number: int) -> str | None:
        issue = self.retry(lambda: self.client.get_issue(issue_number), f"get issue #{issue_number}")
        blocked = self.is_blocked(self.dependency_numbers(issue))
        return self.apply_blocked_label(issue, blocked)

    def resolve_dependents(self, closed_number: int, issues: list[Issue] | None = None) -> list[int]:
        """Re-evaluate every open issue that depends on *closed_number* (one hop)."""
        if issues is None:
            issues = self.retry(self.client.list_issues, "list issues")
        dependents = [
            issue.number
            for issue in issues
            if issue.is_open and closed_number in self.dependency_numbers(issue)
        ]
        log.info(f"#{closed_number}: {len(dependents)} dependent issue(s) to re-evaluate")

        for number in dependents:
            try:
                self.update_blocked_status(number)
            except Exception as exc:
                log.error(f"Failed to update blocked status of #{number}: {exc}", category=classify_error(exc).type)
        return dependents
