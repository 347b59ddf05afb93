"""Dependency watcher: periodic full scan or a single closed-issue trigger."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from tasksync import log
from tasksync.batch import run_batched
from tasksync.resolver import BlockedStateResolver
from tasksync.retry import RetryPolicy
from tasksync.tracker.base import Issue, TrackerClient


@dataclass
class WatchReport:
    processed: int = 0
    updated: int = 0
    failed: int = 0

    @property
    def ok(self) -> bool:
        return self.processed == 0 or self.failed * 2 < self.processed


class DependencyWatcher:
    """Keeps ``blocked`` labels current after the initial sync.

    ``scan_all`` re-evaluates every open managed issue in batches;
    ``handle_issue_closure`` re-evaluates only the direct dependents of one
    closed issue. Both may run at the same time; label writes are idempotent.
    """

    def __init__(
        self,
        client: TrackerClient,
        *,
        resolver: BlockedStateResolver | None = None,
        retry: RetryPolicy | None = None,
        batch_size: int = 10,
        batch_delay: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.retry = retry or RetryPolicy(sleep=sleep)
        self.resolver = resolver or BlockedStateResolver(client, self.retry)
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.sleep = sleep

    def _evaluate(self, issue: Issue) -> str | None:
        blocked = self.resolver.is_blocked(self.resolver.dependency_numbers(issue))
        return self.resolver.apply_blocked_label(issue, blocked)

    def scan_all(self) -> WatchReport:
        issues = self.retry(self.client.list_issues, "list issues")
        open_issues = [i for i in issues if i.is_open and i.managed]
        log.info(f"Found {len(open_issues)} open issues to process")

        outcome = run_batched(
            open_issues,
            self._evaluate,
            batch_size=self.batch_size,
            delay=self.batch_delay,
            label="scan",
            describe=lambda issue: f"#{issue.number} '{issue.title}'",
            sleep=self.sleep,
        )
        report = WatchReport(
            processed=outcome.attempted,
            updated=sum(1 for _, transition in outcome.results if transition),
            failed=len(outcome.failures),
        )
        log.info(
            f"Batch scan completed: {report.processed} issues processed, "
            f"{report.updated} updated, {report.failed} failed"
        )
        return report

    def handle_issue_closure(self, issue_number: int) -> list[int]:
        log.info(f"Processing issue closure: #{issue_number}")
        return self.resolver.resolve_dependents(issue_number)

    def run(self, issue_number: int | None = None) -> WatchReport:
        """Single-issue mode when *issue_number* is given, full scan otherwise."""
        start = time.monotonic()
        if issue_number is not None:
            dependents = self.handle_issue_closure(issue_number)
            report = WatchReport(processed=len(dependents))
        else:
            report = self.scan_all()
        log.success(f"Dependency watcher completed in {int((time.monotonic() - start) * 1000)}ms")
        return report
