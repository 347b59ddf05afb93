"""Parent/child linking: native sub-issues, or a comment on the parent."""

from __future__ import annotations

from abc import ABC, abstractmethod

from tasksync import log
from tasksync.errors import TrackerError, classify_error
from tasksync.retry import RetryPolicy
from tasksync.tracker.base import Issue, TrackerClient


def fallback_comment(child_number: int) -> str:
    return f"Sub-issue: #{child_number}"


class HierarchyLinker(ABC):
    """Links a child issue under a parent. ``link`` never raises."""

    name: str = "base"

    def __init__(self, client: TrackerClient, retry: RetryPolicy | None = None) -> None:
        self.client = client
        self.retry = retry or RetryPolicy()

    @abstractmethod
    def link(self, parent: Issue, child: Issue) -> str:
        """Return how the link was made: ``native``, ``comment`` or ``failed``."""
        ...

    def children(self, parent_number: int) -> list[Issue]:
        """Sub-issues already linked under *parent_number*; none when the tracker has no such API."""
        try:
            return self.retry(
                lambda: self.client.list_sub_issues(parent_number),
                f"list sub-issues of #{parent_number}",
            )
        except TrackerError as exc:
            if exc.status != 404:
                raise
            return []

    def _comment(self, parent: Issue, child: Issue) -> str:
        try:
            self.retry(
                lambda: self.client.create_comment(parent.number, fallback_comment(child.number)),
                f"comment sub-issue #{child.number} on #{parent.number}",
            )
        except Exception as exc:
            log.error(
                f"Could not record sub-issue #{child.number} on #{parent.number}: {exc}",
                category=classify_error(exc).type,
            )
            return "failed"
        return "comment"


class NativeHierarchy(HierarchyLinker):
    """Tracker sub-issue API, degrading to a comment when the API refuses."""

    name = "native"

    def link(self, parent: Issue, child: Issue) -> str:
        try:
            self.retry(
                lambda: self.client.add_sub_issue(parent.number, child),
                f"link #{child.number} under #{parent.number}",
            )
        except Exception as exc:
            log.warn(f"Sub-issue API failed for #{parent.number} -> #{child.number} ({exc}); using comment")
            return self._comment(parent, child)
        log.debug(f"Linked #{child.number} as sub-issue of #{parent.number}")
        return "native"


class CommentHierarchy(HierarchyLinker):
    name = "comment"

    def link(self, parent: Issue, child: Issue) -> str:
        return self._comment(parent, child)


def select_hierarchy(client: TrackerClient, sub_issues: bool, retry: RetryPolicy | None = None) -> HierarchyLinker:
    """Pick the linking strategy once for the whole run."""
    linker: HierarchyLinker = NativeHierarchy(client, retry) if sub_issues else CommentHierarchy(client, retry)
    log.debug(f"Hierarchy linking: {linker.name}")
    return linker
