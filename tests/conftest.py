"""Shared fixtures for tasksync tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use tasksync.io_utils read_text/write_text for consistent UTF-8 I/O.

Remote calls go to :class:`FakeTracker`, an in-memory tracker that records
every call so tests can assert on write counts.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import replace
from pathlib import Path

import pytest

from tasksync.config import UNIQUE_MARKER
from tasksync.errors import TrackerError
from tasksync.ledger import ContentHashLedger
from tasksync.retry import RetryPolicy
from tasksync.sync import SyncEngine
from tasksync.tasks.graph import TaskGraph
from tasksync.tasks.model import Task
from tasksync.tracker.base import Issue, TrackerClient


class FakeTracker(TrackerClient):
    """In-memory tracker. Returned issues are copies, like a real API."""

    def __init__(self) -> None:
        self._issues: dict[int, Issue] = {}
        self._next = 1
        self._lock = threading.Lock()
        self.calls: list[tuple[str, int | None]] = []
        self.comments: dict[int, list[str]] = defaultdict(list)
        self.sub_issues: dict[int, list[int]] = defaultdict(list)
        self.fail_titles: set[str] = set()
        self.fail_gets: set[int] = set()
        self.sub_issue_error: Exception | None = None
        self.stale_listings = 0

    # ── helpers for tests ────────────────────────────────────────

    def seed(self, title: str, body: str = "", state: str = "open", labels: list[str] | None = None) -> Issue:
        with self._lock:
            number = self._next
            self._next += 1
            issue = Issue(number=number, id=1000 + number, title=title, body=body, state=state, labels=list(labels or []))
            self._issues[number] = issue
            return replace(issue, labels=list(issue.labels))

    def close_issue(self, number: int) -> None:
        self._issues[number].state = "closed"

    def stored(self, number: int) -> Issue:
        return self._issues[number]

    def by_title(self, title: str) -> Issue:
        return next(i for i in self._issues.values() if i.title == title)

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)

    def _copy(self, issue: Issue) -> Issue:
        return replace(issue, labels=list(issue.labels))

    def _get(self, number: int) -> Issue:
        if number not in self._issues:
            raise TrackerError(404, "Not Found")
        return self._issues[number]

    # ── TrackerClient ────────────────────────────────────────────

    def get_issue(self, number: int) -> Issue:
        with self._lock:
            self.calls.append(("get_issue", number))
            if number in self.fail_gets:
                raise TrackerError(422, "Validation Failed")
            return self._copy(self._get(number))

    def create_issue(self, title: str, body: str, labels: list[str]) -> Issue:
        with self._lock:
            self.calls.append(("create_issue", None))
            if title in self.fail_titles:
                raise TrackerError(422, f"cannot create {title}")
        return self.seed(title, body, labels=labels)

    def update_issue(self, number, *, title=None, body=None, state=None) -> Issue:
        with self._lock:
            self.calls.append(("update_issue", number))
            issue = self._get(number)
            if title is not None:
                issue.title = title
            if body is not None:
                issue.body = body
            if state is not None:
                issue.state = state
            return self._copy(issue)

    def add_labels(self, number: int, labels: list[str]) -> None:
        with self._lock:
            self.calls.append(("add_labels", number))
            issue = self._get(number)
            for label in labels:
                if label not in issue.labels:
                    issue.labels.append(label)

    def remove_label(self, number: int, label: str) -> None:
        with self._lock:
            self.calls.append(("remove_label", number))
            issue = self._get(number)
            if label not in issue.labels:
                raise TrackerError(404, "Label does not exist")
            issue.labels.remove(label)

    def create_comment(self, number: int, body: str) -> None:
        with self._lock:
            self.calls.append(("create_comment", number))
            self._get(number)
            self.comments[number].append(body)

    def list_issues(self, state: str = "all", labels: list[str] | None = None) -> list[Issue]:
        with self._lock:
            self.calls.append(("list_issues", None))
            if self.stale_listings > 0:
                self.stale_listings -= 1
                return []
            return [self._copy(i) for i in self._issues.values() if state == "all" or i.state == state]

    def add_sub_issue(self, parent_number: int, child: Issue) -> None:
        with self._lock:
            self.calls.append(("add_sub_issue", parent_number))
            if self.sub_issue_error is not None:
                raise self.sub_issue_error
            self.sub_issues[parent_number].append(child.number)

    def list_sub_issues(self, number: int) -> list[Issue]:
        with self._lock:
            self.calls.append(("list_sub_issues", number))
            return [self._copy(self._issues[n]) for n in self.sub_issues.get(number, [])]


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def sleeps() -> list[float]:
    """Collects requested sleep durations instead of sleeping."""
    return []


@pytest.fixture
def no_sleep(sleeps: list[float]):
    return sleeps.append


@pytest.fixture
def make_task():
    def _make(
        id: int,
        title: str = "",
        dependencies: list[int] | None = None,
        subtasks: list[int] | None = None,
        **kwargs,
    ) -> Task:
        return Task(
            id=id,
            title=title or f"Task {id}",
            dependencies=dependencies or [],
            subtasks=subtasks or [],
            **kwargs,
        )

    return _make


@pytest.fixture
def make_graph():
    def _make(tasks: list[Task]) -> TaskGraph:
        return TaskGraph(tasks)

    return _make


@pytest.fixture
def make_engine(tracker: FakeTracker, tmp_path: Path, no_sleep):
    """SyncEngine wired to the fake tracker with a ledger under tmp_path."""

    def _make(client: TrackerClient | None = None, **kwargs) -> SyncEngine:
        ledger = kwargs.pop("ledger", None) or ContentHashLedger.load(tmp_path / "state" / "hashes.json")
        return SyncEngine(
            client or tracker,
            ledger=ledger,
            retry=RetryPolicy(sleep=no_sleep),
            batch_delay=0,
            sleep=no_sleep,
            **kwargs,
        )

    return _make


def managed_body(text: str = "") -> str:
    return f"{text}\n{UNIQUE_MARKER}" if text else UNIQUE_MARKER
