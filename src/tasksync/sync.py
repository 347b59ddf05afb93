"""Idempotent task graph -> issue tracker synchronization."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from tasksync import log
from tasksync.batch import BatchOutcome, run_batched
from tasksync.config import DEFAULT_TAG
from tasksync.ledger import ContentHashLedger
from tasksync.resolver import BlockedStateResolver
from tasksync.retry import RetryPolicy
from tasksync.tasks.graph import TaskGraph
from tasksync.tasks.model import Task
from tasksync.tracker.base import Issue, TrackerClient
from tasksync.tracker.body import IssueLinks, IssueRef, issue_labels, render_issue_body
from tasksync.tracker.hierarchy import HierarchyLinker, select_hierarchy


class IssueCache:
    """Issues by title, listed once per run and only ever added to.

    Only issues carrying the unique marker count as matches, so hand-made
    issues with the same title are never adopted.
    """

    def __init__(self, client: TrackerClient, retry: RetryPolicy | None = None) -> None:
        self.client = client
        self.retry = retry or RetryPolicy()
        self._by_title: dict[str, Issue] = {}
        self._loaded = False
        self._refreshed = False
        self._lock = threading.Lock()

    def _load(self) -> None:
        issues = self.retry(self.client.list_issues, "list issues")
        for issue in issues:
            if issue.managed:
                self._by_title.setdefault(issue.title, issue)
        self._loaded = True
        log.debug(f"Issue cache: {len(self._by_title)} managed issues")

    def find(self, title: str) -> Issue | None:
        with self._lock:
            if not self._loaded:
                self._load()
            return self._by_title.get(title)

    def refresh_once(self) -> bool:
        """Re-list issues unless that already happened this run."""
        with self._lock:
            if self._refreshed:
                return False
            self._refreshed = True
            self._load()
            return True

    def add(self, issue: Issue) -> None:
        with self._lock:
            self._by_title.setdefault(issue.title, issue)

    def issues(self) -> list[Issue]:
        with self._lock:
            if not self._loaded:
                self._load()
            return list(self._by_title.values())


@dataclass
class SyncReport:
    created: int = 0
    existing: int = 0
    updated: int = 0
    unchanged: int = 0
    linked: int = 0
    failed: int = 0
    labels_changed: int = 0
    attempted: int = 0

    @property
    def ok(self) -> bool:
        """True when most items succeeded, or nothing was attempted."""
        return self.attempted == 0 or self.failed * 2 < self.attempted

    def summary(self) -> str:
        return (
            f"created={self.created} existing={self.existing} updated={self.updated} "
            f"unchanged={self.unchanged} linked={self.linked} labels={self.labels_changed} "
            f"failed={self.failed}"
        )


def _describe_task(task: Task) -> str:
    return f"task {task.id} '{task.title}'"


def _describe_edge(edge: tuple[int, int]) -> str:
    return f"task {edge[0]} -> task {edge[1]}"


class SyncEngine:
    """Four batched passes over the graph.

    1. create or find an issue per task
    2. rewrite bodies with dependency / required-by checklists when they differ
    3. link parent/child issues created in this run
    4. add or remove the ``blocked`` label
    """

    def __init__(
        self,
        client: TrackerClient,
        *,
        ledger: ContentHashLedger,
        cache: IssueCache | None = None,
        hierarchy: HierarchyLinker | None = None,
        retry: RetryPolicy | None = None,
        resolver: BlockedStateResolver | None = None,
        tag: str = DEFAULT_TAG,
        batch_size: int = 10,
        batch_delay: float = 0.1,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.retry = retry or RetryPolicy(sleep=sleep)
        self.ledger = ledger
        self.cache = cache or IssueCache(client, self.retry)
        self.hierarchy = hierarchy or select_hierarchy(client, True, self.retry)
        self.resolver = resolver or BlockedStateResolver(client, self.retry)
        self.tag = tag
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.dry_run = dry_run
        self.sleep = sleep

        self.issues: dict[int, Issue] = {}
        self.created: set[int] = set()
        self.blocked: dict[int, bool] = {}
        self._lock = threading.Lock()

    # ── entry points ─────────────────────────────────────────────

    def sync(self, graph: TaskGraph) -> SyncReport:
        report = SyncReport()
        titles = {task.id: task.title for task in graph}
        prefix = "[dry-run] " if self.dry_run else ""
        log.info(f"{prefix}Syncing {len(graph)} tasks")

        # A listing failure here is fatal for the run, not one failure per task.
        self.cache.issues()

        try:
            self._tally(report, self._run(graph.tasks, lambda t: self._create_or_find(graph, t, titles), "create"))
            linked_tasks = [t for t in graph if t.id in self.issues]
            self._tally(report, self._run(linked_tasks, lambda t: self._link_body(graph, t, titles), "update"))

            if self.dry_run:
                log.info("[dry-run] Skipping hierarchy links and blocked labels")
            else:
                edges = [
                    edge for edge in graph.hierarchy_edges()
                    if all(tid in self.issues for tid in edge)
                    and (edge[0] in self.created or edge[1] in self.created)
                ]
                self._tally(report, self._run(edges, self._link_hierarchy, "hierarchy", _describe_edge))
                self._tally(report, self._run(linked_tasks, lambda t: self._update_blocked(graph, t), "blocked"))
        finally:
            if not self.dry_run:
                self.ledger.save()

        log.info(f"{prefix}Sync finished: {report.summary()}")
        return report

    # ── plumbing ─────────────────────────────────────────────────

    def _run(
        self,
        items: Sequence[Any],
        worker: Callable[[Any], str],
        label: str,
        describe: Callable[[Any], str] = _describe_task,
    ) -> BatchOutcome:
        return run_batched(
            items,
            worker,
            batch_size=self.batch_size,
            delay=self.batch_delay,
            label=label,
            describe=describe,
            sleep=self.sleep,
        )

    @staticmethod
    def _tally(report: SyncReport, outcome: BatchOutcome) -> None:
        report.attempted += outcome.attempted
        report.failed += len(outcome.failures)
        for _, status in outcome.results:
            if status in ("created", "existing", "updated", "unchanged", "linked"):
                setattr(report, status, getattr(report, status) + 1)
            elif status in ("added", "removed"):
                report.labels_changed += 1

    def _remember(self, task_id: int, issue: Issue) -> None:
        with self._lock:
            self.issues[task_id] = issue

    # ── pass 1 ───────────────────────────────────────────────────

    def _create_or_find(self, graph: TaskGraph, task: Task, titles: dict[int, str]) -> str:
        existing = self.cache.find(task.title)
        if existing is None and task.title in self.ledger:
            log.debug(f"'{task.title}' is in the ledger but not listed; refreshing issue cache")
            self.cache.refresh_once()
            existing = self.cache.find(task.title)

        if existing is not None:
            log.debug(f"Issue already exists for: {task.title} (#{existing.number})")
            self._remember(task.id, existing)
            return "existing"

        annotations = graph.annotations(task.id)
        body = render_issue_body(task, annotations, child_titles=titles)
        labels = issue_labels(task, annotations, self.tag)

        if self.dry_run:
            log.info(f"[dry-run] Would create issue: {task.title} {labels}")
            return "created"

        issue = self.retry(lambda: self.client.create_issue(task.title, body, labels), f"create '{task.title}'")
        self.cache.add(issue)
        self.ledger.record(task.title, body)
        with self._lock:
            self.created.add(task.id)
        self._remember(task.id, issue)
        log.success(f"Created issue: {task.title} (#{issue.number})")
        return "created"

    # ── pass 2 ───────────────────────────────────────────────────

    def _ref(self, task_id: int) -> IssueRef | None:
        issue = self.issues.get(task_id)
        if issue is None:
            return None
        return IssueRef(issue.number, closed=issue.state == "closed")

    def _links(self, graph: TaskGraph, task: Task) -> IssueLinks:
        deps = [self._ref(d) for d in graph.dependencies(task.id)]
        required = [self._ref(d) for d in graph.required_by(task.id)]
        return IssueLinks(
            dependencies=[r for r in deps if r is not None],
            required_by=[r for r in required if r is not None],
        )

    def _link_body(self, graph: TaskGraph, task: Task, titles: dict[int, str]) -> str:
        issue = self.issues[task.id]
        body = render_issue_body(task, graph.annotations(task.id), self._links(graph, task), titles)

        if body == issue.body:
            if not self.dry_run:
                self.ledger.record(task.title, body)
            return "unchanged"

        if self.dry_run:
            log.info(f"[dry-run] Would update issue #{issue.number}: {task.title}")
            return "updated"

        if task.title in self.ledger and self.ledger.has_changed(task.title, issue.body):
            log.warn(f"Issue #{issue.number} was edited outside tasksync; overwriting the managed body")
        self.retry(lambda: self.client.update_issue(issue.number, body=body), f"update #{issue.number}")
        issue.body = body
        self.ledger.record(task.title, body)
        log.info(f"Updated issue #{issue.number} with dependencies/required-by")
        return "updated"

    # ── pass 3 ───────────────────────────────────────────────────

    def _link_hierarchy(self, edge: tuple[int, int]) -> str:
        parent, child = self.issues[edge[0]], self.issues[edge[1]]
        how = self.hierarchy.link(parent, child)
        return "linked" if how != "failed" else "skipped"

    # ── pass 4 ───────────────────────────────────────────────────

    def _update_blocked(self, graph: TaskGraph, task: Task) -> str:
        issue = self.issues[task.id]
        if not issue.is_open:
            return "closed"
        numbers = [self.issues[d].number for d in graph.dependencies(task.id) if d in self.issues]
        blocked = self.resolver.is_blocked(numbers)
        with self._lock:
            self.blocked[task.id] = blocked
        return self.resolver.apply_blocked_label(issue, blocked) or "unchanged-label"
