"""Tests for tasksync.sync: the four-pass, idempotent sync engine."""

from __future__ import annotations

import json

import pytest
from conftest import FakeTracker, managed_body

from tasksync import log
from tasksync.errors import TrackerError
from tasksync.io_utils import read_text
from tasksync.ledger import ContentHashLedger
from tasksync.retry import RetryPolicy
from tasksync.sync import IssueCache, SyncReport
from tasksync.tasks.graph import TaskGraph
from tasksync.tracker.hierarchy import fallback_comment, select_hierarchy
from tasksync.watcher import DependencyWatcher


def _chain(make_task) -> TaskGraph:
    """1 <- 2 <- 3"""
    return TaskGraph([
        make_task(1),
        make_task(2, dependencies=[1]),
        make_task(3, dependencies=[2]),
    ])


def _numbers(tracker, graph: TaskGraph) -> dict[int, int]:
    return {task.id: tracker.by_title(task.title).number for task in graph}


# ═══════════════════════════════════════════════════════════════════
#  First run
# ═══════════════════════════════════════════════════════════════════


class TestFirstSync:
    """Creating issues for a fresh graph."""

    def test_creates_one_issue_per_task(self, tracker, make_task, make_engine):
        graph = _chain(make_task)
        report = make_engine().sync(graph)

        assert report.created == 3
        assert report.failed == 0
        assert report.ok
        assert tracker.count("create_issue") == 3
        for task in graph:
            assert tracker.by_title(task.title).managed

    def test_links_dependencies_and_required_by(self, tracker, make_task, make_engine):
        graph = _chain(make_task)
        make_engine().sync(graph)
        n = _numbers(tracker, graph)

        body = tracker.stored(n[2]).body
        assert f"## Dependencies\n- [ ] #{n[1]}\n" in body
        assert f"- Required By:\n   - [ ] #{n[3]}\n" in body

    def test_blocked_labels(self, tracker, make_task, make_engine):
        graph = _chain(make_task)
        report = make_engine().sync(graph)
        n = _numbers(tracker, graph)

        assert "blocked" not in tracker.stored(n[1]).labels
        assert "blocked" in tracker.stored(n[2]).labels
        assert "blocked" in tracker.stored(n[3]).labels
        assert report.labels_changed == 2

    def test_labels_on_creation(self, tracker, make_task, make_engine):
        graph = TaskGraph([
            make_task(1, priority="high", complexity=8, subtasks=[2]),
            make_task(2, complexity=2),
        ])
        make_engine(tag="tm").sync(graph)

        assert tracker.by_title("Task 1").labels == ["tm", "priority:high", "complexity:high"]
        assert tracker.by_title("Task 2").labels == ["tm", "priority:medium", "complexity:low", "sub-issue"]

    def test_ledger_saved(self, tmp_path, make_task, make_engine):
        make_engine().sync(_chain(make_task))
        data = json.loads(read_text(tmp_path / "state" / "hashes.json"))
        assert sorted(data) == ["Task 1", "Task 2", "Task 3"]

    def test_cycle_does_not_stall(self, tracker, make_task, make_engine):
        graph = TaskGraph([make_task(1, dependencies=[2]), make_task(2, dependencies=[1])])
        report = make_engine().sync(graph)
        assert report.created == 2
        assert "blocked" in tracker.by_title("Task 1").labels
        assert "blocked" in tracker.by_title("Task 2").labels


# ═══════════════════════════════════════════════════════════════════
#  Idempotence
# ═══════════════════════════════════════════════════════════════════


class TestIdempotence:
    def test_second_run_writes_nothing(self, tracker, make_task, make_engine):
        graph = _chain(make_task)
        make_engine().sync(graph)
        writes = {op: tracker.count(op) for op in ("create_issue", "update_issue", "add_labels", "remove_label", "add_sub_issue")}

        report = make_engine().sync(_chain(make_task))

        assert report.existing == 3
        assert report.unchanged == 3
        assert report.created == 0
        assert report.updated == 0
        assert report.labels_changed == 0
        assert {op: tracker.count(op) for op in writes} == writes

    def test_second_run_does_not_relink_hierarchy(self, tracker, make_task, make_engine):
        graph = TaskGraph([make_task(1, subtasks=[2]), make_task(2)])
        make_engine().sync(graph)
        make_engine().sync(graph)
        assert tracker.count("add_sub_issue") == 1

    def test_closed_dependency_is_checked_on_resync(self, tracker, make_task, make_engine):
        graph = _chain(make_task)
        make_engine().sync(graph)
        n = _numbers(tracker, graph)

        tracker.close_issue(n[1])
        report = make_engine().sync(graph)

        assert f"- [x] #{n[1]}" in tracker.stored(n[2]).body
        assert "blocked" not in tracker.stored(n[2]).labels
        assert report.updated == 1

    def test_unmanaged_issue_with_same_title_not_adopted(self, tracker, make_task, make_engine):
        tracker.seed("Task 1", body="written by hand")
        make_engine().sync(TaskGraph([make_task(1)]))
        assert tracker.count("create_issue") == 1
        assert tracker.stored(2).managed

    def test_ledger_hit_refreshes_stale_listing(self, tracker, tmp_path, make_task, make_engine):
        tracker.seed("Task 1", body=managed_body())
        tracker.stale_listings = 1
        ledger = ContentHashLedger(tmp_path / "l.json", {"Task 1": "0" * 64})

        report = make_engine(ledger=ledger).sync(TaskGraph([make_task(1)]))

        assert report.existing == 1
        assert tracker.count("create_issue") == 0
        assert tracker.count("list_issues") == 2


# ═══════════════════════════════════════════════════════════════════
#  Blocked propagation with the watcher
# ═══════════════════════════════════════════════════════════════════


class TestBlockedPropagation:
    def test_chain_unblocks_one_hop_at_a_time(self, tracker, make_task, make_engine, no_sleep):
        graph = _chain(make_task)
        make_engine().sync(graph)
        n = _numbers(tracker, graph)
        watcher = DependencyWatcher(tracker, retry=RetryPolicy(sleep=no_sleep), batch_delay=0, sleep=no_sleep)

        tracker.close_issue(n[1])
        watcher.handle_issue_closure(n[1])
        assert "blocked" not in tracker.stored(n[2]).labels
        assert "blocked" in tracker.stored(n[3]).labels

        tracker.close_issue(n[2])
        watcher.handle_issue_closure(n[2])
        assert "blocked" not in tracker.stored(n[3]).labels

    def test_engine_records_blocked_state(self, make_task, make_engine):
        graph = _chain(make_task)
        engine = make_engine()
        engine.sync(graph)
        assert engine.blocked == {1: False, 2: True, 3: True}


# ═══════════════════════════════════════════════════════════════════
#  Hierarchy
# ═══════════════════════════════════════════════════════════════════


class TestHierarchy:
    def test_native_sub_issue(self, tracker, make_task, make_engine):
        graph = TaskGraph([make_task(1, subtasks=[2]), make_task(2)])
        report = make_engine().sync(graph)
        n = _numbers(tracker, graph)

        assert tracker.sub_issues[n[1]] == [n[2]]
        assert report.linked == 1
        assert "## Subtasks\n- Task 2" in tracker.stored(n[1]).body

    def test_falls_back_to_comment(self, tracker, make_task, make_engine):
        tracker.sub_issue_error = TrackerError(404, "Not Found")
        graph = TaskGraph([make_task(1, subtasks=[2]), make_task(2)])
        report = make_engine().sync(graph)
        n = _numbers(tracker, graph)

        assert tracker.comments[n[1]] == [fallback_comment(n[2])]
        assert report.linked == 1

    def test_comment_mode(self, tracker, make_task, make_engine, no_sleep):
        graph = TaskGraph([make_task(1, subtasks=[2]), make_task(2)])
        hierarchy = select_hierarchy(tracker, False, RetryPolicy(sleep=no_sleep))
        make_engine(hierarchy=hierarchy).sync(graph)
        n = _numbers(tracker, graph)

        assert tracker.count("add_sub_issue") == 0
        assert tracker.comments[n[1]] == [f"Sub-issue: #{n[2]}"]


# ═══════════════════════════════════════════════════════════════════
#  Dry run and failures
# ═══════════════════════════════════════════════════════════════════


class TestDryRun:
    def test_no_writes(self, tracker, tmp_path, make_task, make_engine):
        report = make_engine(dry_run=True).sync(_chain(make_task))

        assert report.created == 3
        assert tracker.count("create_issue") == 0
        assert tracker.count("add_labels") == 0
        assert not (tmp_path / "state" / "hashes.json").exists()

    def test_reports_planned_updates(self, tracker, make_task, make_engine):
        graph = _chain(make_task)
        make_engine().sync(graph)
        tracker.close_issue(tracker.by_title("Task 1").number)
        updates = tracker.count("update_issue")

        report = make_engine(dry_run=True).sync(graph)

        assert report.updated == 1
        assert tracker.count("update_issue") == updates


class TestFailures:
    def test_minority_failure_still_ok(self, tracker, make_task, make_engine):
        tracker.fail_titles.add("Task 2")
        report = make_engine().sync(_chain(make_task))

        assert report.failed == 1
        assert report.created == 2
        assert report.ok

    def test_majority_failure_not_ok(self, tracker, make_task, make_engine):
        tracker.fail_titles.update({"Task 1", "Task 2"})
        report = make_engine().sync(TaskGraph([make_task(1), make_task(2)]))
        assert not report.ok

    def test_report_ok_when_nothing_attempted(self):
        assert SyncReport().ok


class TestIssueCache:
    def test_lists_once(self, tracker, no_sleep):
        tracker.seed("A", body=managed_body())
        cache = IssueCache(tracker, RetryPolicy(sleep=no_sleep))
        assert cache.find("A") is not None
        assert cache.find("B") is None
        assert tracker.count("list_issues") == 1

    def test_refresh_only_once(self, tracker, no_sleep):
        cache = IssueCache(tracker, RetryPolicy(sleep=no_sleep))
        cache.find("A")
        assert cache.refresh_once() is True
        assert cache.refresh_once() is False
        assert tracker.count("list_issues") == 2


class _Unauthorized(FakeTracker):
    def list_issues(self, state: str = "all", labels: list[str] | None = None):
        super().list_issues(state, labels)
        raise TrackerError(401, "Bad credentials")


class TestFatalListing:
    def test_listing_failure_raises_once(self, make_task, make_engine):
        """A failed issue listing aborts the run instead of failing every task."""
        client = _Unauthorized()
        graph = TaskGraph([make_task(i) for i in range(1, 8)])

        with pytest.raises(TrackerError) as info:
            make_engine(client).sync(graph)

        assert info.value.status == 401
        assert client.count("list_issues") == 1
        assert client.count("create_issue") == 0


class TestClosedIssues:
    def test_closed_issue_never_labelled_blocked(self, tracker, make_task, make_engine):
        make_engine().sync(TaskGraph([make_task(1), make_task(2)]))
        closed = tracker.by_title("Task 2").number
        tracker.close_issue(closed)
        labels = tracker.count("add_labels")

        make_engine().sync(TaskGraph([make_task(1), make_task(2, dependencies=[1])]))

        assert "blocked" not in tracker.stored(closed).labels
        assert tracker.count("add_labels") == labels


class TestOutsideEdits:
    def test_hand_edited_body_is_restored_with_warning(self, tracker, monkeypatch, make_task, make_engine):
        graph = _chain(make_task)
        make_engine().sync(graph)
        n = _numbers(tracker, graph)
        expected = tracker.stored(n[2]).body
        tracker.update_issue(n[2], body=managed_body("rewritten by hand"))
        warnings: list[str] = []
        monkeypatch.setattr(log, "warn", warnings.append)

        report = make_engine().sync(graph)

        assert report.updated == 1
        assert tracker.stored(n[2]).body == expected
        assert any(f"#{n[2]} was edited outside tasksync" in w for w in warnings)

    def test_dependency_closure_is_not_an_outside_edit(self, tracker, monkeypatch, make_task, make_engine):
        graph = _chain(make_task)
        make_engine().sync(graph)
        tracker.close_issue(tracker.by_title("Task 1").number)
        warnings: list[str] = []
        monkeypatch.setattr(log, "warn", warnings.append)

        make_engine().sync(graph)

        assert not any("edited outside" in w for w in warnings)
