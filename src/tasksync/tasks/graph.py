"""Task graph: derived indexes (required-by, parents) and hierarchy depth."""

from __future__ import annotations

from typing import Any, Iterable, Iterator

from tasksync import log
from tasksync.errors import GraphValidationError
from tasksync.tasks.model import Task, TaskAnnotations


class TaskGraph:
    """Immutable view over a list of tasks, built once per run.

    Usage::

        graph = TaskGraph(tasks)
        graph.required_by(1)        # ids depending on task 1
        graph.hierarchy_depth(3)    # longest dependency chain ending at 3
        graph.annotations(3)        # TaskAnnotations for rendering
    """

    def __init__(self, tasks: Iterable[Task]) -> None:
        self._tasks: list[Task] = list(tasks)
        self._by_id: dict[int, Task] = {}
        for task in self._tasks:
            if task.id in self._by_id:
                raise GraphValidationError(f"duplicate task id {task.id}")
            self._by_id[task.id] = task

        self._deps: dict[int, list[int]] = {}
        self._required_by: dict[int, list[int]] = {t.id: [] for t in self._tasks}
        self._parents: dict[int, list[int]] = {t.id: [] for t in self._tasks}

        for task in self._tasks:
            known = [d for d in task.dependencies if d in self._by_id]
            unknown = [d for d in task.dependencies if d not in self._by_id]
            if unknown:
                log.debug(f"Task {task.id}: ignoring unknown dependencies {unknown}")
            self._deps[task.id] = known
            for dep in known:
                if task.id not in self._required_by[dep]:
                    self._required_by[dep].append(task.id)
            for child in task.subtasks:
                if child in self._parents and task.id not in self._parents[child]:
                    self._parents[child].append(task.id)

        self._depth: dict[int, int] = self._compute_depths()

    @classmethod
    def from_dicts(cls, raw_tasks: Iterable[dict[str, Any]]) -> TaskGraph:
        return cls(Task.from_dict(item) for item in raw_tasks)

    # ── lookups ──────────────────────────────────────────────────

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._by_id

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    def get(self, task_id: int) -> Task | None:
        return self._by_id.get(task_id)

    def dependencies(self, task_id: int) -> list[int]:
        """Dependency ids that reference tasks in this graph."""
        return list(self._deps.get(task_id, []))

    def required_by(self, task_id: int) -> list[int]:
        return list(self._required_by.get(task_id, []))

    def parents(self, task_id: int) -> list[int]:
        return list(self._parents.get(task_id, []))

    def hierarchy_depth(self, task_id: int) -> int:
        return self._depth.get(task_id, 1)

    def max_depth(self) -> int:
        return max(self._depth.values(), default=0)

    def annotations(self, task_id: int) -> TaskAnnotations:
        return TaskAnnotations(
            required_by=self.required_by(task_id),
            hierarchy_depth=self.hierarchy_depth(task_id),
            parents=self.parents(task_id),
        )

    def hierarchy_edges(self) -> list[tuple[int, int]]:
        """``(parent_id, child_id)`` pairs for children present in the graph."""
        return [
            (task.id, child)
            for task in self._tasks
            for child in task.subtasks
            if child in self._by_id
        ]

    # ── depth ────────────────────────────────────────────────────

    def _compute_depths(self) -> dict[int, int]:
        depth: dict[int, int] = {}
        visited: set[int] = set()
        in_path: set[int] = set()
        back_edge_nodes: set[int] = set()

        for root in self._by_id:
            if root in visited:
                continue
            # (node, index of next dependency to explore)
            stack: list[tuple[int, int]] = [(root, 0)]
            visited.add(root)
            in_path.add(root)
            while stack:
                node, idx = stack[-1]
                deps = self._deps[node]
                if idx < len(deps):
                    stack[-1] = (node, idx + 1)
                    dep = deps[idx]
                    if dep in in_path:
                        back_edge_nodes.update((node, dep))
                    elif dep not in visited:
                        visited.add(dep)
                        in_path.add(dep)
                        stack.append((dep, 0))
                    continue
                stack.pop()
                in_path.discard(node)
                depth[node] = 1 + max((depth.get(d, 0) for d in deps), default=0)

        if back_edge_nodes:
            cyclic = self._components_of(back_edge_nodes)
            log.warn(f"Dependency cycle detected among tasks {sorted(cyclic)}; depth set to 1")
            for task_id in cyclic:
                depth[task_id] = 1
        return depth

    def _components_of(self, seeds: set[int]) -> set[int]:
        """All task ids weakly connected (via dependencies) to any of *seeds*."""
        neighbours: dict[int, set[int]] = {tid: set() for tid in self._by_id}
        for tid, deps in self._deps.items():
            for dep in deps:
                neighbours[tid].add(dep)
                neighbours[dep].add(tid)

        seen: set[int] = set(seeds)
        frontier = list(seeds)
        while frontier:
            node = frontier.pop()
            for other in neighbours[node]:
                if other not in seen:
                    seen.add(other)
                    frontier.append(other)
        return seen
