"""Structural validation for task graphs and raw generator output."""

from __future__ import annotations

import json
from typing import Any

from tasksync import log
from tasksync.errors import GeneratorOutputError, GraphValidationError


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_task_graph_structure(data: Any) -> None:
    """Raise :class:`GraphValidationError` unless *data* is an enhanced task graph.

    Requires ``master`` and ``metadata`` objects, a ``master.tasks`` list and a
    non-empty ``id`` and ``title`` on every task. An empty task list is allowed
    but logged.
    """
    if not isinstance(data, dict):
        raise GraphValidationError("Task graph must be a JSON object")

    master = data.get("master")
    if not isinstance(master, dict):
        raise GraphValidationError("Invalid task graph structure: missing master object")

    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        raise GraphValidationError("Invalid task graph structure: missing metadata object")

    tasks = master.get("tasks")
    if not isinstance(tasks, list):
        raise GraphValidationError("Invalid task graph structure: master.tasks must be a list")

    if not tasks:
        log.warn("Task graph contains no tasks")
        return

    for index, task in enumerate(tasks):
        if not isinstance(task, dict):
            raise GraphValidationError(f"Task at index {index} is not an object")
        if _is_blank(task.get("id")):
            raise GraphValidationError(f"Task at index {index} is missing required field: id")
        if _is_blank(task.get("title")):
            raise GraphValidationError(f"Task at index {index} is missing required field: title")


def _coerce_id(value: Any, where: str) -> int:
    if isinstance(value, bool):
        raise GeneratorOutputError(f"{where} must be numeric, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise GeneratorOutputError(f"{where} must be numeric, got {value!r}")


def parse_generator_output(
    raw: str,
    complexity_threshold: int | None = None,
    key: str = "tasks",
) -> list[dict[str, Any]]:
    """Parse and check the generator's JSON, returning its task dicts.

    Every problem names the offending field (``tasks[2].id``). Tasks whose
    complexity exceeds *complexity_threshold* are dropped.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise GeneratorOutputError(f"Generator output is not valid JSON: {exc}") from None

    if not isinstance(data, dict):
        raise GeneratorOutputError("Generator output must be a JSON object")
    tasks = data.get(key)
    if not isinstance(tasks, list):
        raise GeneratorOutputError(f"{key} must be an array")

    cleaned: list[dict[str, Any]] = []
    for index, task in enumerate(tasks):
        where = f"{key}[{index}]"
        if not isinstance(task, dict):
            raise GeneratorOutputError(f"{where} must be an object")

        task = dict(task)
        task["id"] = _coerce_id(task.get("id"), f"{where}.id")

        for name in ("title", "description"):
            if not isinstance(task.get(name), str) or _is_blank(task.get(name)):
                raise GeneratorOutputError(f"{where}.{name} is required")

        deps = task.get("dependencies", [])
        if deps is None:
            deps = []
        if not isinstance(deps, list):
            raise GeneratorOutputError(f"{where}.dependencies must be an array")
        task["dependencies"] = [
            _coerce_id(dep, f"{where}.dependencies[{n}]") for n, dep in enumerate(deps)
        ]

        if complexity_threshold is not None:
            complexity = task.get("complexity", 0)
            if isinstance(complexity, (int, float)) and not isinstance(complexity, bool) and complexity > complexity_threshold:
                log.debug(f"Skipping task {task['id']}: complexity {complexity} > {complexity_threshold}")
                continue

        cleaned.append(task)

    return cleaned
