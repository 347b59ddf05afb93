"""Loading task files (tasks.json / tasks.yaml / snapshots) into a TaskGraph."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from tasksync import log
from tasksync.errors import GraphValidationError
from tasksync.io_utils import read_text
from tasksync.tasks.graph import TaskGraph


def load_document(path: Path) -> Any:
    """Parse a JSON or YAML task document, chosen by file suffix."""
    if not path.is_file():
        raise GraphValidationError(f"Task file not found: {path}")
    text = read_text(path)
    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise GraphValidationError(f"Cannot parse {path}: {exc}") from None


def extract_tasks(data: Any) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    """Return ``(raw_tasks, master_metadata)`` from any accepted document shape.

    Accepted: ``{"master": {"tasks": [...], "metadata": {...}}}`` (task file and
    enhanced snapshot) and bare ``{"tasks": [...]}``.
    """
    if not isinstance(data, dict):
        raise GraphValidationError("Task document must be an object")

    master = data.get("master")
    if isinstance(master, dict):
        tasks = master.get("tasks")
        meta = master.get("metadata") if isinstance(master.get("metadata"), dict) else {}
    else:
        tasks = data.get("tasks")
        meta = {}

    if not isinstance(tasks, list):
        raise GraphValidationError("Task document has no tasks list")
    return tasks, meta


def load_complexity_report(path: Path) -> dict[int, int]:
    """Map task id to complexity score from a complexity analysis report."""
    if not path.is_file():
        return {}
    try:
        data = json.loads(read_text(path))
    except json.JSONDecodeError as exc:
        log.warn(f"Ignoring unreadable complexity report {path}: {exc}")
        return {}

    scores: dict[int, int] = {}
    for entry in data.get("complexityAnalysis", []) if isinstance(data, dict) else []:
        try:
            scores[int(entry["taskId"])] = int(entry["complexityScore"])
        except (KeyError, TypeError, ValueError):
            continue
    return scores


def apply_complexity(raw_tasks: list[dict[str, Any]], scores: dict[int, int]) -> list[dict[str, Any]]:
    if not scores:
        return raw_tasks
    merged: list[dict[str, Any]] = []
    for task in raw_tasks:
        task = dict(task)
        try:
            score = scores.get(int(task.get("id")))
        except (TypeError, ValueError):
            score = None
        if score is not None:
            task["complexity"] = score
        merged.append(task)
    return merged


def load_graph(path: Path, complexity_report: Path | None = None) -> TaskGraph:
    raw_tasks, _ = extract_tasks(load_document(path))
    if complexity_report is not None:
        raw_tasks = apply_complexity(raw_tasks, load_complexity_report(complexity_report))
    try:
        graph = TaskGraph.from_dicts(raw_tasks)
    except (KeyError, TypeError, ValueError) as exc:
        raise GraphValidationError(f"Invalid task in {path}: {exc}") from None
    log.debug(f"Loaded {len(graph)} tasks from {path}")
    return graph
