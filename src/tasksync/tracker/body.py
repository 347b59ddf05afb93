"""Issue body wire format: front matter, sections, labels.

Rendered bodies are compared byte-for-byte against what the tracker returns,
so every function here must be deterministic for the same input.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

import yaml

from tasksync import log
from tasksync.config import UNIQUE_MARKER
from tasksync.tasks.model import Task, TaskAnnotations

BLOCKED_LABEL = "blocked"
SUB_ISSUE_LABEL = "sub-issue"

_FRONT_MATTER_RE = re.compile(r"\A---\n(.*?)\n---\n(.*)\Z", re.DOTALL)
_CHECKLIST_RE = re.compile(r"^- \[[ xX]\] #(\d+)\s*$")
_PLAIN_SCALAR_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")
_YAML_KEYWORDS = frozenset({"true", "false", "yes", "no", "on", "off", "null", "y", "n"})


@dataclass(frozen=True)
class IssueRef:
    number: int
    closed: bool = False

    def checkbox(self) -> str:
        return f"[{'x' if self.closed else ' '}] #{self.number}"


@dataclass
class IssueLinks:
    """Issue references filled in once every task has an issue number."""

    dependencies: list[IssueRef] = field(default_factory=list)
    required_by: list[IssueRef] = field(default_factory=list)


# ── labels ───────────────────────────────────────────────────────────

def complexity_tier(complexity: int) -> str:
    if complexity >= 7:
        return "high"
    if complexity >= 4:
        return "medium"
    return "low"


def issue_labels(task: Task, annotations: TaskAnnotations, tag: str) -> list[str]:
    labels = [tag, f"priority:{task.priority.value}", f"complexity:{complexity_tier(task.complexity)}"]
    if annotations.parents:
        labels.append(SUB_ISSUE_LABEL)
    return labels


# ── front matter ─────────────────────────────────────────────────────

def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_scalar(v) for v in value) + "]"
    text = str(value)
    if _PLAIN_SCALAR_RE.match(text) and text.lower() not in _YAML_KEYWORDS:
        return text
    return json.dumps(text, ensure_ascii=False)


def render_front_matter(metadata: dict[str, Any]) -> str:
    """Render *metadata* in key order. ``title`` is always double-quoted."""
    lines = ["---"]
    for key, value in metadata.items():
        if key == "title":
            lines.append(f"title: {json.dumps(str(value), ensure_ascii=False)}")
        else:
            lines.append(f"{key}: {_scalar(value)}")
    lines.append("---")
    return "\n".join(lines) + "\n"


def task_front_matter(task: Task, annotations: TaskAnnotations) -> dict[str, Any]:
    meta: dict[str, Any] = {"id": task.id, "title": task.title}
    if annotations.parents:
        meta["parent"] = list(annotations.parents)
    if annotations.required_by:
        meta["dependents"] = list(annotations.required_by)
    meta["complexity"] = task.complexity
    meta["priority"] = task.priority.value
    meta["status"] = task.status.front_matter
    return meta


def parse_front_matter(body: str) -> tuple[dict[str, Any], str]:
    """Split a body into ``(metadata, rest)``.

    Bodies without front matter, or with front matter that is not a YAML
    mapping, come back as ``({}, body)``.
    """
    match = _FRONT_MATTER_RE.match(body or "")
    if not match:
        return {}, body or ""
    try:
        metadata = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        log.warn(f"Failed to parse issue front matter: {exc}")
        return {}, body
    if not isinstance(metadata, dict):
        return {}, body
    return metadata, match.group(2)


def replace_front_matter(body: str, metadata: dict[str, Any]) -> str:
    _, rest = parse_front_matter(body)
    return render_front_matter(metadata) + rest


# ── body ─────────────────────────────────────────────────────────────

def _meta_section(task: Task, annotations: TaskAnnotations, links: IssueLinks | None) -> str:
    lines = [
        "## Meta",
        f"- Status: `{task.status.value}`",
        f"- Priority: `{task.priority.value}`",
        f"- Complexity: `{task.complexity} / 10`",
    ]
    if annotations.required_by:
        lines.append("- Required By:")
        if links is not None:
            lines.extend(f"   - {ref.checkbox()}" for ref in links.required_by)
    return "\n".join(lines)


def render_issue_body(
    task: Task,
    annotations: TaskAnnotations,
    links: IssueLinks | None = None,
    child_titles: dict[int, str] | None = None,
) -> str:
    """Render the canonical issue body for *task*.

    Without *links* the Dependencies section and the Required By line are
    rendered with no items (first pass, before issue numbers are known).
    """
    sections: list[str] = []

    if task.details:
        sections.append(f"## Details\n{task.details}")
    if task.test_strategy:
        sections.append(f"## Test Strategy\n{task.test_strategy}")

    subtask_lines = [
        f"- {(child_titles or {}).get(child, f'Task {child}')}" for child in task.subtasks
    ]
    subtask_lines.extend(f"- {note.render()}" for note in task.notes)
    if subtask_lines:
        sections.append("## Subtasks\n" + "\n".join(subtask_lines))

    if task.dependencies:
        dep_lines = [f"- {ref.checkbox()}" for ref in links.dependencies] if links else []
        sections.append("\n".join(["## Dependencies", *dep_lines]))

    sections.append(_meta_section(task, annotations, links))

    front = render_front_matter(task_front_matter(task, annotations))
    return front + "\n" + "\n\n".join(sections) + "\n" + UNIQUE_MARKER


def parse_dependency_numbers(body: str) -> list[int]:
    """Issue numbers listed under ``## Dependencies``, in order."""
    numbers: list[int] = []
    in_section = False
    for line in (body or "").splitlines():
        if line.startswith("## "):
            in_section = line.strip() == "## Dependencies"
            continue
        if not in_section:
            continue
        if not line.strip():
            break
        match = _CHECKLIST_RE.match(line.strip())
        if match and int(match.group(1)) not in numbers:
            numbers.append(int(match.group(1)))
    return numbers
