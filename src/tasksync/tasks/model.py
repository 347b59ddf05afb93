"""Task data model shared by graph building, rendering and sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, raw: Any) -> Priority:
        value = str(raw or "").strip().lower()
        for member in cls:
            if member.value == value:
                return member
        return cls.MEDIUM


class Status(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BREAKDOWN = "breakdown"

    @classmethod
    def parse(cls, raw: Any) -> Status:
        value = str(raw or "").strip().lower().replace("_", "-")
        if value == "done":
            return cls.COMPLETED
        for member in cls:
            if member.value == value:
                return member
        return cls.PENDING

    @property
    def front_matter(self) -> str:
        """Spelling used in issue front matter (``in_progress``)."""
        return self.value.replace("-", "_")


def clamp_complexity(raw: Any) -> int:
    try:
        value = int(float(raw))
    except (TypeError, ValueError):
        return 0
    return max(0, min(10, value))


@dataclass
class SubtaskNote:
    """Inline subtask that has no issue of its own; only listed in the body."""

    title: str
    description: str = ""
    id: str = ""

    def render(self) -> str:
        label = f"{self.id}. {self.title}" if self.id else self.title
        return f"{label}: {self.description}" if self.description else label


@dataclass
class Task:
    id: int
    title: str = ""
    description: str = ""
    priority: Priority = Priority.MEDIUM
    complexity: int = 0
    dependencies: list[int] = field(default_factory=list)
    status: Status = Status.PENDING
    subtasks: list[int] = field(default_factory=list)
    details: str = ""
    test_strategy: str = ""
    notes: list[SubtaskNote] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.complexity = clamp_complexity(self.complexity)
        if not isinstance(self.priority, Priority):
            self.priority = Priority.parse(self.priority)
        if not isinstance(self.status, Status):
            self.status = Status.parse(self.status)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        """Build a task from generator / task-file JSON.

        ``subtasks`` may hold child ids or nested objects; objects become
        :class:`SubtaskNote` entries.
        """
        child_ids: list[int] = []
        notes: list[SubtaskNote] = []
        for entry in data.get("subtasks") or []:
            if isinstance(entry, dict):
                notes.append(SubtaskNote(
                    title=str(entry.get("title", "")),
                    description=str(entry.get("description", "") or ""),
                    id=str(entry.get("id", "") or ""),
                ))
            else:
                try:
                    child_ids.append(int(entry))
                except (TypeError, ValueError):
                    continue

        deps: list[int] = []
        for dep in data.get("dependencies") or []:
            try:
                deps.append(int(dep))
            except (TypeError, ValueError):
                continue

        return cls(
            id=int(data["id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "") or ""),
            priority=Priority.parse(data.get("priority")),
            complexity=clamp_complexity(data.get("complexity", 0)),
            dependencies=deps,
            status=Status.parse(data.get("status")),
            subtasks=child_ids,
            details=str(data.get("details", "") or ""),
            test_strategy=str(data.get("testStrategy", data.get("test_strategy", "")) or ""),
            notes=notes,
        )


@dataclass
class TaskAnnotations:
    """Values derived from the graph each run. Never persisted."""

    required_by: list[int] = field(default_factory=list)
    hierarchy_depth: int = 1
    parents: list[int] = field(default_factory=list)
