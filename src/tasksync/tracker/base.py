"""Issue model and the abstract tracker client."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from tasksync.config import UNIQUE_MARKER


@dataclass
class Issue:
    """Remote issue as seen by tasksync.

    ``id`` is the tracker's internal id (needed for sub-issue links);
    ``number`` is the user-facing ``#N``.
    """

    number: int
    title: str = ""
    body: str = ""
    state: str = "open"
    labels: list[str] = field(default_factory=list)
    id: int = 0

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    @property
    def managed(self) -> bool:
        """True when tasksync created this issue."""
        return UNIQUE_MARKER in (self.body or "")

    def has_label(self, name: str) -> bool:
        return name in self.labels

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Issue:
        labels = [
            label["name"] if isinstance(label, dict) else str(label)
            for label in data.get("labels") or []
        ]
        return cls(
            number=int(data["number"]),
            id=int(data.get("id") or 0),
            title=str(data.get("title") or ""),
            body=str(data.get("body") or ""),
            state=str(data.get("state") or "open"),
            labels=labels,
        )


class TrackerClient(ABC):
    """Operations tasksync needs from an issue tracker."""

    @abstractmethod
    def get_issue(self, number: int) -> Issue:
        ...

    @abstractmethod
    def create_issue(self, title: str, body: str, labels: list[str]) -> Issue:
        ...

    @abstractmethod
    def update_issue(
        self,
        number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        state: str | None = None,
    ) -> Issue:
        ...

    @abstractmethod
    def add_labels(self, number: int, labels: list[str]) -> None:
        ...

    @abstractmethod
    def remove_label(self, number: int, label: str) -> None:
        """Remove *label*; raises :class:`TrackerError` (404) when absent."""
        ...

    @abstractmethod
    def create_comment(self, number: int, body: str) -> None:
        ...

    @abstractmethod
    def list_issues(self, state: str = "all", labels: list[str] | None = None) -> list[Issue]:
        """Every issue across all pages, pull requests excluded."""
        ...

    @abstractmethod
    def add_sub_issue(self, parent_number: int, child: Issue) -> None:
        ...

    @abstractmethod
    def list_sub_issues(self, number: int) -> list[Issue]:
        ...

    def close(self) -> None:
        """Release network resources. Default: nothing to release."""
