"""``/breakdown`` comment command: split one issue into sub-issues."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from tasksync import log
from tasksync.config import DEFAULT_TAG, UNIQUE_MARKER
from tasksync.errors import TasksyncError, classify_error
from tasksync.generator import GeneratorRunner
from tasksync.retry import RetryPolicy
from tasksync.tasks.model import Task, TaskAnnotations
from tasksync.tracker.base import Issue, TrackerClient
from tasksync.tracker.body import issue_labels, parse_front_matter, render_issue_body, replace_front_matter
from tasksync.tracker.hierarchy import HierarchyLinker

MAX_BREAKDOWN_DEPTH = 2
DEFAULT_BREAKDOWN_DEPTH = 2
DEFAULT_BREAKDOWN_THRESHOLD = 10

_COMMAND_RE = re.compile(r"/breakdown(?:[ \t]+(.*))?")
_DEPTH_RE = re.compile(r"--depth\s+(\d+)")
_THRESHOLD_RE = re.compile(r"--threshold\s+(\d+)")


@dataclass
class BreakdownOptions:
    depth: int = DEFAULT_BREAKDOWN_DEPTH
    threshold: int = DEFAULT_BREAKDOWN_THRESHOLD
    issue_number: int = 0
    commenter: str = ""


@dataclass
class BreakdownResult:
    success: bool
    parent_issue_number: int
    sub_issues_created: list[int] = field(default_factory=list)
    message: str = ""
    error: str | None = None


def parse_breakdown_command(comment: str) -> BreakdownOptions | None:
    """Parse ``/breakdown [--depth N] [--threshold N]``; None when absent."""
    match = _COMMAND_RE.search(comment or "")
    if not match:
        return None
    args = match.group(1) or ""

    depth_match = _DEPTH_RE.search(args)
    depth = int(depth_match.group(1)) if depth_match else DEFAULT_BREAKDOWN_DEPTH
    threshold_match = _THRESHOLD_RE.search(args)
    threshold = int(threshold_match.group(1)) if threshold_match else DEFAULT_BREAKDOWN_THRESHOLD

    if depth > MAX_BREAKDOWN_DEPTH:
        log.warn(
            f"Requested depth {depth} exceeds maximum allowed depth {MAX_BREAKDOWN_DEPTH}. "
            f"Using {MAX_BREAKDOWN_DEPTH}."
        )
        depth = MAX_BREAKDOWN_DEPTH
    return BreakdownOptions(depth=depth, threshold=threshold)


def _with_results_section(body: str, section: str) -> str:
    idx = body.rfind(UNIQUE_MARKER)
    if idx < 0:
        return body.rstrip("\n") + "\n\n" + section + "\n"
    before = body[:idx].rstrip("\n")
    return before + "\n\n" + section + "\n" + body[idx:]


class BreakdownHandler:
    def __init__(
        self,
        client: TrackerClient,
        generator: GeneratorRunner,
        hierarchy: HierarchyLinker,
        *,
        retry: RetryPolicy | None = None,
        tag: str = DEFAULT_TAG,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.client = client
        self.generator = generator
        self.hierarchy = hierarchy
        self.retry = retry or RetryPolicy()
        self.tag = tag
        self.clock = clock

    def already_broken_down(self, issue: Issue) -> bool:
        metadata, _ = parse_front_matter(issue.body)
        if metadata.get("breakdown_performed") or metadata.get("breakdown_timestamp"):
            return True
        return bool(self.hierarchy.children(issue.number))

    def execute(self, options: BreakdownOptions) -> BreakdownResult:
        number = options.issue_number
        log.info(
            f"Executing breakdown on issue #{number} with depth={options.depth}, threshold={options.threshold}"
        )
        try:
            issue = self.retry(lambda: self.client.get_issue(number), f"get issue #{number}")
            if self.already_broken_down(issue):
                message = f"Issue #{number} has already been broken down. Skipping to prevent duplicates."
                log.info(message)
                return BreakdownResult(True, number, message=message)

            metadata, rest = parse_front_matter(issue.body)
            if not metadata.get("id"):
                raise TasksyncError(f"Issue #{number} does not have required front matter with a task id")

            request = {
                "id": metadata["id"],
                "title": metadata.get("title") or issue.title,
                "description": rest,
                "priority": metadata.get("priority") or "medium",
                "complexity": metadata.get("complexity") or 5,
            }
            subtasks = self.generator.breakdown(request, options.depth, options.threshold)
            if not subtasks:
                message = f"No subtasks generated for issue #{number}. Task may already be at appropriate granularity."
                log.info(message)
                return BreakdownResult(True, number, message=message)

            created = self._create_children(issue, int(metadata["id"]), subtasks)
            self._update_parent(issue, metadata, created, options.commenter)
        except Exception as exc:
            message = f"Failed to execute breakdown command on issue #{number}: {exc}"
            log.error(message, category=classify_error(exc).type)
            return BreakdownResult(False, number, message=message, error=message)

        refs = ", ".join(f"#{n}" for n in created)
        message = f"Successfully broke down issue #{number} into {len(created)} sub-issues: {refs}"
        log.success(message)
        return BreakdownResult(True, number, created, message)

    def _create_children(self, parent: Issue, parent_task_id: int, subtasks: list[dict[str, Any]]) -> list[int]:
        created: list[int] = []
        for raw in subtasks:
            title = raw.get("title", "")
            try:
                task = Task.from_dict(raw)
                annotations = TaskAnnotations(parents=[parent_task_id])
                body = render_issue_body(task, annotations)
                labels = issue_labels(task, annotations, self.tag)
                child = self.retry(
                    lambda: self.client.create_issue(task.title, body, labels),
                    f"create sub-issue '{title}'",
                )
            except Exception as exc:
                log.error(f"Error creating sub-issue for {title}: {exc}", category=classify_error(exc).type)
                continue
            self.hierarchy.link(parent, child)
            created.append(child.number)
            log.success(f"Created sub-issue #{child.number} for parent #{parent.number}")
        return created

    def _update_parent(
        self,
        issue: Issue,
        metadata: dict[str, Any],
        created: list[int],
        commenter: str,
    ) -> None:
        stamp = self.clock().isoformat()
        updated = dict(metadata)
        updated.update({
            "status": "breakdown",
            "breakdown_performed": True,
            "breakdown_timestamp": stamp,
            "breakdown_by": commenter or "unknown",
            "breakdown_sub_issues": created,
        })
        section = "\n".join([
            "## Breakdown Results",
            f"- **Broken down by**: @{commenter or 'unknown'}",
            f"- **Breakdown date**: {stamp}",
            f"- **Sub-issues created**: {', '.join(f'#{n}' for n in created)}",
            f"- **Total sub-issues**: {len(created)}",
        ])
        body = _with_results_section(replace_front_matter(issue.body, updated), section)
        self.retry(
            lambda: self.client.update_issue(issue.number, body=body, state="closed"),
            f"close parent #{issue.number}",
        )
        log.info(f"Updated parent issue #{issue.number} with breakdown metadata and closed it")

    def post_result(self, issue_number: int, result: BreakdownResult) -> None:
        lines = ["## Breakdown Command Results", ""]
        if result.success:
            lines.append(f"**Success**: {result.message}")
            if result.sub_issues_created:
                lines += ["", "### Sub-issues Created:"]
                lines += [f"- #{n}" for n in result.sub_issues_created]
        else:
            lines.append(f"**Failed**: {result.error}")
        lines += ["", f"*Command executed at {self.clock().isoformat()}*"]
        self.retry(lambda: self.client.create_comment(issue_number, "\n".join(lines)), f"comment on #{issue_number}")
