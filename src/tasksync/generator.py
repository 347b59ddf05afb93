"""Adapter for the external task-graph generator CLI."""

from __future__ import annotations

import json
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from tasksync import log
from tasksync.errors import GeneratorError
from tasksync.retry import execute_with_retry
from tasksync.tasks.validate import parse_generator_output

DEFAULT_TIMEOUT_SECONDS = 600


@dataclass
class GeneratorOptions:
    complexity_threshold: int = 40
    max_depth: int = 3
    prd_glob: str = ""
    breakdown_max_depth: int = 2
    extra_args: list[str] = field(default_factory=list)

    def to_args(self) -> list[str]:
        return [
            "--complexity-threshold", str(self.complexity_threshold),
            "--max-depth", str(self.max_depth),
            "--prd-path-glob", self.prd_glob,
            "--breakdown-max-depth", str(self.breakdown_max_depth),
            "--output", "json",
            *self.extra_args,
        ]


class GeneratorRunner:
    """Runs the generator binary and turns its JSON into task dicts.

    Process failures raise :class:`GeneratorError` (retried a few times);
    malformed output raises :class:`GeneratorOutputError` (never retried).
    """

    def __init__(
        self,
        binary: str,
        *,
        cwd: Path | None = None,
        timeout: int | None = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.binary = binary
        self.cwd = cwd
        self.timeout = timeout
        self.max_retries = max_retries
        self.sleep = sleep

    def check_available(self) -> str | None:
        """Return an error message if the generator is not available, else None."""
        if Path(self.binary).is_file() or shutil.which(self.binary):
            return None
        return f"{self.binary} not found in PATH"

    def execute(self, args: list[str]) -> str:
        cmd = [self.binary, *args]
        log.debug(f"Running generator: {' '.join(cmd)}")
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=self.cwd,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            raise GeneratorError(f"Generator binary not found: {self.binary}") from None
        except subprocess.TimeoutExpired:
            raise GeneratorError(f"Generator timed out after {self.timeout}s") from None

        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            detail = stderr.splitlines()[0] if stderr else "no output on stderr"
            raise GeneratorError(f"Generator exited with code {proc.returncode}: {detail}")
        return proc.stdout or ""

    def _run(self, args: list[str], label: str) -> str:
        return execute_with_retry(lambda: self.execute(args), label, self.max_retries, sleep=self.sleep)

    def generate(self, prd_files: list[str], options: GeneratorOptions) -> dict[str, Any]:
        """Run a full generation and return ``{"master": {"tasks", "metadata"}}``."""
        output = self._run(options.to_args(), "generate task graph")
        tasks = parse_generator_output(output, options.complexity_threshold)
        now = datetime.now(timezone.utc).isoformat()
        log.info(f"Generator produced {len(tasks)} tasks")
        return {
            "master": {
                "tasks": tasks,
                "metadata": {
                    "created": now,
                    "updated": now,
                    "description": "Generated by Taskmaster CLI",
                    "complexityThreshold": options.complexity_threshold,
                    "maxDepth": options.max_depth,
                    "prdFiles": list(prd_files),
                },
            }
        }

    def breakdown(self, task: dict[str, Any], depth: int, threshold: int) -> list[dict[str, Any]]:
        """Ask the generator to split one task; returns the subtask dicts."""
        options = GeneratorOptions(
            complexity_threshold=threshold,
            max_depth=depth,
            breakdown_max_depth=depth,
            extra_args=[
                "--breakdown-mode",
                "--task-id", str(task["id"]),
                "--task-title", str(task.get("title", "")),
                "--task-description", str(task.get("description", "")),
                "--task-priority", str(task.get("priority") or "medium"),
                "--task-complexity", str(task.get("complexity") or 5),
            ],
        )
        output = self._run(options.to_args(), f"break down task {task['id']}")
        try:
            data = json.loads(output)
        except json.JSONDecodeError:
            data = None
        key = "subtasks" if isinstance(data, dict) and "subtasks" in data else "tasks"
        return parse_generator_output(output, key=key)
