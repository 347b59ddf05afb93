"""Console logging with colored prefixes via Rich."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from rich.console import Console
from rich.markup import escape

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def info(msg: str) -> None:
    console.print(f"[blue]\\[INFO][/blue] {escape(msg)}")


def success(msg: str) -> None:
    console.print(f"[green]\\[OK][/green] {escape(msg)}")


def warn(msg: str) -> None:
    console.print(f"[yellow]\\[WARN][/yellow] {escape(msg)}")


def error(msg: str, category: str | None = None) -> None:
    """Print an error to stderr, tagged with its error category when known."""
    tag = f"[red]\\[ERROR][/red][magenta]\\[{category}][/magenta]" if category else "[red]\\[ERROR][/red]"
    _err_console.print(f"{tag} {escape(msg)}")


def debug(msg: str) -> None:
    if _verbose:
        console.print(f"[dim]\\[DEBUG] {escape(msg)}[/dim]")


def artifact_event(operation: str, location: str, metadata: dict[str, Any] | None = None, err: str | None = None) -> None:
    """Emit one structured ``[ARTIFACT_LOG]`` line for an artifact operation."""
    metadata = metadata or {}
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "operation": operation,
        "location": location,
        "taskCount": metadata.get("taskCount", 0),
        "hierarchyDepth": metadata.get("hierarchyDepth", 0),
        "prdVersion": metadata.get("prdVersion", "unknown"),
        "error": err,
    }
    console.print(f"[ARTIFACT_LOG] {json.dumps(entry)}", markup=False, soft_wrap=True)
