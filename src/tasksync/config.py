"""Configuration defaults, env vars, and runtime options for tasksync."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from tasksync.errors import ConfigError


DEFAULT_API_URL = "https://api.github.com"
DEFAULT_STATE_PATH = ".taskmaster/state/issue-content-hashes.json"
DEFAULT_TASKS_PATH = ".taskmaster/tasks/tasks.json"
DEFAULT_GRAPH_PATH = ".taskmaster/tasks/task-graph.json"
DEFAULT_COMPLEXITY_REPORT = ".taskmaster/reports/task-complexity-report.json"
DEFAULT_ARTIFACTS_DIR = ".taskmaster/artifacts"
DEFAULT_PRD_GLOB = "docs/**/*.prd.md"

UNIQUE_MARKER = "<!-- created-by-taskmaster-script -->"
DEFAULT_TAG = "taskmaster"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass
class Config:
    """Runtime configuration: tracker coordinates, batching, and file locations."""

    # Tracker
    token: str = ""
    owner: str = ""
    repo: str = ""
    api_url: str = ""
    tag: str = DEFAULT_TAG
    sub_issues: bool = True

    # Sync
    batch_size: int = 10
    batch_delay: float = 0.1
    max_retries: int = 3
    dry_run: bool = False
    state_path: str = ""

    # Generation / artifacts
    generator_bin: str = ""
    generator_version: str = ""
    complexity_threshold: int = 40
    max_depth: int = 3
    breakdown_max_depth: int = 2
    prd_glob: str = DEFAULT_PRD_GLOB
    generator_args: list[str] = field(default_factory=list)
    artifacts_dir: str = ""
    retention_days: int = 30
    retention_count: int = 10
    signing_key: str = ""

    # Misc
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.token:
            self.token = os.environ.get("GITHUB_TOKEN", "")
        if not self.owner or not self.repo:
            owner, repo = _split_repository(os.environ.get("GITHUB_REPOSITORY", ""))
            self.owner = self.owner or os.environ.get("GITHUB_OWNER", "") or owner
            self.repo = self.repo or os.environ.get("GITHUB_REPO", "") or repo
        if not self.api_url:
            self.api_url = os.environ.get("GITHUB_API_URL", "") or DEFAULT_API_URL
        if not self.state_path:
            self.state_path = os.environ.get("TASKSYNC_STATE_PATH", "") or DEFAULT_STATE_PATH
        if not self.artifacts_dir:
            self.artifacts_dir = os.environ.get("TASKSYNC_ARTIFACTS_DIR", "") or DEFAULT_ARTIFACTS_DIR
        if not self.signing_key:
            self.signing_key = os.environ.get("TASKSYNC_SIGNING_KEY", "")
        if not self.generator_bin:
            self.generator_bin = os.environ.get("TASKMASTER_BIN", "") or "task-master"
        if not self.generator_version:
            self.generator_version = os.environ.get("TASKMASTER_CLI_VERSION", "") or "unknown"

    @classmethod
    def from_env(cls, **overrides: object) -> Config:
        """Build a config where numeric/boolean knobs also honour env vars.

        Explicit *overrides* (e.g. CLI flags) win over the environment.
        """
        values: dict[str, object] = {
            "batch_size": _env_int("TASKSYNC_BATCH_SIZE", 10),
            "sub_issues": _env_bool("TASKSYNC_SUB_ISSUES", True),
            "retention_days": _env_int("ARTIFACT_RETENTION_DAYS", 30),
            "retention_count": _env_int("ARTIFACT_RETENTION_COUNT", 10),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        cfg = cls(**values)  # type: ignore[arg-type]
        cfg.check_limits()
        return cfg

    def check_limits(self) -> None:
        if not 1 <= self.batch_size <= 50:
            raise ConfigError(f"batch size must be between 1 and 50, got {self.batch_size}")
        if not 1 <= self.max_retries <= 10:
            raise ConfigError(f"max retries must be between 1 and 10, got {self.max_retries}")

    def validate_remote(self) -> None:
        """Raise :class:`ConfigError` when tracker credentials are incomplete."""
        missing = [
            name
            for name, value in (("GITHUB_TOKEN", self.token), ("GITHUB_OWNER", self.owner), ("GITHUB_REPO", self.repo))
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    @property
    def state_file(self) -> Path:
        return Path(self.state_path)


def _split_repository(value: str) -> tuple[str, str]:
    """Split ``owner/repo`` (the ``GITHUB_REPOSITORY`` form) into its parts."""
    if "/" not in value:
        return "", ""
    owner, _, repo = value.partition("/")
    return owner.strip(), repo.strip()
