"""tasksync CLI: generate, sync, watch, replay, breakdown, prune.

Installed as the ``tasksync`` console_script.
"""

from __future__ import annotations

import glob
import shlex
import sys
from pathlib import Path
from typing import NoReturn

import click
import httpx

from tasksync import __version__
from tasksync.config import (
    DEFAULT_COMPLEXITY_REPORT,
    DEFAULT_GRAPH_PATH,
    DEFAULT_TASKS_PATH,
    Config,
)
from tasksync.errors import TasksyncError, classify_error
from tasksync.io_utils import dump_json, write_text

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


def _fail(exc: BaseException) -> NoReturn:
    from tasksync import log as tlog

    tlog.error(str(exc), category=classify_error(exc).type)
    sys.exit(1)


def _config(ctx: click.Context, **overrides: object) -> Config:
    try:
        return Config.from_env(verbose=ctx.obj.get("verbose", False), **overrides)
    except TasksyncError as exc:
        _fail(exc)


def _client(ctx: click.Context, cfg: Config):
    """Tracker client; tests pass a ready client through ``obj["client"]``."""
    from tasksync.tracker.github import GitHubClient

    if ctx.obj.get("client") is not None:
        return ctx.obj["client"]
    cfg.validate_remote()
    return GitHubClient(cfg.token, cfg.owner, cfg.repo, api_url=cfg.api_url)


def _generator(ctx: click.Context, cfg: Config):
    from tasksync.generator import GeneratorRunner

    if ctx.obj.get("generator") is not None:
        return ctx.obj["generator"]
    return GeneratorRunner(cfg.generator_bin, max_retries=cfg.max_retries)


def _default_tasks_path() -> Path:
    graph = Path(DEFAULT_GRAPH_PATH)
    return graph if graph.is_file() else Path(DEFAULT_TASKS_PATH)


def _run_sync(cfg: Config, graph, client) -> None:
    from tasksync import log as tlog
    from tasksync.ledger import ContentHashLedger
    from tasksync.retry import RetryPolicy
    from tasksync.sync import SyncEngine
    from tasksync.tracker.hierarchy import select_hierarchy

    retry = RetryPolicy(cfg.max_retries)
    engine = SyncEngine(
        client,
        ledger=ContentHashLedger.load(cfg.state_file),
        hierarchy=select_hierarchy(client, cfg.sub_issues, retry),
        retry=retry,
        tag=cfg.tag,
        batch_size=cfg.batch_size,
        batch_delay=cfg.batch_delay,
        dry_run=cfg.dry_run,
    )
    report = engine.sync(graph)

    if not report.ok:
        tlog.error(f"Sync failed for most items: {report.summary()}")
        sys.exit(1)
    tlog.success(f"All issues created and linked ({report.summary()})")


# ── Group ────────────────────────────────────────────────────────────


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="tasksync")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """tasksync: keep tracker issues in step with a task graph.

    \b
    EXAMPLES:
      tasksync generate                      # PRDs -> task graph snapshot
      tasksync sync                          # create / update issues
      tasksync watch --issue 42              # #42 closed: refresh dependents
      tasksync replay taskmaster-task-graph-2024-01-15T10-30-00
      tasksync prune --max-count 5
    """
    from tasksync import log as tlog

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    tlog.set_verbose(verbose)


# ── generate ─────────────────────────────────────────────────────────


@main.command()
@click.option("--prd-glob", default=None, help="Glob for PRD files (default: docs/**/*.prd.md)")
@click.option("--complexity-threshold", type=int, default=None, help="Drop tasks above this complexity")
@click.option("--max-depth", type=int, default=None, help="Maximum task hierarchy depth")
@click.option("--breakdown-max-depth", type=int, default=None, help="Maximum breakdown depth")
@click.option("--args", "extra_args", default="", help="Extra generator arguments")
@click.option("--output", "-o", default=DEFAULT_GRAPH_PATH, show_default=True, help="Task graph output path")
@click.pass_context
def generate(
    ctx: click.Context,
    prd_glob: str | None,
    complexity_threshold: int | None,
    max_depth: int | None,
    breakdown_max_depth: int | None,
    extra_args: str,
    output: str,
) -> None:
    """Run the generator over PRD files and store a task graph snapshot."""
    from tasksync import log as tlog
    from tasksync.artifacts import ArtifactStore, build_snapshot
    from tasksync.generator import GeneratorOptions

    cfg = _config(
        ctx,
        prd_glob=prd_glob,
        complexity_threshold=complexity_threshold,
        max_depth=max_depth,
        breakdown_max_depth=breakdown_max_depth,
        generator_args=shlex.split(extra_args) if extra_args else None,
    )

    prd_files = sorted(glob.glob(cfg.prd_glob, recursive=True))
    if not prd_files:
        tlog.error(f"No PRD files match {cfg.prd_glob}")
        sys.exit(1)
    tlog.info(f"Found {len(prd_files)} PRD file(s)")

    runner = _generator(ctx, cfg)
    err = runner.check_available()
    if err:
        tlog.error(err)
        sys.exit(1)

    options = GeneratorOptions(
        complexity_threshold=cfg.complexity_threshold,
        max_depth=cfg.max_depth,
        prd_glob=cfg.prd_glob,
        breakdown_max_depth=cfg.breakdown_max_depth,
        extra_args=list(cfg.generator_args),
    )
    try:
        graph = runner.generate(prd_files, options)
        snapshot = build_snapshot(
            graph["master"]["tasks"],
            prd_files,
            master_metadata=graph["master"]["metadata"],
            generator_version=cfg.generator_version,
            retention_days=cfg.retention_days,
            retention_count=cfg.retention_count,
        )
        write_text(Path(output), dump_json(snapshot) + "\n")
        tlog.artifact_event("save", output, snapshot["metadata"])
        aid = ArtifactStore(Path(cfg.artifacts_dir), cfg.signing_key).save(snapshot)
    except (TasksyncError, OSError) as exc:
        _fail(exc)

    meta = snapshot["metadata"]
    tlog.success(
        f"Task graph saved to {output}: {meta['taskCount']} tasks, "
        f"depth {meta['hierarchyDepth']}, artifact {aid}"
    )


# ── sync ─────────────────────────────────────────────────────────────


@main.command()
@click.option("--tasks", "tasks_path", default="", help="Task file (default: task-graph.json, else tasks.json)")
@click.option("--complexity-report", default=DEFAULT_COMPLEXITY_REPORT, show_default=True, help="Complexity analysis report")
@click.option("--dry-run", is_flag=True, help="Show planned changes without writing")
@click.option("--batch-size", type=int, default=None, help="Items per concurrent batch (1-50)")
@click.option("--max-retries", type=int, default=None, help="Retry attempts per call (1-10)")
@click.option("--no-sub-issues", is_flag=True, help="Link children with comments instead of sub-issues")
@click.pass_context
def sync(
    ctx: click.Context,
    tasks_path: str,
    complexity_report: str,
    dry_run: bool,
    batch_size: int | None,
    max_retries: int | None,
    no_sub_issues: bool,
) -> None:
    """Create or update one issue per task and keep links current."""
    from tasksync.tasks.io import load_graph

    cfg = _config(
        ctx,
        dry_run=dry_run,
        batch_size=batch_size,
        max_retries=max_retries,
        sub_issues=False if no_sub_issues else None,
    )
    try:
        graph = load_graph(Path(tasks_path) if tasks_path else _default_tasks_path(), Path(complexity_report))
        client = _client(ctx, cfg)
        try:
            _run_sync(cfg, graph, client)
        finally:
            client.close()
    except (TasksyncError, httpx.HTTPError) as exc:
        _fail(exc)


# ── watch ────────────────────────────────────────────────────────────


@main.command()
@click.option("--issue", "issue_number", type=int, envvar="ISSUE_NUMBER", default=None, help="Closed issue to process (default: full scan)")
@click.pass_context
def watch(ctx: click.Context, issue_number: int | None) -> None:
    """Refresh ``blocked`` labels, for one closed issue or all open issues."""
    from tasksync import log as tlog
    from tasksync.retry import RetryPolicy
    from tasksync.watcher import DependencyWatcher

    cfg = _config(ctx)
    try:
        client = _client(ctx, cfg)
        try:
            watcher = DependencyWatcher(
                client,
                retry=RetryPolicy(cfg.max_retries),
                batch_size=cfg.batch_size,
                batch_delay=cfg.batch_delay,
            )
            report = watcher.run(issue_number)
        finally:
            client.close()
    except (TasksyncError, httpx.HTTPError) as exc:
        _fail(exc)

    if not report.ok:
        tlog.error(f"Dependency watcher failed for {report.failed} of {report.processed} issues")
        sys.exit(1)


# ── replay ───────────────────────────────────────────────────────────


@main.command()
@click.argument("location")
@click.option("--checksum", default=None, help="Expected SHA-256 of the snapshot")
@click.option("--signature", default=None, help="HMAC-SHA256 signature of the snapshot")
@click.option("--dry-run", is_flag=True, help="Validate and preview without writing")
@click.option("--max-retries", type=int, default=None, help="Retry attempts (1-10)")
@click.option("--batch-size", type=int, default=None, help="Items per concurrent batch (1-50)")
@click.option("--force", is_flag=True, help="Skip the existing-issue check")
@click.pass_context
def replay(
    ctx: click.Context,
    location: str,
    checksum: str | None,
    signature: str | None,
    dry_run: bool,
    max_retries: int | None,
    batch_size: int | None,
    force: bool,
) -> None:
    """Rebuild issues from a stored snapshot (URL, artifact id or file)."""
    from tasksync import log as tlog
    from tasksync.artifacts import ArtifactStore, fetch_snapshot
    from tasksync.retry import RetryPolicy
    from tasksync.sync import IssueCache

    cfg = _config(ctx, dry_run=dry_run, max_retries=max_retries, batch_size=batch_size)
    try:
        snapshot = fetch_snapshot(
            location,
            expected_checksum=checksum,
            signature=signature,
            signing_key=cfg.signing_key or None,
            store=ArtifactStore(Path(cfg.artifacts_dir), cfg.signing_key),
            max_retries=cfg.max_retries,
        )
        graph = snapshot.graph()
        tlog.info(
            f"Snapshot {snapshot.checksum[:12]}: {len(graph)} tasks, depth {graph.max_depth()}, "
            f"PRD version {snapshot.metadata.get('prdVersion', 'unknown')}"
        )

        client = _client(ctx, cfg)
        try:
            if force:
                tlog.info("Force replay enabled: skipping existing issue check")
            else:
                cache = IssueCache(client, RetryPolicy(cfg.max_retries))
                existing = [task for task in graph if cache.find(task.title) is not None]
                if existing:
                    tlog.warn(f"Found {len(existing)} existing issue(s) for this snapshot; they will be reused:")
                    for task in existing:
                        tlog.warn(f"  - {task.title}")
            _run_sync(cfg, graph, client)
        finally:
            client.close()
    except (TasksyncError, httpx.HTTPError) as exc:
        _fail(exc)


# ── breakdown ────────────────────────────────────────────────────────


@main.command()
@click.option("--issue", "issue_number", type=int, envvar="ISSUE_NUMBER", required=True, help="Issue to break down")
@click.option("--comment", envvar="COMMENT_BODY", default="/breakdown", show_default=True, help="Command text")
@click.option("--commenter", envvar="COMMENTER", default="unknown", help="Who asked for the breakdown")
@click.pass_context
def breakdown(ctx: click.Context, issue_number: int, comment: str, commenter: str) -> None:
    """Split an issue into sub-issues (``/breakdown [--depth N] [--threshold N]``)."""
    from tasksync import log as tlog
    from tasksync.breakdown import BreakdownHandler, parse_breakdown_command
    from tasksync.retry import RetryPolicy
    from tasksync.tracker.hierarchy import select_hierarchy

    options = parse_breakdown_command(comment)
    if options is None:
        tlog.info("No /breakdown command found; nothing to do")
        return
    options.issue_number = issue_number
    options.commenter = commenter

    cfg = _config(ctx)
    try:
        client = _client(ctx, cfg)
        retry = RetryPolicy(cfg.max_retries)
        handler = BreakdownHandler(
            client,
            _generator(ctx, cfg),
            select_hierarchy(client, cfg.sub_issues, retry),
            retry=retry,
            tag=cfg.tag,
        )
        try:
            result = handler.execute(options)
            handler.post_result(issue_number, result)
        finally:
            client.close()
    except (TasksyncError, httpx.HTTPError) as exc:
        _fail(exc)

    if not result.success:
        sys.exit(1)


# ── prune ────────────────────────────────────────────────────────────


@main.command()
@click.option("--max-age-days", type=int, default=None, help="Delete snapshots older than this")
@click.option("--max-count", type=int, default=None, help="Keep at most this many snapshots")
@click.pass_context
def prune(ctx: click.Context, max_age_days: int | None, max_count: int | None) -> None:
    """Delete expired and surplus task graph snapshots."""
    from tasksync.artifacts import ArtifactStore

    cfg = _config(ctx, retention_days=max_age_days, retention_count=max_count)
    try:
        ArtifactStore(Path(cfg.artifacts_dir)).prune(cfg.retention_days, cfg.retention_count)
    except OSError as exc:
        _fail(exc)
