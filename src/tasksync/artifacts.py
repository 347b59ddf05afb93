"""Task graph snapshots: building, storing, and verified recovery for replay."""

from __future__ import annotations

import hashlib
import hmac
import json
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

import httpx

from tasksync import log
from tasksync.errors import (
    ChecksumMismatchError,
    ConfigError,
    GraphValidationError,
    InvalidArtifactError,
    SignatureError,
)
from tasksync.io_utils import dump_json, write_bytes_atomic
from tasksync.retry import execute_with_retry
from tasksync.tasks.graph import TaskGraph
from tasksync.tasks.validate import validate_task_graph_structure

ARTIFACT_PREFIX = "taskmaster-task-graph-"
ID_TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"
_ID_TIMESTAMP_RE = re.compile(r"(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2})")
DOWNLOAD_TIMEOUT_SECONDS = 60.0


# ── hashing / signing ────────────────────────────────────────────────

def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sign(data: bytes, key: str) -> str:
    return hmac.new(key.encode("utf-8"), data, hashlib.sha256).hexdigest()


def verify_checksum(data: bytes, expected: str) -> None:
    actual = sha256_hex(data)
    if not hmac.compare_digest(actual, expected.strip().lower()):
        raise ChecksumMismatchError(expected.strip(), actual)


def verify_signature(data: bytes, signature: str, key: str | None) -> None:
    if not key:
        raise SignatureError("Signature validation failed: no signing key configured")
    if not hmac.compare_digest(sign(data, key), signature.strip().lower()):
        raise SignatureError("Signature validation failed: signature does not match content")


# ── metadata ─────────────────────────────────────────────────────────

def artifact_id(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return ARTIFACT_PREFIX + now.strftime(ID_TIMESTAMP_FORMAT)


def artifact_timestamp(aid: str) -> datetime | None:
    match = _ID_TIMESTAMP_RE.search(aid)
    if not match:
        return None
    return datetime.strptime(match.group(1), ID_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def complexity_scores(tasks: list[dict[str, Any]]) -> dict[str, float]:
    values = [
        t.get("complexity") or 0
        for t in tasks
        if isinstance(t.get("complexity") or 0, (int, float))
    ]
    if not values:
        return {"min": 0, "max": 0, "average": 0}
    return {"min": min(values), "max": max(values), "average": round(sum(values) / len(values), 2)}


def prd_version(prd_files: Iterable[str | Path]) -> str:
    """``prd-`` plus the first 12 hex chars of a hash over the PRD contents."""
    digest = hashlib.sha256()
    for name in sorted(str(p) for p in prd_files):
        path = Path(name)
        if path.is_file():
            digest.update(path.read_bytes())
    return f"prd-{digest.hexdigest()[:12]}"


def _hierarchy_depth(tasks: list[dict[str, Any]]) -> int:
    try:
        return TaskGraph.from_dicts(tasks).max_depth()
    except (KeyError, TypeError, ValueError, GraphValidationError):
        # Structural problems are reported by the validator.
        return 0


def build_metadata(
    tasks: list[dict[str, Any]],
    prd_files: list[str],
    *,
    version: str,
    generator_version: str = "unknown",
    retention_days: int = 30,
    retention_count: int = 10,
    generated_at: str | None = None,
) -> dict[str, Any]:
    return {
        "prdSource": list(prd_files),
        "taskCount": len(tasks),
        "generationTimestamp": generated_at or datetime.now(timezone.utc).isoformat(),
        "complexityScores": complexity_scores(tasks),
        "hierarchyDepth": _hierarchy_depth(tasks),
        "prdVersion": version,
        "taskmasterVersion": generator_version,
        "retentionPolicy": {"maxAge": f"{retention_days}d", "maxCount": retention_count},
    }


def build_snapshot(
    tasks: list[dict[str, Any]],
    prd_files: list[str],
    *,
    master_metadata: dict[str, Any] | None = None,
    generator_version: str = "unknown",
    retention_days: int = 30,
    retention_count: int = 10,
) -> dict[str, Any]:
    """Enhanced snapshot for freshly generated *tasks*."""
    now = datetime.now(timezone.utc).isoformat()
    master_meta = {"created": now, "prdFiles": list(prd_files), "tasksTotal": len(tasks)}
    master_meta.update(master_metadata or {})
    return {
        "master": {"tasks": tasks, "metadata": master_meta},
        "metadata": build_metadata(
            tasks,
            prd_files,
            version=prd_version(prd_files),
            generator_version=generator_version,
            retention_days=retention_days,
            retention_count=retention_count,
            generated_at=now,
        ),
    }


def normalize_snapshot(data: Any) -> Any:
    """Lift the two legacy shapes into the enhanced one; other input is returned as is."""
    if not isinstance(data, dict):
        return data

    if "master" not in data and isinstance(data.get("tasks"), list):
        log.info("Converting legacy task list to enhanced snapshot")
        tasks = data["tasks"]
        return {
            "master": {"tasks": tasks, "metadata": {}},
            "metadata": build_metadata(tasks, [], version="unknown"),
        }

    master = data.get("master")
    if isinstance(master, dict) and "metadata" not in data and isinstance(master.get("tasks"), list):
        log.info("Adding missing snapshot metadata from task file")
        master_meta = master.get("metadata") if isinstance(master.get("metadata"), dict) else {}
        prd_files = [str(p) for p in master_meta.get("prdFiles", []) or []]
        return {
            "master": master,
            "metadata": build_metadata(
                master["tasks"],
                prd_files,
                version="unknown",
                generated_at=master_meta.get("created"),
            ),
        }
    return data


# ── snapshot ─────────────────────────────────────────────────────────

@dataclass
class Snapshot:
    data: dict[str, Any]
    checksum: str
    location: str = ""

    @property
    def tasks(self) -> list[dict[str, Any]]:
        return self.data["master"]["tasks"]

    @property
    def metadata(self) -> dict[str, Any]:
        return self.data["metadata"]

    def graph(self) -> TaskGraph:
        try:
            return TaskGraph.from_dicts(self.tasks)
        except (KeyError, TypeError, ValueError) as exc:
            raise GraphValidationError(f"Snapshot {self.location or ''} has an invalid task: {exc}") from None


def parse_snapshot(raw: bytes, location: str = "") -> Snapshot:
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidArtifactError(f"Invalid artifact: {location or 'snapshot'} is not valid JSON ({exc})") from None
    data = normalize_snapshot(data)
    validate_task_graph_structure(data)
    return Snapshot(data=data, checksum=sha256_hex(raw), location=location)


# ── local store ──────────────────────────────────────────────────────

@dataclass
class ArtifactStore:
    """Snapshots on disk as ``<id>.json`` with ``.sha256`` / ``.sig`` sidecars."""

    root: Path
    signing_key: str = field(default="", repr=False)

    def path(self, aid: str) -> Path:
        return self.root / f"{aid}.json"

    def exists(self, aid: str) -> bool:
        return bool(aid) and "/" not in aid and self.path(aid).is_file()

    def save(self, snapshot: dict[str, Any], now: datetime | None = None) -> str:
        aid = artifact_id(now)
        n = 1
        while self.path(aid).exists():
            aid = f"{artifact_id(now)}-{n}"
            n += 1

        raw = (dump_json(snapshot) + "\n").encode("utf-8")
        write_bytes_atomic(self.path(aid), raw)
        write_bytes_atomic(self.root / f"{aid}.sha256", f"{sha256_hex(raw)}\n".encode())
        if self.signing_key:
            write_bytes_atomic(self.root / f"{aid}.sig", f"{sign(raw, self.signing_key)}\n".encode())
        log.artifact_event("save", str(self.path(aid)), snapshot.get("metadata"))
        return aid

    def list(self) -> list[str]:
        """Artifact ids, newest first."""
        if not self.root.is_dir():
            return []
        ids = [p.stem for p in self.root.glob(f"{ARTIFACT_PREFIX}*.json")]
        ids.sort(key=lambda aid: (artifact_timestamp(aid) or datetime.min.replace(tzinfo=timezone.utc), aid), reverse=True)
        return ids

    def load_bytes(self, aid: str) -> bytes:
        if not self.exists(aid):
            raise InvalidArtifactError(f"Invalid artifact: {aid}")
        return self.path(aid).read_bytes()

    def _sidecar(self, aid: str, suffix: str) -> str | None:
        path = self.root / f"{aid}.{suffix}"
        return path.read_text(encoding="utf-8").strip() if path.is_file() else None

    def checksum(self, aid: str) -> str | None:
        return self._sidecar(aid, "sha256")

    def signature(self, aid: str) -> str | None:
        return self._sidecar(aid, "sig")

    def delete(self, aid: str) -> None:
        for suffix in ("json", "sha256", "sig"):
            (self.root / f"{aid}.{suffix}").unlink(missing_ok=True)

    def prune(self, max_age_days: int, max_count: int, now: datetime | None = None) -> list[str]:
        """Delete snapshots older than *max_age_days*, then all but the newest *max_count*."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=max_age_days)
        kept: list[str] = []
        removed: list[str] = []
        for aid in self.list():
            stamp = artifact_timestamp(aid)
            if stamp is not None and stamp < cutoff:
                removed.append(aid)
            else:
                kept.append(aid)
        removed.extend(kept[max_count:])

        for aid in removed:
            self.delete(aid)
            log.artifact_event("cleanup", aid)
        log.info(f"Artifact cleanup completed: {len(removed)} removed, {min(len(kept), max_count)} kept")
        return removed


# ── recovery ─────────────────────────────────────────────────────────

def _is_url(location: str) -> bool:
    return "://" in location


def _download(location: str, http: httpx.Client | None) -> bytes:
    scheme = location.split("://", 1)[0].lower()
    if scheme not in ("http", "https"):
        raise ConfigError(f"Artifact URL must use http or https, got {scheme}://")
    if http is not None:
        response = http.get(location)
        response.raise_for_status()
        return response.content
    with httpx.Client(timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True) as client:
        response = client.get(location)
        response.raise_for_status()
        return response.content


def fetch_snapshot(
    location: str,
    *,
    expected_checksum: str | None = None,
    signature: str | None = None,
    signing_key: str | None = None,
    store: ArtifactStore | None = None,
    http: httpx.Client | None = None,
    max_retries: int = 3,
    sleep: Callable[[float], None] = time.sleep,
) -> Snapshot:
    """Load a snapshot from a URL, a store id or a file and verify it.

    The checksum (and signature, when given) is checked against the raw bytes
    before anything is parsed. The whole sequence is retried as one unit.
    """

    def attempt() -> Snapshot:
        checksum, sig = expected_checksum, signature
        if _is_url(location):
            raw = _download(location, http)
        elif store is not None and store.exists(location):
            raw = store.load_bytes(location)
            checksum = checksum or store.checksum(location)
            sig = sig or store.signature(location)
        elif Path(location).is_file():
            raw = Path(location).read_bytes()
        else:
            raise InvalidArtifactError(f"Invalid artifact: {location}")

        if checksum:
            verify_checksum(raw, checksum)
        else:
            log.warn(f"No checksum supplied for {location}; integrity not verified")
        if sig:
            verify_signature(raw, sig, signing_key)
        return parse_snapshot(raw, location)

    try:
        snapshot = execute_with_retry(attempt, f"fetch snapshot {location}", max_retries, sleep=sleep)
    except Exception as exc:
        log.artifact_event("restore_error", location, err=str(exc))
        raise
    log.artifact_event("restore", location, snapshot.metadata)
    return snapshot
