"""Error types and the shared classification used by the retry executor."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

import httpx

MAX_DELAY_SECONDS = 300.0

RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "secondary rate",
    "abuse detection",
    "too many requests",
)

NETWORK_CODES: frozenset[str] = frozenset({
    "ECONNRESET",
    "ECONNREFUSED",
    "ECONNABORTED",
    "ETIMEDOUT",
    "ENOTFOUND",
    "EAI_AGAIN",
    "EPIPE",
    "EHOSTUNREACH",
})

NETWORK_PATTERNS: tuple[str, ...] = (
    "network",
    "timeout",
    "timed out",
    "connection reset",
    "connection refused",
    "socket hang up",
    "temporarily unavailable",
)

INVALID_ARTIFACT_PATTERNS: tuple[str, ...] = (
    "invalid artifact",
    "checksum validation failed",
    "signature validation failed",
)

VALIDATION_STATUSES = frozenset({400, 404, 409, 410, 422})


# ── Exceptions ───────────────────────────────────────────────────────

class TasksyncError(Exception):
    """Base class for every error raised by tasksync itself."""


class ConfigError(TasksyncError):
    """Missing or out-of-range configuration."""


class TrackerError(TasksyncError):
    """Non-2xx answer from the issue tracker API."""

    def __init__(
        self,
        status: int,
        message: str,
        *,
        headers: Mapping[str, str] | None = None,
        code: str = "",
    ) -> None:
        super().__init__(f"HTTP {status}: {message}" if status else message)
        self.status = status
        self.message = message
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.code = code


class InvalidArtifactError(TasksyncError):
    """A snapshot could not be used (bad JSON, wrong shape, unknown id)."""


class ChecksumMismatchError(InvalidArtifactError):
    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"Checksum validation failed. Expected: {expected}, Got: {actual}")
        self.expected = expected
        self.actual = actual


class SignatureError(InvalidArtifactError):
    """Snapshot signature missing its key or not matching the content."""


class GraphValidationError(TasksyncError):
    """A task graph is structurally invalid."""


class GeneratorError(TasksyncError):
    """The external task-graph generator could not be run."""


class GeneratorOutputError(GeneratorError):
    """The generator ran but produced output that does not describe a task graph."""


# ── Classification ───────────────────────────────────────────────────

class ErrorCategory(str, Enum):
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    INVALID_ARTIFACT = "invalid_artifact"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorClassification:
    category: ErrorCategory
    retryable: bool
    max_retries: int
    retry_delay: float  # seconds

    @property
    def type(self) -> str:
        return self.category.value


def _contains_any(text: str, patterns: tuple[str, ...]) -> bool:
    lower = text.lower()
    return any(pattern in lower for pattern in patterns)


def looks_like_rate_limit(text: str) -> bool:
    """Return ``True`` when text reads like a rate/abuse limit message."""
    if not text:
        return False
    return _contains_any(text, RATE_LIMIT_PATTERNS)


def _status_of(exc: BaseException) -> int:
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return 0


def _headers_of(exc: BaseException) -> Mapping[str, str]:
    headers = getattr(exc, "headers", None)
    if isinstance(headers, Mapping):
        return {str(k).lower(): str(v) for k, v in headers.items()}
    if isinstance(exc, httpx.HTTPStatusError):
        return {k.lower(): v for k, v in exc.response.headers.items()}
    return {}


def _code_of(exc: BaseException) -> str:
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code:
        return code.upper()
    errno = getattr(exc, "errno", None)
    if isinstance(errno, int):
        import errno as errno_mod

        return errno_mod.errorcode.get(errno, "")
    return ""


def rate_limit_delay(headers: Mapping[str, str], attempt: int, now: float | None = None) -> float:
    """Seconds to wait before retrying a rate-limited call.

    ``retry-after`` wins, then the ``x-ratelimit-reset`` epoch, then exponential
    backoff. Always capped at five minutes.
    """
    retry_after = headers.get("retry-after", "").strip()
    if retry_after:
        try:
            return min(max(float(retry_after), 0.0), MAX_DELAY_SECONDS)
        except ValueError:
            pass

    reset = headers.get("x-ratelimit-reset", "").strip()
    if reset:
        try:
            wait = float(reset) - (time.time() if now is None else now)
            return min(max(wait, 1.0), MAX_DELAY_SECONDS)
        except ValueError:
            pass

    return min(float(2 ** attempt), MAX_DELAY_SECONDS)


def classify_error(exc: BaseException, attempt: int = 0, now: float | None = None) -> ErrorClassification:
    """Map an exception to its category and retry policy.

    Pure function of status code, error code and message; *attempt* and *now*
    only feed the rate-limit delay.
    """
    status = _status_of(exc)
    message = str(getattr(exc, "message", "") or exc)
    code = _code_of(exc)

    if status == 429 or (status == 403 and looks_like_rate_limit(message)):
        delay = rate_limit_delay(_headers_of(exc), attempt, now)
        return ErrorClassification(ErrorCategory.RATE_LIMIT, True, 10, delay)

    if status == 401 or status == 403:
        return ErrorClassification(ErrorCategory.AUTHENTICATION, False, 0, 0.0)

    if isinstance(exc, InvalidArtifactError) or _contains_any(message, INVALID_ARTIFACT_PATTERNS):
        return ErrorClassification(ErrorCategory.INVALID_ARTIFACT, False, 0, 0.0)

    if status in VALIDATION_STATUSES or isinstance(exc, (GraphValidationError, GeneratorOutputError, ConfigError)):
        return ErrorClassification(ErrorCategory.VALIDATION, False, 0, 0.0)

    if (
        code in NETWORK_CODES
        or isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError))
        or status >= 500
        or _contains_any(message, NETWORK_PATTERNS)
    ):
        return ErrorClassification(ErrorCategory.NETWORK, True, 5, 1.0)

    return ErrorClassification(ErrorCategory.UNKNOWN, True, 3, 2.0)
