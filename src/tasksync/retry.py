"""Retry executor driven by :func:`tasksync.errors.classify_error`."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from tasksync import log
from tasksync.errors import MAX_DELAY_SECONDS, ErrorCategory, classify_error

T = TypeVar("T")

Sleep = Callable[[float], None]


def backoff_delay(base: float, retries: int) -> float:
    """Exponential backoff from *base*, capped at five minutes."""
    return min(base * (2 ** retries), MAX_DELAY_SECONDS)


def execute_with_retry(
    operation: Callable[[], T],
    label: str,
    max_retries: int = 3,
    *,
    sleep: Sleep = time.sleep,
) -> T:
    """Run *operation* until it succeeds or its error category says stop.

    The effective retry budget is the smaller of *max_retries* and the
    category's own limit. The last error is re-raised unchanged.
    """
    retries = 0
    while True:
        try:
            result = operation()
        except Exception as exc:
            info = classify_error(exc, attempt=retries)
            budget = min(max_retries, info.max_retries)
            if not info.retryable or retries >= budget:
                log.debug(
                    f"{label}: giving up after {retries} retr{'y' if retries == 1 else 'ies'} "
                    f"({info.type}: {exc})"
                )
                raise

            if info.category == ErrorCategory.RATE_LIMIT:
                delay = min(info.retry_delay, MAX_DELAY_SECONDS)
            else:
                delay = backoff_delay(info.retry_delay, retries)
            retries += 1
            log.warn(f"{label} failed ({info.type}), retry {retries}/{budget} in {delay:.1f}s: {exc}")
            sleep(delay)
            continue

        if retries:
            log.success(f"{label} recovered after {retries} retr{'y' if retries == 1 else 'ies'}")
        return result


@dataclass
class RetryPolicy:
    """Callable wrapper so components share one retry configuration.

    Usage::

        retry = RetryPolicy(max_retries=5)
        issue = retry(lambda: client.get_issue(12), "get issue #12")
    """

    max_retries: int = 3
    sleep: Sleep = field(default=time.sleep, repr=False)

    def __call__(self, operation: Callable[[], T], label: str) -> T:
        return execute_with_retry(operation, label, self.max_retries, sleep=self.sleep)
