"""Fixed-size concurrent batches with a pause between them."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Generic, Sequence, TypeVar

from tasksync import log
from tasksync.errors import classify_error

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchOutcome(Generic[T, R]):
    """Per-item results in input order, plus the items that raised."""

    results: list[tuple[T, R]] = field(default_factory=list)
    failures: list[tuple[T, BaseException]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.results) + len(self.failures)

    @property
    def succeeded(self) -> int:
        return len(self.results)


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    if size < 1:
        raise ValueError(f"batch size must be positive, got {size}")
    return [items[i:i + size] for i in range(0, len(items), size)]


def run_batched(
    items: Sequence[T],
    worker: Callable[[T], R],
    *,
    batch_size: int = 10,
    delay: float = 0.1,
    label: str = "batch",
    describe: Callable[[T], str] = str,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchOutcome[T, R]:
    """Run *worker* over *items*, ``batch_size`` at a time.

    Calls inside one batch run concurrently and are all awaited before the
    next batch starts. An item that raises is logged (as ``describe(item)``)
    and recorded in ``failures``; the other items of the batch are unaffected.
    """
    outcome: BatchOutcome[T, R] = BatchOutcome()
    batches = chunked(list(items), batch_size)

    for index, batch in enumerate(batches):
        log.debug(f"{label}: batch {index + 1}/{len(batches)} ({len(batch)} items)")
        with ThreadPoolExecutor(max_workers=len(batch)) as pool:
            futures = [(item, pool.submit(worker, item)) for item in batch]
            for item, future in futures:
                try:
                    outcome.results.append((item, future.result()))
                except Exception as exc:
                    log.error(f"{label}: {describe(item)}: {exc}", category=classify_error(exc).type)
                    outcome.failures.append((item, exc))

        if index < len(batches) - 1 and delay > 0:
            sleep(delay)

    return outcome
