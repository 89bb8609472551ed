"""Batch execution with per-item failure isolation."""

from collections.abc import Callable, Hashable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import structlog


logger = structlog.get_logger()

K = TypeVar("K", bound=Hashable)
R = TypeVar("R")


@dataclass
class BatchOutcome(Generic[K, R]):
    """Per-key results and errors of a batch run."""

    results: dict[K, R] = field(default_factory=dict)
    errors: dict[K, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)


def run_isolated(
    keys: Sequence[K],
    fn: Callable[[K], R],
    max_workers: int = 1,
    component: str = "batch",
) -> BatchOutcome[K, R]:
    """Run fn for every key; one failure never stops the others.

    Workers share whatever rate limiter fn uses, so parallelism here only
    overlaps parsing and I/O, never exceeds the per-source request rate.

    Args:
        keys: Items to process.
        fn: Work for a single item.
        max_workers: Thread count; 1 runs sequentially.
        component: Name used in log events.

    Returns:
        BatchOutcome with results and error messages by key.
    """
    log = logger.bind(component=component)
    outcome: BatchOutcome[K, R] = BatchOutcome()

    def record_error(key: K, error: Exception) -> None:
        log.error("batch_item_failed", key=str(key), error=str(error))
        outcome.errors[key] = f"{type(error).__name__}: {error}"

    if max_workers <= 1:
        for key in keys:
            try:
                outcome.results[key] = fn(key)
            except Exception as e:  # noqa: BLE001
                record_error(key, e)
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_key = {executor.submit(fn, key): key for key in keys}
            for future in as_completed(future_to_key):
                key = future_to_key[future]
                try:
                    outcome.results[key] = future.result()
                except Exception as e:  # noqa: BLE001
                    record_error(key, e)

    log.info(
        "batch_complete",
        total=len(keys),
        succeeded=outcome.succeeded,
        failed=outcome.failed,
    )
    return outcome
