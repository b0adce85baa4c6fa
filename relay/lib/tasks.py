"""Fan-out / fan-in over a thread pool with index-ordered results.

Each submitted task's future is mapped to the index of the item it works
on. Results land in an index-addressed slot, so the returned values follow
submission order no matter which task finishes first. No shared
accumulator or lock is involved.

On the first failed task the remaining queued tasks are cancelled; tasks
already running finish on their own and their results are discarded.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

__all__ = ["TaskResult", "run_indexed", "collect_ordered"]

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class TaskResult(Generic[R]):
    """Outcome of one concurrent unit of work."""

    index: int
    value: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> R:
        """Return the value, re-raising the captured failure."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def collect_ordered(results: Sequence[TaskResult[R]]) -> List[R]:
    """Drain task results into a list ordered by task index.

    Raises the failure of the lowest-indexed failed task, if any.
    """
    ordered = sorted(results, key=lambda r: r.index)
    return [result.unwrap() for result in ordered]


def run_indexed(
    fn: Callable[[int, T], R],
    items: Sequence[T],
    *,
    max_workers: int = 4,
    label: str = "task",
) -> List[R]:
    """Run ``fn(index, item)`` for every item concurrently.

    Args:
        fn: Callable receiving the item's index and the item
        items: Work items; one task is spawned per item
        max_workers: Thread pool size (values < 1 are treated as 1)
        label: Name used in log messages ("fetch", "slice", "upload")

    Returns:
        One result per item, in the order of ``items``

    Raises:
        The exception raised by the first task observed to fail. It is
        raised after running siblings have finished; their results are
        discarded.
    """
    if not items:
        return []

    workers = max(1, min(max_workers, len(items)))
    slots: List[Optional[TaskResult[R]]] = [None] * len(items)

    logger.debug("Running %d %s task(s) with %d worker(s)", len(items), label, workers)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"relay-{label}") as executor:
        future_to_index: Dict[Future[R], int] = {
            executor.submit(fn, idx, item): idx for idx, item in enumerate(items)
        }
        pending = set(future_to_index)

        while pending:
            done, pending = wait(pending, return_when=FIRST_EXCEPTION)
            failure: Optional[TaskResult[R]] = None

            for future in done:
                idx = future_to_index[future]
                error = future.exception()
                if error is not None:
                    result: TaskResult[R] = TaskResult(index=idx, error=error)
                    if failure is None or idx < failure.index:
                        failure = result
                else:
                    result = TaskResult(index=idx, value=future.result())
                slots[idx] = result

            if failure is not None:
                cancelled = sum(1 for future in pending if future.cancel())
                logger.error(
                    "%s task %d failed: %s (cancelled %d queued, waiting on %d running)",
                    label,
                    failure.index,
                    failure.error,
                    cancelled,
                    len(pending) - cancelled,
                )
                # Leaving the executor block waits for running siblings
                raise failure.error  # type: ignore[misc]

    return collect_ordered([slot for slot in slots if slot is not None])
