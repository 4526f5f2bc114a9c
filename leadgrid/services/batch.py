from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from ..models.batch_result import BatchProgress, BatchResult, GroupMetrics, ItemOutcome

"""Batch executor.

Splits N items into consecutive groups of at most `batch_size`. Items of one
group run concurrently; groups run strictly one after another. A failing item
never aborts its group or the run: the exception is turned into a failed
ItemOutcome and the executor moves on.

Progress is reported once per completed group with
`done = min(done + len(group), total)`, so for 12 items and size 5 the
callback sees 5, 10, 12.
"""

__all__ = [
    "run_batches",
    "run_groups",
    "ProgressCallback",
    "MetricsCallback",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[BatchProgress], None]
MetricsCallback = Callable[[GroupMetrics], None]


def _check_batch_size(batch_size: int) -> None:
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1 (got {batch_size})")


async def _guarded(index: int, item: T, worker: Callable[[T], Awaitable[Any]]) -> ItemOutcome:
    try:
        return ItemOutcome.success(index, await worker(item))
    except Exception as e:  # 項目単位の失敗として記録し、グループは継続
        logger.debug("item %d failed: %s", index, e)
        return ItemOutcome.failure(index, e)


async def _execute(
    items: Sequence[T],
    run_group: Callable[[int, Sequence[T]], Awaitable[list[ItemOutcome]]],
    batch_size: int,
    on_progress: ProgressCallback | None,
    metrics_callback: MetricsCallback | None,
) -> BatchResult:
    total = len(items)
    outcomes: list[ItemOutcome] = []
    done = 0
    for group_index, start in enumerate(range(0, total, batch_size)):
        group = items[start:start + batch_size]
        start_time = time.time()
        outcomes.extend(await run_group(start, group))
        end_time = time.time()
        done = min(done + len(group), total)
        if metrics_callback is not None:
            metrics_callback(
                GroupMetrics(
                    group_index=group_index,
                    group_size=len(group),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )
        if on_progress is not None:
            on_progress(BatchProgress(done=done, total=total))
    return BatchResult.from_outcomes(outcomes)


async def run_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[Any]],
    *,
    batch_size: int,
    on_progress: ProgressCallback | None = None,
    metrics_callback: MetricsCallback | None = None,
) -> BatchResult:
    """Run `worker` once per item, `batch_size` items at a time.

    Raises:
        ValueError: batch_size < 1
    """
    _check_batch_size(batch_size)

    async def run_group(start: int, group: Sequence[T]) -> list[ItemOutcome]:
        return list(
            await asyncio.gather(*(_guarded(start + i, item, worker) for i, item in enumerate(group)))
        )

    return await _execute(items, run_group, batch_size, on_progress, metrics_callback)


async def run_groups(
    items: Sequence[T],
    group_worker: Callable[[Sequence[T]], Awaitable[Sequence[ItemOutcome | Any]]],
    *,
    batch_size: int,
    on_progress: ProgressCallback | None = None,
    metrics_callback: MetricsCallback | None = None,
) -> BatchResult:
    """Like run_batches, but one worker call covers a whole group.

    The worker returns one entry per item, in order. An entry that is an
    ItemOutcome is taken as-is (its index is rebased to the run); any other
    value counts as a success carrying that value. If the worker raises, every
    item of the group fails with that exception.
    """
    _check_batch_size(batch_size)

    async def run_group(start: int, group: Sequence[T]) -> list[ItemOutcome]:
        try:
            results = list(await group_worker(group))
        except Exception as e:
            logger.debug("group at %d failed: %s", start, e)
            return [ItemOutcome.failure(start + i, e) for i in range(len(group))]
        if len(results) != len(group):
            err = RuntimeError(
                f"group worker returned {len(results)} results for {len(group)} items"
            )
            return [ItemOutcome.failure(start + i, err) for i in range(len(group))]
        out: list[ItemOutcome] = []
        for i, r in enumerate(results):
            if isinstance(r, ItemOutcome):
                out.append(ItemOutcome(index=start + i, ok=r.ok, value=r.value, error=r.error))
            else:
                out.append(ItemOutcome.success(start + i, r))
        return out

    return await _execute(items, run_group, batch_size, on_progress, metrics_callback)
