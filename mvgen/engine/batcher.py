"""Sequential batches of concurrent units of work.

Items are split into consecutive slices of ``concurrency`` length. Every slice
runs all of its units concurrently and is fully joined before the next slice
starts, which bounds burst submission against rate-limited providers and gives
a clean point between batches for progress reporting and cooldown delays.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

BatchHook = Callable[[Sequence[Any], int, int], Any]

logger = logging.getLogger(__name__)


def plan_batches(total: int, concurrency: int, start_index: int = 0) -> List[Tuple[int, int]]:
    """Return ``(start, end)`` slice bounds for every batch."""
    if concurrency < 1:
        raise ValueError(f"concurrency must be a positive integer, got {concurrency}")
    first = max(0, min(start_index, total))
    batch_count = math.ceil((total - first) / concurrency)
    bounds: List[Tuple[int, int]] = []
    for batch_index in range(batch_count):
        start = first + batch_index * concurrency
        bounds.append((start, min(start + concurrency, total)))
    return bounds


async def run_batched(
    items: List[T],
    unit_of_work: Callable[[T], Awaitable[Any]],
    *,
    concurrency: int = 3,
    start_index: int = 0,
    on_batch_start: Optional[BatchHook] = None,
    on_batch_complete: Optional[BatchHook] = None,
) -> List[T]:
    """Run ``unit_of_work`` over ``items`` in sequential, internally concurrent batches.

    Units are expected to handle their own failures. Hook exceptions are not
    caught and abort the run. ``on_batch_complete`` may return an awaitable,
    which is awaited before the next batch starts.

    Returns ``items`` itself, so callers read results from the mutated records
    in their original order.
    """
    bounds = plan_batches(len(items), concurrency, start_index)
    total_batches = len(bounds)

    for batch_number, (start, end) in enumerate(bounds, start=1):
        batch = items[start:end]
        if on_batch_start is not None:
            await _call_hook(on_batch_start, batch, batch_number, total_batches)

        results = await asyncio.gather(
            *(unit_of_work(item) for item in batch),
            return_exceptions=True,
        )
        for offset, result in enumerate(results):
            if isinstance(result, BaseException):
                logger.error(
                    "Unit of work for item %d escaped its failure handling: %s",
                    start + offset,
                    result,
                    exc_info=result,
                )

        if on_batch_complete is not None:
            await _call_hook(on_batch_complete, batch, batch_number, total_batches)

    return items


def cooldown_hook(delay_sec: float, then: Optional[BatchHook] = None) -> BatchHook:
    """Build an ``on_batch_complete`` hook that pauses between batches.

    No delay follows the last batch. ``then`` runs first, so progress is
    reported before the pause.
    """

    async def _hook(batch: Sequence[Any], batch_number: int, total_batches: int) -> None:
        if then is not None:
            await _call_hook(then, batch, batch_number, total_batches)
        if delay_sec > 0 and batch_number < total_batches:
            logger.info("Cooling down %.1fs before batch %d/%d", delay_sec, batch_number + 1, total_batches)
            await asyncio.sleep(delay_sec)

    return _hook


async def _call_hook(hook: BatchHook, batch: Sequence[Any], batch_number: int, total_batches: int) -> None:
    result = hook(batch, batch_number, total_batches)
    if inspect.isawaitable(result):
        await result
