"""
Generic batch runner with bounded concurrency.

Items are processed in sequential batches; inside a batch every item runs
concurrently and all outcomes are collected (one failure never cancels its
siblings). Items that share a key are only worked on once per run: later
items reuse the first one's task, finished or still in flight.

After each batch the optional `on_batch_end` callback may return a new size
for the next batch. The runner only clamps that value to [1, ceiling]; any
tuning policy belongs to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, List, Optional, Sequence, TypeVar

from vhskalender.model import BatchStats

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class ItemOutcome(Generic[T, R]):
    item: T
    index: int
    value: Optional[R] = None
    error: Optional[BaseException] = None
    duration_seconds: float = 0.0
    cache_hit: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchResult(Generic[T, R]):
    outcomes: List[ItemOutcome[T, R]]
    stats: BatchStats
    batch_sizes: List[int]

    @property
    def values(self) -> List[R]:
        return [o.value for o in self.outcomes if o.ok]  # type: ignore[misc]

    @property
    def errors(self) -> List[ItemOutcome[T, R]]:
        return [o for o in self.outcomes if not o.ok]


BatchEndCallback = Callable[[int, List[ItemOutcome[Any, Any]], float, int], Optional[int]]


def clamp_batch_size(size: int, ceiling: int) -> int:
    return max(1, min(int(size), max(1, ceiling)))


async def _timed(worker: Callable[[T], Awaitable[R]], item: T) -> tuple[Optional[R], Optional[BaseException], float]:
    started = time.perf_counter()
    try:
        value = await worker(item)
    except Exception as error:  # all-settle: the error becomes this item's outcome
        return None, error, time.perf_counter() - started
    return value, None, time.perf_counter() - started


async def process_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    batch_size: int,
    concurrency_ceiling: int,
    key: Optional[Callable[[T], Hashable]] = None,
    on_batch_end: Optional[BatchEndCallback] = None,
) -> BatchResult[T, R]:
    """
    Run `worker` over `items` in adaptive batches and return every outcome in item order.
    """
    started = time.perf_counter()
    outcomes: List[ItemOutcome[T, R]] = []
    batch_sizes: List[int] = []
    in_flight: Dict[Hashable, asyncio.Task] = {}

    size = clamp_batch_size(batch_size, concurrency_ceiling)
    position = 0
    batch_index = 0

    while position < len(items):
        batch_items = list(items[position:position + size])
        batch_sizes.append(len(batch_items))
        logger.debug("Starting batch %d with %d item(s)", batch_index, len(batch_items))
        batch_started = time.perf_counter()

        tasks: List[asyncio.Task] = []
        hits: List[bool] = []
        for item in batch_items:
            item_key = key(item) if key is not None else None
            if item_key is not None and item_key in in_flight:
                tasks.append(in_flight[item_key])
                hits.append(True)
                continue
            task = asyncio.ensure_future(_timed(worker, item))
            if item_key is not None:
                in_flight[item_key] = task
            tasks.append(task)
            hits.append(False)

        # a task may appear twice in the list (duplicate keys); gather handles that
        results = await asyncio.gather(*tasks)

        batch_outcomes: List[ItemOutcome[T, R]] = []
        for offset, (item, (value, error, duration), hit) in enumerate(zip(batch_items, results, hits)):
            batch_outcomes.append(
                ItemOutcome(
                    item=item,
                    index=position + offset,
                    value=value,
                    error=error,
                    duration_seconds=0.0 if hit else duration,
                    cache_hit=hit,
                )
            )
        outcomes.extend(batch_outcomes)

        batch_duration = time.perf_counter() - batch_started
        failed = sum(1 for o in batch_outcomes if not o.ok)
        logger.info(
            "Finished batch %d: %d ok, %d failed in %.0f ms",
            batch_index,
            len(batch_outcomes) - failed,
            failed,
            batch_duration * 1000,
        )

        position += len(batch_items)
        if on_batch_end is not None:
            revised = on_batch_end(batch_index, batch_outcomes, batch_duration, len(batch_items))
            if revised is not None:
                size = clamp_batch_size(revised, concurrency_ceiling)
        batch_index += 1

    succeeded = sum(1 for o in outcomes if o.ok)
    stats = BatchStats(
        attempted=len(outcomes),
        succeeded=succeeded,
        failed=len(outcomes) - succeeded,
        cache_hits=sum(1 for o in outcomes if o.cache_hit),
        duration_seconds=time.perf_counter() - started,
    )
    return BatchResult(outcomes=outcomes, stats=stats, batch_sizes=batch_sizes)
