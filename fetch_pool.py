"""
Concurrency-bounded fetch orchestrator

A fixed number of asyncio workers drain one shared iterator over the input,
so no item is handled twice, and write each result into the slot matching
the item's original position.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterator, List, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


async def run_bounded(items: Sequence[T], worker: Callable[[T], Awaitable[R]], concurrency: int,
                      on_result: Optional[Callable[[int, int], None]] = None) -> List[R]:
    """Apply ``worker`` to every item with at most ``concurrency`` calls in flight.

    Results come back in input order regardless of completion order.
    ``on_result(done, total)`` is called after each item finishes.
    """
    total = len(items)
    results: List[Optional[R]] = [None] * total
    if total == 0:
        return []

    cursor: Iterator[Tuple[int, T]] = iter(enumerate(items))
    done = 0

    async def drain():
        nonlocal done
        # next() on a shared iterator is atomic between awaits, so every index is claimed once
        for index, item in cursor:
            results[index] = await worker(item)
            done += 1
            if on_result:
                on_result(done, total)

    width = max(1, min(concurrency, total))
    logger.debug(f"Running {total} items on {width} workers")
    await asyncio.gather(*(drain() for _ in range(width)))
    return results  # type: ignore[return-value]
