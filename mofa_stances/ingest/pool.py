"""
Batched async task runner.

Items are processed in fixed-size batches. Every task in a batch starts
concurrently after a small random delay; the next batch starts only when
every task in the current one has settled. Task exceptions are returned
in place of results, so one failure never aborts a batch.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def chunked(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into consecutive lists of at most ``size`` elements."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class BatchRunner:
    """Run an async worker over items with bounded concurrency."""

    def __init__(
        self,
        batch_size: int,
        max_jitter_seconds: float = 0.0,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rand: Optional[random.Random] = None,
    ):
        if batch_size < 1:
            raise ValueError(f"batch size must be >= 1, got {batch_size}")
        self.batch_size = batch_size
        self.max_jitter_seconds = max(0.0, max_jitter_seconds)
        self._sleep = sleep or asyncio.sleep
        self._rand = rand or random.Random()

    async def _run_one(self, item: T, worker: Callable[[T], Awaitable[R]]) -> R:
        if self.max_jitter_seconds > 0:
            await self._sleep(self._rand.uniform(0, self.max_jitter_seconds))
        return await worker(item)

    async def run(
        self,
        items: Sequence[T],
        worker: Callable[[T], Awaitable[R]],
    ) -> List[Union[R, BaseException]]:
        """
        Process all items, batch by batch.

        Returns:
            One entry per item, in input order: the worker's result, or the
            exception it raised
        """
        results: List[Union[R, BaseException]] = []
        batches = chunked(items, self.batch_size)

        for n, batch in enumerate(batches, start=1):
            logger.info("Batch %d/%d (%d items)", n, len(batches), len(batch))
            settled = await asyncio.gather(
                *(self._run_one(item, worker) for item in batch),
                return_exceptions=True,
            )
            for item, outcome in zip(batch, settled):
                if isinstance(outcome, BaseException):
                    logger.error("Task for %r raised %s: %s", item, type(outcome).__name__, outcome)
            results.extend(settled)

        return results
