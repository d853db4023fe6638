from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Tuple, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def _cancelled(cancel: Optional[asyncio.Event]) -> bool:
    return cancel is not None and cancel.is_set()


class StartSpacer:
    """Spaces successive acquire() returns at least `delay` seconds apart."""

    def __init__(self, delay: float) -> None:
        self.delay = max(0.0, float(delay))
        self._lock = asyncio.Lock()
        self._next_start = 0.0

    async def acquire(self) -> None:
        async with self._lock:
            wait = self._next_start - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_start = time.monotonic() + self.delay


async def throttled_map(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    delay: float = 0.0,
    concurrency: int = 1,
    cancel: Optional[asyncio.Event] = None,
) -> AsyncIterator[Tuple[T, R]]:
    """
    Run `worker` over `items` under a request-rate ceiling, yielding
    (item, result) pairs in input order.

    concurrency=1: item N+1 starts only after item N returned and `delay`
    seconds passed. concurrency>1: up to `concurrency` calls in flight,
    with call starts spaced `delay` apart.

    `cancel` is checked before every item; once set, nothing new starts.
    In pool mode, calls that already finished are still yielded.
    Exceptions raised by `worker` propagate to the consumer.
    """
    items = list(items)
    if concurrency <= 1:
        for index, item in enumerate(items):
            if index and delay > 0:
                await asyncio.sleep(delay)
            if _cancelled(cancel):
                logger.info("throttled run cancelled after %d/%d items", index, len(items))
                return
            yield item, await worker(item)
        return

    spacer = StartSpacer(delay)
    semaphore = asyncio.Semaphore(concurrency)

    async def _run(item: T) -> Optional[R]:
        async with semaphore:
            await spacer.acquire()
            if _cancelled(cancel):
                raise asyncio.CancelledError()
            return await worker(item)

    tasks: List[asyncio.Task] = [asyncio.ensure_future(_run(item)) for item in items]
    try:
        for index, (item, task) in enumerate(zip(items, tasks)):
            if _cancelled(cancel):
                logger.info("throttled run cancelled after %d/%d items", index, len(items))
                # results that already landed are kept; only unfinished work is dropped
                for done_item, done_task in zip(items[index:], tasks[index:]):
                    if done_task.done() and not done_task.cancelled() and done_task.exception() is None:
                        yield done_item, done_task.result()
                return
            try:
                result = await task
            except asyncio.CancelledError:
                if _cancelled(cancel):
                    continue
                raise
            yield item, result
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
