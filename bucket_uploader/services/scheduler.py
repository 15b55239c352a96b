"""Bounded-concurrency task runner with per-item retry.

Nothing in here knows about uploads: it takes a list of items and an async
function, runs at most ``max_parallel`` calls at once, retries each failing
item on its own, and returns the results in input order.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar, cast

from bucket_uploader.errors import RetryExhaustedError, UploadCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Fixed wait between two attempts of the same item
RETRY_DELAY_SECONDS = 5.0


def raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise UploadCancelledError("Upload cancelled")


async def _wait_before_retry(delay: float, cancel_event: asyncio.Event | None) -> None:
    """Sleep for ``delay`` seconds, waking early if the cancel event fires."""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except TimeoutError:
        return
    raise UploadCancelledError("Upload cancelled")


async def run_bounded(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    max_parallel: int,
    max_retries: int = 0,
    retry_delay: float = RETRY_DELAY_SECONDS,
    cancel_event: asyncio.Event | None = None,
    on_retry: Callable[[int, int, Exception], None] | None = None,
) -> list[R]:
    """Run ``fn`` over ``items`` with bounded parallelism and per-item retry.

    Args:
        items: Inputs, one call of ``fn`` each
        fn: Async work function
        max_parallel: Maximum number of items being worked on at once (>= 1)
        max_retries: Extra attempts allowed per item after its first failure (>= 0)
        retry_delay: Seconds to wait between two attempts of the same item
        cancel_event: Optional event; once set, no new attempt is started
        on_retry: Optional callback (index, failed_attempt, error) fired before each retry wait

    Returns:
        List where ``result[i]`` is the successful result for ``items[i]``

    Raises:
        RetryExhaustedError: An item failed ``max_retries + 1`` times. Remaining
            tasks are cancelled before this propagates.
        UploadCancelledError: ``cancel_event`` was set while work remained.
        ValueError: ``max_parallel`` or ``max_retries`` is out of range.
    """
    if max_parallel < 1:
        raise ValueError(f"max_parallel must be at least 1, got {max_parallel}")
    if max_retries < 0:
        raise ValueError(f"max_retries must not be negative, got {max_retries}")

    results: list[R | None] = [None] * len(items)
    semaphore = asyncio.Semaphore(max_parallel)

    async def run_with_retry(index: int, item: T) -> R:
        attempt = 0
        while True:
            raise_if_cancelled(cancel_event)
            attempt += 1
            try:
                return await fn(item)
            except UploadCancelledError:
                raise
            except Exception as e:
                if attempt > max_retries:
                    raise RetryExhaustedError(index, attempt) from e
                logger.warning(
                    "Task %d failed on attempt %d/%d, retrying in %.1fs: %s",
                    index,
                    attempt,
                    max_retries + 1,
                    retry_delay,
                    e,
                )
                if on_retry:
                    on_retry(index, attempt, e)
                await _wait_before_retry(retry_delay, cancel_event)

    async def worker(index: int, item: T) -> None:
        async with semaphore:
            results[index] = await run_with_retry(index, item)

    tasks = [asyncio.create_task(worker(i, item)) for i, item in enumerate(items)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    return cast(list[R], results)
