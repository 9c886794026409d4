"""Async utilities for running blocking HTTP calls inside reconciliations."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import Transient

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Module-level semaphore, initialized once per process
_semaphore: asyncio.Semaphore | None = None


def init_semaphore(max_parallel: int = 5) -> None:
    """Bound the number of HTTP calls in flight. Call once at startup."""
    global _semaphore
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.info(
        "API request semaphore initialized: max_parallel=%d",
        max_parallel,
    )


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a blocking function in a worker thread.

    Args:
        func: Blocking function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a blocking function in a worker thread, bounded by the semaphore.

    Falls back to unbounded if the semaphore was never initialized.

    Cancelling the awaiting task stops the wait but not the worker thread;
    the HTTP client's own timeouts bound how long the thread keeps running.

    Example:
        body, version = await run_sync_limited(
            client.read, path, token=token.bearer
        )
    """
    if _semaphore is None:
        return await asyncio.to_thread(func, *args, **kwargs)
    async with _semaphore:
        return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_retrying(
    func: Callable[..., T],
    *args: Any,
    attempts: int = 3,
    backoff: float = 0.5,
    **kwargs: Any,
) -> T:
    """Like ``run_sync_limited`` but retries ``Transient`` failures.

    Only ``Transient`` is retried: it is raised when a request never reached
    the server, so repeating it cannot duplicate a mutation.  Every other
    error propagates on the first occurrence.

    Args:
        func: Blocking function to call
        attempts: Total attempts, including the first
        backoff: Exponential backoff multiplier in seconds (0 disables waiting)
    """
    result: T
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=backoff, min=backoff, max=backoff * 12),
        retry=retry_if_exception_type(Transient),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            result = await run_sync_limited(func, *args, **kwargs)
    return result
