"""Per-tenant mutual exclusion for conflict-prone mutations.

Some resource kinds (shipping zones, shipping methods) are rejected with
conflict errors when two mutations for the same tenant overlap.  The
``TenantMutexRegistry`` hands out one ``asyncio.Lock`` per key and keeps it
for the life of the process.

- Same key: callers run one at a time, in arrival order.
- Different keys: no coordination at all.
- A deadline expiring while queued raises ``Cancelled``; the callable is
  not run and the next waiter still gets the lock.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar, Union

from ..errors import Cancelled

T = TypeVar("T")
logger = logging.getLogger(__name__)


class TenantMutexRegistry:
    """Lazily created, never destroyed locks keyed by tenant key.

    Locks bind to the running event loop on first contention, so one
    registry serves one event loop.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
            logger.debug("Created tenant lock %s", key)
        return lock

    def __contains__(self, key: object) -> bool:
        return key in self._locks

    def keys(self) -> list[str]:
        return sorted(self._locks)

    @asynccontextmanager
    async def hold(
        self, key: str, *, timeout: float | None = None
    ) -> AsyncIterator[None]:
        """Hold the lock for *key* for the body of the ``async with``.

        Args:
            key: Tenant lock key.
            timeout: Seconds to wait for the lock; ``None`` waits forever.

        Raises:
            Cancelled: If the lock was not acquired within *timeout*.
        """
        lock = self.lock_for(key)
        try:
            async with asyncio.timeout(timeout):
                await lock.acquire()
        except TimeoutError:
            raise Cancelled(
                f"timed out after {timeout}s waiting for lock {key}"
            ) from None
        logger.debug("Acquired tenant lock %s", key)
        try:
            yield
        finally:
            lock.release()
            logger.debug("Released tenant lock %s", key)

    async def with_lock(
        self,
        key: str,
        fn: Callable[..., Union[Awaitable[T], T]],
        *args: Any,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> T:
        """Run ``fn(*args, **kwargs)`` with exclusive access for *key*.

        *fn* may be a coroutine function or a plain callable.
        """
        async with self.hold(key, timeout=timeout):
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                return await result
            return result  # type: ignore[return-value]
