"""Single-flight OAuth2 token cache shared across reconciliations.

``TokenCache.get_token()`` returns a cached token while it is fresh (more
than ``refresh_margin`` seconds before expiry).  Otherwise exactly one fetch
runs per tenant+credential fingerprint; concurrent callers await that same
fetch ("single flight") and receive its token or its error.

- The fetch is bounded by the deadline of the caller that started it; if it
  expires, every waiter of that flight gets ``Cancelled``.
- A waiter whose own deadline expires first gets ``Cancelled`` alone; the
  flight keeps running for the others.
- Failures (``AuthenticationFailed`` included) are never cached: the next
  call after a failed flight starts a new one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from ..core.async_utils import run_sync_retrying
from ..errors import Cancelled
from .models import TenantCredentials, TenantToken

logger = logging.getLogger(__name__)

TokenFetcher = Callable[[str, TenantCredentials], TenantToken]


class TokenCache:
    """Process-wide token cache.

    Args:
        fetch: Blocking token request, e.g.
            ``OAuthTokenClient.request_token``.  Runs in a worker thread.
        refresh_margin: Seconds before expiry at which a token is refreshed.
        timeout: Default deadline in seconds for ``get_token``.
        max_retries: Attempts for ``Transient`` failures of the fetch.
        backoff: Retry backoff multiplier in seconds.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        fetch: TokenFetcher,
        *,
        refresh_margin: float = 30.0,
        timeout: float | None = 30.0,
        max_retries: int = 3,
        backoff: float = 0.5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._fetch = fetch
        self.refresh_margin = refresh_margin
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self._clock = clock
        self._tokens: dict[str, TenantToken] = {}
        self._inflight: dict[str, asyncio.Task[TenantToken]] = {}

    async def get_token(
        self,
        tenant: str,
        credentials: TenantCredentials,
        *,
        timeout: float | None = None,
    ) -> TenantToken:
        """Return a fresh token for *tenant*, fetching at most once at a time.

        Args:
            tenant: Tenant name.
            credentials: Client credentials or a pre-issued token.
            timeout: Deadline in seconds (defaults to the cache timeout).

        Raises:
            AuthenticationFailed: The token endpoint rejected the credentials.
            Cancelled: The deadline expired first.
        """
        if credentials.access_token is not None:
            return TenantToken(token=credentials.access_token)

        deadline = self.timeout if timeout is None else timeout
        key = credentials.fingerprint(tenant)

        cached = self._tokens.get(key)
        if cached is not None and cached.is_fresh(
            self._clock(), self.refresh_margin
        ):
            return cached

        flight = self._inflight.get(key)
        if flight is None:
            logger.debug("Starting token request for tenant %s", tenant)
            flight = asyncio.create_task(
                self._run_flight(key, tenant, credentials, deadline)
            )
            flight.add_done_callback(_consume_result)
            self._inflight[key] = flight
        else:
            logger.debug("Joining in-flight token request for %s", tenant)

        try:
            async with asyncio.timeout(deadline):
                return await asyncio.shield(flight)
        except TimeoutError:
            raise Cancelled(
                f"timed out after {deadline}s waiting for a token "
                f"for tenant {tenant}"
            ) from None

    def invalidate(self, tenant: str, credentials: TenantCredentials) -> None:
        """Drop the cached token so the next call fetches a new one."""
        self._tokens.pop(credentials.fingerprint(tenant), None)

    @property
    def size(self) -> int:
        """Number of cached tokens."""
        return len(self._tokens)

    async def _run_flight(
        self,
        key: str,
        tenant: str,
        credentials: TenantCredentials,
        deadline: float | None,
    ) -> TenantToken:
        try:
            try:
                async with asyncio.timeout(deadline):
                    token = await run_sync_retrying(
                        self._fetch,
                        tenant,
                        credentials,
                        attempts=self.max_retries,
                        backoff=self.backoff,
                    )
            except TimeoutError:
                raise Cancelled(
                    f"token request for tenant {tenant} timed out "
                    f"after {deadline}s"
                ) from None
            self._tokens[key] = token
            logger.info("Obtained access token for tenant %s", tenant)
            return token
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]


def _consume_result(task: asyncio.Task[TenantToken]) -> None:
    # Waiters may all have given up; keep asyncio from warning about an
    # exception nobody retrieved.
    if not task.cancelled():
        task.exception()
