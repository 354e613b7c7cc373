"""Access-token cache and the retry-with-refresh wrapper for Calil calls."""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..config import TOKEN_TTL_SECONDS
from ..models.session import Session
from ..models.upstream import AUTH_FAILURES, AuthExpired, Ok, UpstreamResult
from .ensurer import SessionEnsurer
from .singleflight import SingleFlight

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

TokenFetcher = Callable[[str], Awaitable[UpstreamResult]]
Operation = Callable[[str, str], Awaitable[UpstreamResult]]


@dataclass(frozen=True)
class _CachedToken:
    value: str
    cookie_header: str
    expires_at: float


class AccessTokenCache:
    """Lazily fetched yomitai token, bound to the cookie that produced it.

    Concurrent requests for the same cookie with no usable token share one
    fetch; a request for another cookie never joins it.
    """

    def __init__(
        self,
        fetch_token: TokenFetcher,
        ttl: float = TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch_token = fetch_token
        self._ttl = ttl
        self._clock = clock
        self._cached: Optional[_CachedToken] = None
        self._flight = SingleFlight()

    def _current(self, cookie_header: str) -> Optional[str]:
        cached = self._cached
        if cached is None:
            return None
        if cached.cookie_header != cookie_header or self._clock() >= cached.expires_at:
            self._cached = None
            return None
        return cached.value

    async def get(self, cookie_header: str) -> UpstreamResult:
        token = self._current(cookie_header)
        if token is not None:
            return Ok(token)
        return await self._flight.do(
            lambda: self._fetch(cookie_header), key=f"token:{cookie_header}"
        )

    async def _fetch(self, cookie_header: str) -> UpstreamResult:
        # Another fetch may have landed while this one was queued
        token = self._current(cookie_header)
        if token is not None:
            return Ok(token)

        logger.info("Fetching yomitai access token")
        result = await self._fetch_token(cookie_header)
        if isinstance(result, Ok):
            self._cached = _CachedToken(
                value=result.value,
                cookie_header=cookie_header,
                expires_at=self._clock() + self._ttl,
            )
        return result

    def invalidate(self, _session: Optional[Session] = None) -> None:
        if self._cached is not None:
            logger.info("Access token invalidated")
        self._cached = None


class RetryWithRefresh:
    """Runs an authenticated Calil call, refreshing credentials once on auth failure.

    ``TokenExpired`` drops only the token; ``AuthExpired`` also forces a new
    login before the single retry. The second outcome is returned as-is.
    """

    def __init__(self, ensurer: SessionEnsurer, tokens: AccessTokenCache):
        self._ensurer = ensurer
        self._tokens = tokens
        # A new session makes any cached token stale
        ensurer.add_refresh_listener(tokens.invalidate)

    async def call(self, operation: Operation) -> UpstreamResult:
        result = await self._attempt(operation, force_session=False)
        if not isinstance(result, AUTH_FAILURES):
            return result

        force_session = isinstance(result, AuthExpired)
        logger.info(
            f"Calil call failed with {type(result).__name__}: {result.message}; "
            f"retrying once (force_session={force_session})"
        )
        self._tokens.invalidate()
        return await self._attempt(operation, force_session=force_session)

    async def _attempt(self, operation: Operation, force_session: bool) -> UpstreamResult:
        session = await self._ensurer.ensure(force=force_session)
        cookie_header = session.cookie_header()

        token = await self._tokens.get(cookie_header)
        if not isinstance(token, Ok):
            return token

        return await operation(cookie_header, token.value)

    async def run(self, operation: Operation):
        """Like ``call`` but returns the value or raises the matching exception."""
        result = await self.call(operation)
        return result.unwrap()
