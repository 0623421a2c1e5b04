"""
Read-through fetch orchestration on top of TieredCache.

get_or_set() serves fresh hits and populates the cache on a miss.
get_or_stale() additionally falls back to the stale tier when the
upstream is rate limited or failing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from tradeguard.cache import TieredCache
from tradeguard.upstream import RateLimitedError, UpstreamError

logger = logging.getLogger(__name__)

RATE_LIMIT_EXTENSION = 600

FetchFn = Callable[[], Awaitable[Any]]


class FailureKind(str, Enum):
    rate_limited = "rate_limited"
    transport = "transport"


class CacheStatus(str, Enum):
    """Values of the X-Cache response header."""

    hit = "HIT"
    miss = "MISS"
    stale_rate_limited = "STALE429"
    stale_error = "STALEERR"


def classify_failure(exc: UpstreamError) -> FailureKind:
    """Map an upstream failure onto the two classes the fallback cares about."""
    if isinstance(exc, RateLimitedError) or exc.status_code == 429:
        return FailureKind.rate_limited
    return FailureKind.transport


@dataclass
class CacheResult:
    """Data plus how it was obtained."""

    data: Any
    cached: bool
    stale: bool = False
    status: CacheStatus = CacheStatus.miss

    def annotate(self) -> Any:
        """Merge cached/stale flags into a dict payload; other payloads pass through."""
        if not isinstance(self.data, dict):
            return self.data
        body = {**self.data, "cached": self.cached}
        if self.stale:
            body["stale"] = True
        return body


class ReadThroughCache:
    """
    Per-call decision: fresh hit, fetch and store, or stale fallback.

    Concurrent misses for the same key are not coalesced; each caller makes
    its own upstream attempt. No retries happen here.
    """

    def __init__(
        self, cache: TieredCache, rate_limit_extension: float = RATE_LIMIT_EXTENSION
    ) -> None:
        self._cache = cache
        self._rate_limit_extension = rate_limit_extension

    @property
    def cache(self) -> TieredCache:
        return self._cache

    async def get_or_set(
        self, key: str, fetch_fn: FetchFn, ttl: Optional[float] = None
    ) -> CacheResult:
        """Return the fresh value for key, or fetch, store and return it."""
        entry = self._cache.get_entry(key)
        if entry is not None:
            return CacheResult(data=entry.value, cached=True, status=CacheStatus.hit)

        data = await fetch_fn()
        self._cache.set(key, data, ttl)
        return CacheResult(data=data, cached=False, status=CacheStatus.miss)

    async def get_or_stale(
        self, key: str, fetch_fn: FetchFn, ttl: Optional[float] = None
    ) -> CacheResult:
        """
        Like get_or_set(), but serve the stale copy when the upstream fails.

        On rate limiting the stale value is also put back into the fresh
        tier for rate_limit_extension seconds. If no stale copy exists the
        original UpstreamError propagates.
        """
        try:
            return await self.get_or_set(key, fetch_fn, ttl)
        except UpstreamError as exc:
            kind = classify_failure(exc)
            entry = self._cache.get_stale(key)
            if entry is None:
                logger.warning("No stale fallback for %s (%s): %s", key, kind.value, exc)
                raise

            if kind is FailureKind.rate_limited:
                self._cache.rearm(key, entry.value, self._rate_limit_extension)
                logger.info(
                    "Rate limited on %s, serving stale data for %ss",
                    key,
                    self._rate_limit_extension,
                )
                status = CacheStatus.stale_rate_limited
            else:
                logger.info("Upstream failed for %s, serving stale data: %s", key, exc)
                status = CacheStatus.stale_error

            return CacheResult(data=entry.value, cached=True, stale=True, status=status)
