"""
Two-tier in-memory TTL cache.

Every write lands in a short-lived "fresh" tier and a long-lived "stale"
tier under the same key. Normal reads only see the fresh tier; the stale
tier is a fallback source for when the upstream is failing or throttling.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL = 60
STALE_TTL = 3600


@dataclass
class CacheEntry:
    """A cached value with its absolute expiry (None = never expires)."""

    value: Any
    expires_at: Optional[float]

    def is_live(self, now: float) -> bool:
        return self.expires_at is None or now <= self.expires_at


@dataclass
class CacheStats:
    """Cumulative counters since the cache was created."""

    keys: int
    hits: int
    misses: int
    stale_hits: int = 0
    stale_keys: int = 0


class TieredCache:
    """
    In-memory key-value store with a fresh tier and a stale tier.

    - get_entry() / get_stale(): the live entry of one tier, None if absent.
    - get(): fresh value, optionally falling back to the stale tier.
    - set(): writes both tiers (fresh with the given TTL, stale with stale_ttl).
    - rearm(): writes the fresh tier only.
    - delete() / has() / keys() / flush(): fresh tier only.

    A TTL of 0 means the entry never expires.
    """

    def __init__(self, default_ttl: float = DEFAULT_TTL, stale_ttl: float = STALE_TTL) -> None:
        self._default_ttl = default_ttl
        self._stale_ttl = stale_ttl
        self._fresh: dict[str, CacheEntry] = {}
        self._stale: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._stale_hits = 0
        self._clock = time.monotonic  # overridable for testing

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    @property
    def stale_ttl(self) -> float:
        return self._stale_ttl

    def _expiry(self, ttl: float) -> Optional[float]:
        if ttl == 0:
            return None
        return self._clock() + ttl

    def _live(self, tier: dict[str, CacheEntry], key: str) -> Optional[CacheEntry]:
        """Return the live entry for key, dropping it if it has expired."""
        entry = tier.get(key)
        if entry is None:
            return None
        if not entry.is_live(self._clock()):
            del tier[key]
            return None
        return entry

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """
        Return the live fresh-tier entry for key, or None.

        Use this rather than get() when None is a legitimate cached value.
        """
        with self._lock:
            entry = self._live(self._fresh, key)
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
            return entry

    def get_stale(self, key: str) -> Optional[CacheEntry]:
        """Return the live stale-tier entry for key, or None. Not counted as a miss."""
        with self._lock:
            entry = self._live(self._stale, key)
            if entry is not None:
                self._stale_hits += 1
        if entry is not None:
            logger.info("Serving stale cache entry for %s", key)
        return entry

    def get(self, key: str, allow_stale: bool = False) -> Any:
        """
        Return the fresh value for key, or None.

        With allow_stale, a fresh miss falls through to the stale tier.
        """
        entry = self.get_entry(key)
        if entry is None and allow_stale:
            entry = self.get_stale(key)
        return None if entry is None else entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """
        Store value in both tiers. Returns whether the fresh write succeeded.

        The stale tier is written even when the fresh TTL is rejected.
        """
        if ttl is None:
            ttl = self._default_ttl
        with self._lock:
            self._stale[key] = CacheEntry(value=value, expires_at=self._expiry(self._stale_ttl))
            if ttl < 0:
                logger.warning("Rejected negative TTL %s for %s", ttl, key)
                return False
            self._fresh[key] = CacheEntry(value=value, expires_at=self._expiry(ttl))
        return True

    def rearm(self, key: str, value: Any, ttl: float) -> bool:
        """Put value back into the fresh tier without touching the stale tier."""
        if ttl < 0:
            return False
        with self._lock:
            self._fresh[key] = CacheEntry(value=value, expires_at=self._expiry(ttl))
        return True

    def delete(self, key: str) -> int:
        """Remove key from the fresh tier. The stale copy stays available."""
        with self._lock:
            entry = self._fresh.pop(key, None)
        if entry is None or not entry.is_live(self._clock()):
            return 0
        return 1

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live(self._fresh, key) is not None

    def keys(self) -> list[str]:
        """Live keys of the fresh tier."""
        now = self._clock()
        with self._lock:
            return [k for k, e in self._fresh.items() if e.is_live(now)]

    def stats(self) -> CacheStats:
        now = self._clock()
        with self._lock:
            return CacheStats(
                keys=sum(1 for e in self._fresh.values() if e.is_live(now)),
                hits=self._hits,
                misses=self._misses,
                stale_hits=self._stale_hits,
                stale_keys=sum(1 for e in self._stale.values() if e.is_live(now)),
            )

    def flush(self) -> None:
        """Empty the fresh tier. Stale entries survive so fallbacks keep working."""
        with self._lock:
            self._fresh.clear()

    def clear(self) -> None:
        """Remove all entries from both tiers and reset counters."""
        with self._lock:
            self._fresh.clear()
            self._stale.clear()
            self._hits = 0
            self._misses = 0
            self._stale_hits = 0

    def sweep(self) -> int:
        """Delete expired entries from both tiers. Returns how many were removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            for tier in (self._fresh, self._stale):
                expired = [k for k, e in tier.items() if not e.is_live(now)]
                for k in expired:
                    del tier[k]
                removed += len(expired)
        return removed


async def sweep_periodically(
    cache: TieredCache, interval: float, log_stats: bool = True
) -> None:
    """Sweep expired entries every `interval` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        removed = cache.sweep()
        if removed:
            logger.debug("Swept %d expired cache entries", removed)
        if log_stats:
            s = cache.stats()
            if s.keys > 0:
                logger.info(
                    "Cache keys=%d hits=%d misses=%d stale_hits=%d",
                    s.keys,
                    s.hits,
                    s.misses,
                    s.stale_hits,
                )
