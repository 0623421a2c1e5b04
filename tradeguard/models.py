"""
Pydantic response models for the service-level endpoints.

Market-data payloads are passed through as JSON objects; only the shapes
owned by this service are modelled here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from tradeguard.cache import CacheStats


class CacheStatsModel(BaseModel):
    """Counters of the in-process cache."""

    keys: int = Field(description="Live keys in the fresh tier")
    hits: int = Field(description="Fresh-tier hits since start")
    misses: int = Field(description="Fresh-tier misses since start")
    stale_hits: int = Field(default=0, description="Reads answered from the stale tier")
    stale_keys: int = Field(default=0, description="Live keys in the stale tier")

    @classmethod
    def from_stats(cls, stats: CacheStats) -> "CacheStatsModel":
        return cls(
            keys=stats.keys,
            hits=stats.hits,
            misses=stats.misses,
            stale_hits=stats.stale_hits,
            stale_keys=stats.stale_keys,
        )


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    status: str = "healthy"
    timestamp: datetime
    uptime: float = Field(description="Seconds since the process started")
    cache: Optional[CacheStatsModel] = None
    endpoints: dict[str, dict[str, str]] = Field(default_factory=dict)


class PingResponse(BaseModel):
    pong: int = Field(description="Server time in epoch milliseconds")


class ErrorResponse(BaseModel):
    """Body returned when an upstream failure has no cached fallback."""

    error: str
