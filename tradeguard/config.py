"""
Configuration loading for the market-data API.

Loads non-secret settings from config.yaml, secrets and TTL overrides
from environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

# Environment overrides for individual TTLs (seconds).
TTL_ENV_OVERRIDES = {
    "CACHE_TTL_CRYPTO_LIST": "crypto_list",
    "CACHE_TTL_CRYPTO_DETAILS": "crypto_details",
    "CACHE_TTL_MARKET_SUMMARY": "market_summary",
}


class CacheSettings(BaseModel):
    """Cache store and fallback behaviour."""

    default_ttl: int = Field(default=60, ge=0)
    stale_ttl: int = Field(default=3600, ge=1)
    rate_limit_extension: int = Field(default=600, ge=1)
    check_period: int = Field(default=120, ge=1)
    log_stats: bool = True


class TTLPolicy(BaseModel):
    """Fresh-tier TTL in seconds per data category."""

    binance_symbols: int = Field(default=300, ge=0)
    crypto_list: int = Field(default=120, ge=0)
    trending: int = Field(default=300, ge=0)
    logo: int = Field(default=86400, ge=0)
    crypto_details: int = Field(default=60, ge=0)
    history: int = Field(default=120, ge=0)
    history_minutes: int = Field(default=30, ge=0)
    market_summary: int = Field(default=30, ge=0)
    fear_greed: int = Field(default=600, ge=0)
    tickers: int = Field(default=15, ge=0)
    proxy: int = Field(default=600, ge=0)


class AppConfig(BaseModel):
    """Application configuration. Secrets come from env vars, rest from YAML."""

    # Secrets (from environment only)
    coingecko_api_key: Optional[str] = None

    # Upstreams
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    binance_base_url: str = "https://api.binance.com/api/v3"
    fear_greed_url: str = "https://api.alternative.me/fng/"

    cache: CacheSettings = Field(default_factory=CacheSettings)
    ttls: TTLPolicy = Field(default_factory=TTLPolicy)


def load_config(config_path: str | None = None) -> AppConfig:
    """
    Load configuration from YAML file + environment variables.

    Args:
        config_path: Path to config.yaml. If None, reads CONFIG_PATH env var
                     (default: config.yaml in current directory).

    Returns:
        Validated AppConfig instance.
    """
    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config.yaml")

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}

    ttls = dict(raw.get("ttls") or {})
    for env_name, field_name in TTL_ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            ttls[field_name] = value

    config_data = {
        **raw,
        "ttls": ttls,
        "coingecko_api_key": os.environ.get("COINGECKO_API_KEY"),
    }

    return AppConfig(**config_data)
