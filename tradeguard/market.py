"""
Market service: cache keys, TTL policy and payload shaping per endpoint.

Each operation builds a cache key from its parameters and hands an upstream
fetch to the read-through cache. CoinGecko-backed data uses the stale
fallback since that API rate limits aggressively.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

from tradeguard.binance_client import BinanceClient
from tradeguard.coingecko_client import CoinGeckoClient
from tradeguard.config import AppConfig
from tradeguard.read_through import CacheResult, ReadThroughCache
from tradeguard.upstream import NotFoundError, UpstreamError

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 250
MAX_HISTORY_LIMIT = 1000


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def placeholder_logo(symbol: str) -> str:
    return f"https://ui-avatars.com/api/?name={quote(symbol)}&background=random&size=64"


def _settled(result: Any, what: str) -> Any:
    """Unwrap a gather(return_exceptions=True) slot; upstream failures become None."""
    if isinstance(result, UpstreamError):
        logger.warning("%s unavailable: %s", what, result)
        return None
    if isinstance(result, BaseException):
        raise result
    return result


def _float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _ticker_summary(symbol: str, ticker: Optional[dict]) -> Optional[dict]:
    if ticker is None:
        return None
    return {
        "symbol": symbol,
        "price": _float(ticker.get("lastPrice")),
        "change24h": _float(ticker.get("priceChangePercent")),
        "volume24h": _float(ticker.get("volume")),
        "high24h": _float(ticker.get("highPrice")),
        "low24h": _float(ticker.get("lowPrice")),
    }


def _flatten_details(symbol: str, details: dict, spot: Optional[dict]) -> dict:
    """Flatten CoinGecko details into the shape the dashboard expects."""
    market = details.get("marketData") or {}
    links = details.get("links") or {}
    current_price = market.get("currentPrice")
    if current_price is None and spot is not None:
        current_price = spot.get("price")
    return {
        "symbol": symbol,
        "name": details.get("name"),
        "image": details.get("image"),
        "description": details.get("description"),
        "marketCap": market.get("marketCap"),
        "fullyDilutedValuation": market.get("fullyDilutedValuation"),
        "volume24h": market.get("volume24h"),
        "circulatingSupply": market.get("circulatingSupply"),
        "totalSupply": market.get("totalSupply"),
        "maxSupply": market.get("maxSupply"),
        "currentPrice": current_price,
        "high24h": market.get("high24h"),
        "low24h": market.get("low24h"),
        # No 7d range upstream; the 24h range stands in.
        "high7d": market.get("high24h"),
        "low7d": market.get("low24h"),
        "ath": market.get("ath"),
        "athDate": market.get("athDate"),
        "athChangePercentage": market.get("athChangePercentage"),
        "atl": market.get("atl"),
        "atlDate": market.get("atlDate"),
        "atlChangePercentage": market.get("atlChangePercentage"),
        "priceChangePercent24h": market.get("priceChangePercent24h"),
        "priceChangePercent7d": market.get("priceChangePercent7d"),
        "priceChangePercent30d": market.get("priceChangePercent30d"),
        "marketCapRank": market.get("marketCapRank"),
        "links": {
            "homepage": [links["homepage"]] if links.get("homepage") else [],
            "whitepaper": links.get("whitepaper") or "",
            "twitter": links.get("twitter") or "",
            "facebook": links.get("facebook") or "",
            "reddit": links.get("reddit") or "",
            "telegram": links.get("telegram") or "",
        },
        "timestamp": details.get("timestamp"),
    }


class MarketService:
    """
    Produces market-data payloads for the HTTP layer.

    Holds no state of its own; everything cached lives in the injected
    ReadThroughCache.
    """

    def __init__(
        self,
        config: AppConfig,
        coingecko: CoinGeckoClient,
        binance: BinanceClient,
        cache: ReadThroughCache,
    ) -> None:
        self._config = config
        self._coingecko = coingecko
        self._binance = binance
        self._cache = cache

    @property
    def cache(self) -> ReadThroughCache:
        return self._cache

    async def binance_symbols(self) -> CacheResult:
        async def fetch() -> list[dict]:
            info = await self._binance.get_exchange_info()
            return info["symbols"]

        return await self._cache.get_or_set(
            "binance_symbols", fetch, self._config.ttls.binance_symbols
        )

    async def crypto_list(self, page: int = 1, limit: int = 100) -> CacheResult:
        limit = min(limit, MAX_LIST_LIMIT)
        return await self._cache.get_or_stale(
            f"crypto_list_{page}_{limit}",
            lambda: self._coingecko.get_top_cryptos(page, limit),
            self._config.ttls.crypto_list,
        )

    async def trending(self) -> CacheResult:
        return await self._cache.get_or_stale(
            "crypto_trending", self._coingecko.get_trending, self._config.ttls.trending
        )

    async def logo_url(self, symbol: str) -> str:
        """Logo URL for symbol; a generated placeholder when none can be found."""
        upper = symbol.upper()

        async def fetch() -> str:
            url = await self._coingecko.get_logo_url(upper)
            if not url:
                raise NotFoundError(f"No logo for {upper}", upstream="CoinGecko")
            return url

        try:
            result = await self._cache.get_or_set(f"logo_{upper}", fetch, self._config.ttls.logo)
        except UpstreamError as exc:
            logger.info("Using placeholder logo for %s: %s", upper, exc)
            return placeholder_logo(upper)
        return result.data

    async def crypto_details(self, symbol: str) -> CacheResult:
        """
        Details for one coin.

        CoinGecko supplies the details and must succeed; the Binance spot
        price is optional and only fills a missing current price.
        """
        upper = symbol.upper()

        async def fetch() -> dict:
            spot, details = await asyncio.gather(
                self._binance.get_price(f"{upper}USDT"),
                self._coingecko.get_coin_details(upper),
                return_exceptions=True,
            )
            if isinstance(details, BaseException):
                raise details
            return _flatten_details(upper, details, _settled(spot, f"Binance price for {upper}"))

        return await self._cache.get_or_stale(
            f"crypto_{upper}", fetch, self._config.ttls.crypto_details
        )

    async def history(self, symbol: str, interval: str = "1h", limit: int = 100) -> CacheResult:
        upper = symbol.upper()
        limit = min(limit, MAX_HISTORY_LIMIT)
        # Minute candles go stale faster.
        ttl = self._config.ttls.history_minutes if "m" in interval else self._config.ttls.history
        return await self._cache.get_or_set(
            f"history_{upper}_{interval}_{limit}",
            lambda: self._binance.get_klines(f"{upper}USDT", interval, limit),
            ttl,
        )

    async def market_summary(self) -> CacheResult:
        async def fetch() -> dict:
            btc, eth, global_data = await asyncio.gather(
                self._binance.get_ticker("BTCUSDT"),
                self._binance.get_ticker("ETHUSDT"),
                self._coingecko.get_global(),
                return_exceptions=True,
            )
            return {
                "bitcoin": _ticker_summary("BTC", _settled(btc, "BTC ticker")),
                "ethereum": _ticker_summary("ETH", _settled(eth, "ETH ticker")),
                "global": _settled(global_data, "Global market data"),
                "timestamp": _now_iso(),
            }

        return await self._cache.get_or_set(
            "market_summary", fetch, self._config.ttls.market_summary
        )

    async def fear_greed(self) -> CacheResult:
        return await self._cache.get_or_set(
            "fear_greed", self._coingecko.get_fear_greed, self._config.ttls.fear_greed
        )

    async def tickers(self, symbols: list[str]) -> CacheResult:
        symbols = [s.strip().upper() for s in symbols if s.strip()]

        async def one(symbol: str) -> dict:
            try:
                data = await self._binance.get_ticker(f"{symbol}USDT")
            except UpstreamError as exc:
                return {"symbol": symbol, "error": str(exc)}
            return {"symbol": symbol, **data, "error": None}

        async def fetch() -> dict:
            results = await asyncio.gather(*(one(s) for s in symbols))
            return {"tickers": list(results), "count": len(results), "timestamp": _now_iso()}

        return await self._cache.get_or_set(
            f"tickers_{'_'.join(symbols)}", fetch, self._config.ttls.tickers
        )

    async def proxy(self, path: str, query_string: str = "") -> CacheResult:
        """Cached passthrough to CoinGecko, keyed by the full upstream URL."""
        url = self._coingecko.url_for(path)
        if query_string:
            url = f"{url}?{query_string}"
        return await self._cache.get_or_stale(
            url,
            lambda: self._coingecko.proxy(path, query_string or None),
            self._config.ttls.proxy,
        )
