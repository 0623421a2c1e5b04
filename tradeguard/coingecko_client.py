"""
Async CoinGecko v3 API client.

Fetches market listings, trending coins, coin details and global data,
and reshapes them into the camelCase payloads served by the API.
Also wraps the alternative.me Fear & Greed index.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from tradeguard.upstream import PARSE_ERRORS, NotFoundError, UpstreamClient

logger = logging.getLogger(__name__)

# Most common symbols, to avoid a search round-trip.
SYMBOL_TO_ID = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binancecoin",
    "SOL": "solana",
    "XRP": "ripple",
    "DOGE": "dogecoin",
    "ADA": "cardano",
    "AVAX": "avalanche-2",
    "DOT": "polkadot",
    "MATIC": "matic-network",
    "LINK": "chainlink",
    "LTC": "litecoin",
    "SHIB": "shiba-inu",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "XLM": "stellar",
    "NEAR": "near",
    "APT": "aptos",
    "ARB": "arbitrum",
    "OP": "optimism",
    "FIL": "filecoin",
    "HBAR": "hedera-hashgraph",
    "VET": "vechain",
    "ALGO": "algorand",
    "FTM": "fantom",
    "SAND": "the-sandbox",
    "MANA": "decentraland",
    "AAVE": "aave",
    "MKR": "maker",
    "CRV": "curve-dao-token",
}

COIN_PARAMS = {
    "localization": "false",
    "tickers": "false",
    "community_data": "false",
    "developer_data": "false",
    "sparkline": "false",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _usd(section: Any) -> Any:
    if isinstance(section, dict):
        return section.get("usd")
    return None


def _market_row(coin: dict) -> dict:
    return {
        "id": coin["id"],
        "symbol": (coin.get("symbol") or "").upper(),
        "name": coin.get("name"),
        "image": coin.get("image"),
        "currentPrice": coin.get("current_price"),
        "marketCap": coin.get("market_cap"),
        "marketCapRank": coin.get("market_cap_rank"),
        "volume24h": coin.get("total_volume"),
        "high24h": coin.get("high_24h"),
        "low24h": coin.get("low_24h"),
        "priceChange24h": coin.get("price_change_24h"),
        "priceChangePercent1h": coin.get("price_change_percentage_1h_in_currency"),
        "priceChangePercent24h": coin.get("price_change_percentage_24h_in_currency"),
        "priceChangePercent7d": coin.get("price_change_percentage_7d_in_currency"),
        "circulatingSupply": coin.get("circulating_supply"),
        "totalSupply": coin.get("total_supply"),
        "ath": coin.get("ath"),
        "athChangePercent": coin.get("ath_change_percentage"),
        "athDate": coin.get("ath_date"),
    }


def _trending_row(entry: dict) -> dict:
    item = entry["item"]
    return {
        "id": item["id"],
        "symbol": (item.get("symbol") or "").upper(),
        "name": item.get("name"),
        "marketCapRank": item.get("market_cap_rank"),
        "image": item.get("small"),
        "score": item.get("score"),
    }


def _search_row(coin: dict) -> dict:
    return {
        "id": coin["id"],
        "symbol": (coin.get("symbol") or "").upper(),
        "name": coin.get("name"),
        "image": coin.get("large"),
        "marketCapRank": coin.get("market_cap_rank"),
    }


def _coin_details(coin: dict) -> dict:
    market = coin.get("market_data") or {}
    links = coin.get("links") or {}
    description = (coin.get("description") or {}).get("en") or ""
    homepage = links.get("homepage") or []
    return {
        "id": coin["id"],
        "symbol": (coin.get("symbol") or "").upper(),
        "name": coin.get("name"),
        "image": (coin.get("image") or {}).get("large"),
        "description": description[:500],
        "marketData": {
            "currentPrice": _usd(market.get("current_price")),
            "marketCap": _usd(market.get("market_cap")),
            "marketCapRank": coin.get("market_cap_rank"),
            "volume24h": _usd(market.get("total_volume")),
            "high24h": _usd(market.get("high_24h")),
            "low24h": _usd(market.get("low_24h")),
            "priceChangePercent24h": market.get("price_change_percentage_24h"),
            "priceChangePercent7d": market.get("price_change_percentage_7d"),
            "priceChangePercent30d": market.get("price_change_percentage_30d"),
            "circulatingSupply": market.get("circulating_supply"),
            "totalSupply": market.get("total_supply"),
            "maxSupply": market.get("max_supply"),
            "fullyDilutedValuation": _usd(market.get("fully_diluted_valuation")),
            "ath": _usd(market.get("ath")),
            "athDate": _usd(market.get("ath_date")),
            "athChangePercentage": _usd(market.get("ath_change_percentage")),
            "atl": _usd(market.get("atl")),
            "atlDate": _usd(market.get("atl_date")),
            "atlChangePercentage": _usd(market.get("atl_change_percentage")),
        },
        "links": {
            "homepage": homepage[0] if homepage else None,
            "blockchain": [s for s in links.get("blockchain_site") or [] if s],
            "twitter": links.get("twitter_screen_name"),
            "reddit": links.get("subreddit_url"),
        },
        "categories": coin.get("categories"),
        "timestamp": _now_iso(),
    }


def _global(body: dict) -> dict:
    data = body["data"]
    share = data.get("market_cap_percentage") or {}
    return {
        "activeCryptocurrencies": data.get("active_cryptocurrencies"),
        "markets": data.get("markets"),
        "totalMarketCap": _usd(data.get("total_market_cap")),
        "totalVolume24h": _usd(data.get("total_volume")),
        "marketCapPercentage": {"btc": share.get("btc"), "eth": share.get("eth")},
        "marketCapChangePercent24h": data.get("market_cap_change_percentage_24h_usd"),
        "timestamp": _now_iso(),
    }


class CoinGeckoClient(UpstreamClient):
    """Async client for the CoinGecko v3 API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: Optional[str] = None,
        fear_greed_url: str = "https://api.alternative.me/fng/",
    ) -> None:
        super().__init__(http_client, base_url, upstream="CoinGecko")
        self._api_key = api_key
        self._fear_greed_url = fear_greed_url

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self._api_key:
            headers["x-cg-demo-api-key"] = self._api_key
        return headers

    async def get_top_cryptos(self, page: int = 1, limit: int = 100) -> dict:
        """Top cryptocurrencies by market cap."""
        params = {
            "vs_currency": "usd",
            "order": "market_cap_desc",
            "per_page": limit,
            "page": page,
            "sparkline": "false",
            "price_change_percentage": "1h,24h,7d",
        }
        body = await self._get("/coins/markets", params, timeout=10.0)
        try:
            cryptos = [_market_row(coin) for coin in body]
        except PARSE_ERRORS as exc:
            raise self._malformed("markets", exc) from exc
        return {
            "cryptos": cryptos,
            "page": page,
            "limit": limit,
            "count": len(cryptos),
            "timestamp": _now_iso(),
        }

    async def get_trending(self) -> dict:
        body = await self._get("/search/trending", timeout=10.0)
        try:
            coins = [_trending_row(entry) for entry in body["coins"]]
        except PARSE_ERRORS as exc:
            raise self._malformed("trending", exc) from exc
        return {"coins": coins, "count": len(coins), "timestamp": _now_iso()}

    async def search(self, query: str) -> dict:
        """Search coins by name or symbol. Returns at most 10 matches."""
        body = await self._get("/search", {"query": query}, timeout=5.0)
        try:
            coins = [_search_row(coin) for coin in body["coins"][:10]]
        except PARSE_ERRORS as exc:
            raise self._malformed("search", exc) from exc
        return {"coins": coins, "timestamp": _now_iso()}

    async def resolve_coin_id(self, symbol: str) -> str:
        """
        Map a ticker symbol to a CoinGecko coin id.

        Static map first, then a symbol search, then a search by
        capitalized name. Exact symbol matches win over the top result.
        Raises NotFoundError if nothing matches.
        """
        upper = symbol.upper()
        if upper in SYMBOL_TO_ID:
            return SYMBOL_TO_ID[upper]

        for query in (symbol, symbol[:1].upper() + symbol[1:].lower()):
            coins = (await self.search(query))["coins"]
            if coins:
                exact = next((c for c in coins if c["symbol"] == upper), None)
                return (exact or coins[0])["id"]

        raise NotFoundError(
            f"Cryptocurrency '{symbol}' not found on CoinGecko.", upstream="CoinGecko"
        )

    async def get_coin_details(self, symbol: str) -> dict:
        coin_id = await self.resolve_coin_id(symbol)
        return await self.get_coin_details_by_id(coin_id)

    async def get_coin_details_by_id(self, coin_id: str) -> dict:
        params = {**COIN_PARAMS, "market_data": "true"}
        coin = await self._get(f"/coins/{coin_id}", params, timeout=10.0)
        try:
            return _coin_details(coin)
        except PARSE_ERRORS as exc:
            raise self._malformed("coin", exc) from exc

    async def get_logo_url(self, symbol: str) -> Optional[str]:
        """Logo URL for a symbol, or None if the coin is unknown."""
        coin_id = SYMBOL_TO_ID.get(symbol.upper())
        if coin_id is None:
            coins = (await self.search(symbol))["coins"]
            return coins[0]["image"] if coins else None

        params = {**COIN_PARAMS, "market_data": "false"}
        coin = await self._get(f"/coins/{coin_id}", params, timeout=5.0)
        image = coin.get("image") if isinstance(coin, dict) else None
        if not isinstance(image, dict):
            return None
        return image.get("large") or image.get("small")

    async def get_global(self) -> dict:
        body = await self._get("/global", timeout=5.0)
        try:
            return _global(body)
        except PARSE_ERRORS as exc:
            raise self._malformed("global", exc) from exc

    async def get_fear_greed(self) -> dict:
        """
        Current Fear & Greed index from alternative.me.

        Never raises: on failure a placeholder payload is returned.
        """
        try:
            response = await self._http.get(
                self._fear_greed_url, params={"limit": 1}, timeout=5.0
            )
            response.raise_for_status()
            entry = response.json()["data"][0]
            now = datetime.now(timezone.utc).timestamp()
            return {
                "value": int(entry["value"]),
                "classification": entry["value_classification"],
                "timestamp": datetime.fromtimestamp(
                    int(entry["timestamp"]), tz=timezone.utc
                ).isoformat(),
                "nextUpdate": datetime.fromtimestamp(
                    now + int(entry.get("time_until_update") or 0), tz=timezone.utc
                ).isoformat(),
            }
        except (httpx.HTTPError, *PARSE_ERRORS) as exc:
            logger.warning("Fear & Greed API error: %s", exc)
            return {
                "value": None,
                "classification": "Unknown",
                "error": "Failed to fetch Fear & Greed Index",
                "timestamp": _now_iso(),
            }

    async def proxy(self, path: str, params: Any = None) -> Any:
        """Raw passthrough GET against the CoinGecko API."""
        return await self._get(path, params, timeout=15.0)
