"""
Async Binance public API client.

Prices, 24h tickers, klines and the list of tradable USDT pairs.
Raises UpstreamError on failures, including unparseable payloads.
"""

from __future__ import annotations

from datetime import datetime, timezone

import httpx

from tradeguard.upstream import PARSE_ERRORS, UpstreamClient


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class BinanceClient(UpstreamClient):
    """Async client for the Binance v3 REST API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = "https://api.binance.com/api/v3",
    ) -> None:
        super().__init__(http_client, base_url, upstream="Binance")

    async def get_price(self, symbol: str) -> dict:
        """Last price for a trading pair such as BTCUSDT."""
        body = await self._get("/ticker/price", {"symbol": symbol}, timeout=5.0)
        try:
            price = float(body["price"])
        except PARSE_ERRORS as exc:
            raise self._malformed("price", exc) from exc
        return {
            "symbol": body.get("symbol", symbol),
            "price": price,
            "timestamp": _now_iso(),
        }

    async def get_ticker(self, symbol: str) -> dict:
        """Raw 24h rolling ticker for a trading pair."""
        return await self._get("/ticker/24hr", {"symbol": symbol}, timeout=5.0)

    async def get_klines(self, symbol: str, interval: str = "1h", limit: int = 100) -> dict:
        params = {"symbol": symbol, "interval": interval, "limit": limit}
        rows = await self._get("/klines", params, timeout=10.0)
        try:
            klines = [
                {
                    "openTime": k[0],
                    "open": float(k[1]),
                    "high": float(k[2]),
                    "low": float(k[3]),
                    "close": float(k[4]),
                    "volume": float(k[5]),
                    "closeTime": k[6],
                    "quoteVolume": float(k[7]),
                    "trades": k[8],
                    "takerBuyBaseVolume": float(k[9]),
                    "takerBuyQuoteVolume": float(k[10]),
                }
                for k in rows
            ]
        except PARSE_ERRORS as exc:
            raise self._malformed("klines", exc) from exc
        return {
            "symbol": symbol,
            "interval": interval,
            "klines": klines,
            "count": len(klines),
            "timestamp": _now_iso(),
        }

    async def get_exchange_info(self) -> dict:
        """Exchange metadata, restricted to USDT pairs currently trading."""
        body = await self._get("/exchangeInfo", timeout=10.0)
        try:
            symbols = body["symbols"]
            usdt = [
                {
                    "symbol": s["symbol"],
                    "baseAsset": s["baseAsset"],
                    "quoteAsset": s["quoteAsset"],
                    "status": s["status"],
                }
                for s in symbols
                if s.get("quoteAsset") == "USDT" and s.get("status") == "TRADING"
            ]
        except PARSE_ERRORS as exc:
            raise self._malformed("exchange info", exc) from exc
        return {
            "timezone": body.get("timezone"),
            "serverTime": body.get("serverTime"),
            "symbolCount": len(symbols),
            "symbols": usdt,
        }
