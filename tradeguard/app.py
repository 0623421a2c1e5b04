"""
FastAPI application for the TradeGuard market-data API.

Lifespan manages the httpx client, the two-tier cache, its sweeper task
and the market service. Routes live under /api/health, /api/crypto,
/api/market and /api/coingecko.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from tradeguard.binance_client import BinanceClient
from tradeguard.cache import TieredCache, sweep_periodically
from tradeguard.coingecko_client import CoinGeckoClient
from tradeguard.config import load_config
from tradeguard.market import MarketService
from tradeguard.models import CacheStatsModel, ErrorResponse, HealthResponse, PingResponse
from tradeguard.read_through import CacheResult, ReadThroughCache
from tradeguard.upstream import UpstreamError

logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()

ENDPOINTS = {
    "crypto": {
        "list": "GET /api/crypto/list?page=1&limit=100",
        "trending": "GET /api/crypto/trending",
        "details": "GET /api/crypto/:symbol",
        "history": "GET /api/crypto/:symbol/history?interval=1h&limit=100",
        "logo": "GET /api/crypto/logo/:symbol",
        "binanceSymbols": "GET /api/crypto/binance-symbols",
    },
    "market": {
        "summary": "GET /api/market/summary",
        "fearGreed": "GET /api/market/fear-greed",
        "tickers": "GET /api/market/tickers?symbols=BTC,ETH,SOL",
    },
    "proxy": {
        "coingecko": "GET /api/coingecko/*",
    },
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: load config, create HTTP client, cache, market service."""
    # Configure logging
    log_level = os.environ.get("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config()
    logger.info(
        "Loaded config: default_ttl=%d, stale_ttl=%d, rate_limit_extension=%d",
        config.cache.default_ttl,
        config.cache.stale_ttl,
        config.cache.rate_limit_extension,
    )

    cache = TieredCache(
        default_ttl=config.cache.default_ttl,
        stale_ttl=config.cache.stale_ttl,
    )
    sweeper = asyncio.create_task(
        sweep_periodically(cache, config.cache.check_period, config.cache.log_stats)
    )

    try:
        async with httpx.AsyncClient() as http_client:
            coingecko = CoinGeckoClient(
                http_client=http_client,
                base_url=config.coingecko_base_url,
                api_key=config.coingecko_api_key,
                fear_greed_url=config.fear_greed_url,
            )
            binance = BinanceClient(http_client=http_client, base_url=config.binance_base_url)
            app.state.market_service = MarketService(
                config=config,
                coingecko=coingecko,
                binance=binance,
                cache=ReadThroughCache(cache, config.cache.rate_limit_extension),
            )
            logger.info("TradeGuard API ready")
            yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        app.state.market_service = None


app = FastAPI(
    title="TradeGuard Market Data API",
    version="1.0.0",
    description="""
Cryptocurrency market data aggregated from CoinGecko and Binance.

## Caching

Responses are cached in-process with a per-endpoint TTL. When an upstream
is rate limited or failing, the last good response (up to one hour old) is
served instead and flagged with `"stale": true`.

The `X-Cache` response header reports how a response was produced:
`HIT`, `MISS`, `STALE429` (served stale because of upstream rate limiting)
or `STALEERR` (served stale because the upstream failed).
    """.strip(),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "crypto", "description": "Per-coin data"},
        {"name": "market", "description": "Market-wide data"},
        {"name": "proxy", "description": "Cached CoinGecko passthrough"},
        {"name": "health", "description": "Service health check"},
    ],
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.environ.get("FRONTEND_URL", "http://localhost:5173")],
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["X-Cache"],
)


# ---------------------------------------------------------------------------
# Dependencies and error handling
# ---------------------------------------------------------------------------


def get_market_service(request: Request) -> MarketService:
    """The MarketService built by the lifespan."""
    service = getattr(request.app.state, "market_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return service


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    """An upstream failure with nothing cached to fall back on."""
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.http_status,
        content=ErrorResponse(error=str(exc)).model_dump(),
    )


def _respond(result: CacheResult, response: Response):
    response.headers["X-Cache"] = result.status.value
    return result.annotate()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health", tags=["health"], summary="Liveness probe")
async def health():
    """Always returns HTTP 200 with a simple JSON response."""
    return {"status": "healthy"}


@app.get(
    "/api/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health and cache statistics",
)
async def api_health(request: Request):
    """
    Service status, uptime and cache counters.

    Cache statistics are omitted while the service is starting up.
    """
    service = getattr(request.app.state, "market_service", None)
    stats = None
    if service is not None:
        stats = CacheStatsModel.from_stats(service.cache.cache.stats())
    return HealthResponse(
        timestamp=datetime.now(timezone.utc),
        uptime=round(time.monotonic() - STARTED_AT, 3),
        cache=stats,
        endpoints=ENDPOINTS,
    )


@app.get("/api/health/ping", response_model=PingResponse, tags=["health"])
async def ping():
    return PingResponse(pong=int(time.time() * 1000))


@app.get("/api/crypto/binance-symbols", tags=["crypto"], summary="Tradable USDT pairs")
async def binance_symbols(
    response: Response, service: MarketService = Depends(get_market_service)
):
    result = await service.binance_symbols()
    response.headers["X-Cache"] = result.status.value
    return {"symbols": result.data, "cached": result.cached}


@app.get("/api/crypto/list", tags=["crypto"], summary="Top coins by market cap")
async def crypto_list(
    response: Response,
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, description="Capped at 250"),
    service: MarketService = Depends(get_market_service),
):
    return _respond(await service.crypto_list(page, limit), response)


@app.get("/api/crypto/trending", tags=["crypto"], summary="Trending coins")
async def crypto_trending(
    response: Response, service: MarketService = Depends(get_market_service)
):
    return _respond(await service.trending(), response)


@app.get(
    "/api/crypto/logo/{symbol}",
    tags=["crypto"],
    summary="Redirect to a coin logo",
    response_class=RedirectResponse,
)
async def crypto_logo(symbol: str, service: MarketService = Depends(get_market_service)):
    """Redirects to the coin's logo, or to a generated placeholder."""
    return RedirectResponse(await service.logo_url(symbol))


@app.get(
    "/api/crypto/{symbol}",
    tags=["crypto"],
    summary="Coin details",
    responses={
        404: {"model": ErrorResponse, "description": "Unknown symbol"},
        429: {"model": ErrorResponse, "description": "Rate limited, nothing cached"},
    },
)
async def crypto_details(
    symbol: str, response: Response, service: MarketService = Depends(get_market_service)
):
    """
    Details for one coin, merged from CoinGecko and Binance.

    Served from the stale cache with `"stale": true` when CoinGecko is
    rate limited or down and an earlier response is still held.
    """
    return _respond(await service.crypto_details(symbol), response)


@app.get("/api/crypto/{symbol}/history", tags=["crypto"], summary="Candlestick history")
async def crypto_history(
    symbol: str,
    response: Response,
    interval: str = Query("1h"),
    limit: int = Query(100, ge=1, description="Capped at 1000"),
    service: MarketService = Depends(get_market_service),
):
    return _respond(await service.history(symbol, interval, limit), response)


@app.get("/api/market/summary", tags=["market"], summary="BTC, ETH and global market data")
async def market_summary(
    response: Response, service: MarketService = Depends(get_market_service)
):
    return _respond(await service.market_summary(), response)


@app.get("/api/market/fear-greed", tags=["market"], summary="Fear & Greed index")
async def fear_greed(response: Response, service: MarketService = Depends(get_market_service)):
    return _respond(await service.fear_greed(), response)


@app.get("/api/market/tickers", tags=["market"], summary="24h tickers for several symbols")
async def tickers(
    response: Response,
    symbols: str = Query("BTC,ETH,SOL", description="Comma-separated symbols"),
    service: MarketService = Depends(get_market_service),
):
    return _respond(await service.tickers(symbols.split(",")), response)


@app.get("/api/coingecko/{path:path}", tags=["proxy"], summary="Cached CoinGecko passthrough")
async def coingecko_proxy(
    path: str, request: Request, service: MarketService = Depends(get_market_service)
):
    """Returns the upstream JSON body unchanged; see the X-Cache header for provenance."""
    result = await service.proxy(path, request.url.query)
    return JSONResponse(content=result.data, headers={"X-Cache": result.status.value})
