# coinproxy/routers/market.py
from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from coinproxy.dispatcher import (
    RATE_LIMIT_STATUS,
    UPSTREAM_ERROR_STATUSES,
    ProxyDispatcher,
    Resolution,
    error_response,
    proxy_response,
)
from coinproxy.errors import InvalidRequest, ProxyError

router = APIRouter(tags=["market"])


def get_dispatcher(request: Request) -> ProxyDispatcher:
    """The dispatcher is owned by the app instance (set up in the lifespan)."""
    return request.app.state.dispatcher


@router.get("/api/market/prices")
async def current_prices(dispatcher: ProxyDispatcher = Depends(get_dispatcher)) -> JSONResponse:
    """Spot USD price per tracked asset: {"BTC": 50000.0, ...}."""
    try:
        res = await dispatcher.current_prices()
    except ProxyError as e:
        return error_response(e)
    body = {p.symbol: p.usd_price for p in res.payload}
    return proxy_response(body, res, dispatcher.cache.now())


@router.get("/api/market/chart")
async def chart(dispatcher: ProxyDispatcher = Depends(get_dispatcher)) -> JSONResponse:
    """Fixed 7-day BTC series as [{timestamp, price}, ...]."""
    try:
        res = await dispatcher.chart()
    except ProxyError as e:
        return error_response(e)
    body = [{"timestamp": p.timestamp, "price": p.price} for p in res.payload]
    return proxy_response(body, res, dispatcher.cache.now())


@router.get("/api/proxy/price-history")
async def price_history(
    id: str | None = Query(None, description="Provider id or ticker, e.g. bitcoin or BTC"),
    days: str | None = Query(None, description="Positive integer, default 7"),
    dispatcher: ProxyDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    try:
        res = await dispatcher.price_history(id, days)
    except ProxyError as e:
        return error_response(e, passthrough=UPSTREAM_ERROR_STATUSES)
    body = {"prices": [[p.timestamp, p.price] for p in res.payload]}
    return proxy_response(body, res, dispatcher.cache.now())


def _token_body(res: Resolution) -> dict:
    data = {
        p.symbol.lower(): {
            "price": p.usd_price,
            "marketCap": p.usd_market_cap,
            "volume24h": p.usd_24h_volume,
            "change24h": p.usd_24h_change_percent,
        }
        for p in res.payload
    }
    fetched = datetime.fromtimestamp(res.entry.fetched_at, tz=UTC).isoformat()
    return {"success": True, "data": data, "timestamp": fetched}


@router.get("/api/prices")
async def token_prices(
    tokens: str | None = Query(None, description="Comma-separated provider ids"),
    dispatcher: ProxyDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    """Price, market cap, volume and 24h change for a caller-chosen token set."""
    try:
        res = await dispatcher.token_prices(tokens)
    except ProxyError as e:
        return error_response(e, passthrough=RATE_LIMIT_STATUS)
    return proxy_response(_token_body(res), res, dispatcher.cache.now())


@router.post("/api/prices")
async def token_prices_batch(
    request: Request,
    dispatcher: ProxyDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    """Same payload as GET, for a JSON body of tickers: {"tokens": ["BTC", "ETH"]}."""
    try:
        try:
            body = await request.json()
        except ValueError:
            raise InvalidRequest("Request body must be JSON") from None
        if not isinstance(body, dict):
            raise InvalidRequest("tokens array is required")
        res = await dispatcher.token_prices_by_symbol(body.get("tokens"))
    except ProxyError as e:
        return error_response(e, passthrough=RATE_LIMIT_STATUS)
    return proxy_response(_token_body(res), res, dispatcher.cache.now())
