"""
Proxy dispatcher: request parameters -> cache key -> cached or freshly fetched payload.

Policies (uniform across query shapes):
- Coalescing: at most one in-flight upstream fetch per cache key. The first miss
  starts a task; concurrent misses on the same key await that task (shielded, so
  a caller that goes away does not cancel the fetch for the others).
- Retry: UpstreamUnavailable without a status, or with a 5xx status, is retried
  `upstream_retries` times with exponential backoff. 4xx and malformed payloads
  are not retried.
- Stale fallback: when `serve_stale_on_error` is set and a refetch fails, the
  previous entry for the key (if any) is served and marked STALE.
- Failures are never cached.

This is the only layer that turns ProxyError into HTTP status codes.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass
from functools import partial
from typing import Any

from fastapi.responses import JSONResponse

from coinproxy.cache import CacheEntry, CacheKey, FreshnessCache
from coinproxy.catalog import (
    CHART_ASSET,
    CHART_DAYS,
    DEFAULT_HISTORY_DAYS,
    DEFAULT_TOKENS,
    TRACKED_ASSETS,
    resolve_asset_id,
    supported_token_ids,
    token_ids_for_symbols,
)
from coinproxy.errors import (
    InvalidRequest,
    MalformedUpstreamResponse,
    ProxyError,
    UpstreamUnavailable,
)
from coinproxy.normalizer import normalize_price_series, normalize_snapshot
from coinproxy.observability import CACHE_LOOKUPS
from coinproxy.schemas import CacheState, ErrorResponse
from coinproxy.settings import Settings
from coinproxy.upstream import UpstreamClient

logger = logging.getLogger("coinproxy.dispatcher")

QUERY_PRICES = "prices"
QUERY_CHART = "chart"
QUERY_HISTORY = "history"
QUERY_TOKENS = "tokens"

_DIGITS = re.compile(r"^\d+$")

Loader = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class Resolution:
    key: CacheKey
    entry: CacheEntry
    state: CacheState

    @property
    def payload(self) -> Any:
        return self.entry.payload


def _log_context(key: CacheKey, **fields: Any) -> dict[str, Any]:
    return {"query": key.query, "assets": ",".join(key.assets), **fields}


def parse_days(days: str | None) -> int | None:
    """None/blank -> None (caller applies the default); otherwise a positive integer."""
    if days is None or not days.strip():
        return None
    raw = days.strip()
    if not _DIGITS.match(raw) or int(raw) < 1:
        raise InvalidRequest(f"Invalid days parameter: {days!r} (expected a positive integer)")
    return int(raw)


class ProxyDispatcher:
    def __init__(
        self,
        client: UpstreamClient,
        cache: FreshnessCache,
        settings: Settings | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.cache = cache
        self.settings = settings or Settings()
        self._sleep = sleep
        self._inflight: dict[CacheKey, asyncio.Task] = {}

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    # ----------------------------------------------------------------------------------
    # Query shapes
    # ----------------------------------------------------------------------------------
    async def current_prices(self) -> Resolution:
        key = CacheKey(QUERY_PRICES, tuple(sorted(TRACKED_ASSETS)))

        async def load():
            raw = await self.client.fetch_snapshot(TRACKED_ASSETS)
            return normalize_snapshot(raw, TRACKED_ASSETS)

        return await self._resolve(key, load, self.settings.prices_ttl_sec)

    async def chart(self) -> Resolution:
        key = CacheKey(QUERY_CHART, (CHART_ASSET,), str(CHART_DAYS))

        async def load():
            raw = await self.client.fetch_chart(CHART_ASSET, CHART_DAYS)
            return normalize_price_series(raw)

        return await self._resolve(key, load, self.settings.chart_ttl_sec)

    async def price_history(self, asset_id: str | None, days: str | None = None) -> Resolution:
        # validation happens before anything touches the network
        if asset_id is None or not asset_id.strip():
            raise InvalidRequest("Missing id parameter")
        resolved = resolve_asset_id(asset_id)
        if resolved is None:
            raise InvalidRequest(f"Invalid id parameter: {asset_id!r}")
        n_days = parse_days(days)

        key = CacheKey(QUERY_HISTORY, (resolved,), None if n_days is None else str(n_days))

        async def load():
            raw = await self.client.fetch_history(resolved, n_days or DEFAULT_HISTORY_DAYS)
            return normalize_price_series(raw)

        return await self._resolve(key, load, self.settings.history_ttl_sec)

    async def token_prices(self, tokens: str | None = None) -> Resolution:
        ids = supported_token_ids(tokens) if tokens else DEFAULT_TOKENS
        if not ids:
            raise InvalidRequest("Invalid tokens. Use provider ids like: bitcoin,ethereum,solana")
        return await self._token_snapshot(ids)

    async def token_prices_by_symbol(self, symbols: Any) -> Resolution:
        """Batch form: a list of tickers such as ["BTC", "eth"]."""
        if not isinstance(symbols, list) or not symbols:
            raise InvalidRequest("tokens array is required")
        ids = token_ids_for_symbols(symbols)
        if not ids:
            raise InvalidRequest("No valid tokens provided")
        return await self._token_snapshot(ids)

    async def _token_snapshot(self, ids: tuple[str, ...]) -> Resolution:
        # sorted so the cached payload order matches the key, whoever asks first
        ids = tuple(sorted(ids))
        key = CacheKey(QUERY_TOKENS, ids)

        async def load():
            raw = await self.client.fetch_snapshot(ids)
            return normalize_snapshot(raw, ids)

        return await self._resolve(key, load, self.settings.tokens_ttl_sec)

    # ----------------------------------------------------------------------------------
    # Cache / coalescing core
    # ----------------------------------------------------------------------------------
    async def _resolve(self, key: CacheKey, load: Loader, ttl: float) -> Resolution:
        entry = self.cache.get(key)
        if entry is not None and entry.is_fresh(self.cache.now()):
            CACHE_LOOKUPS.labels(query=key.query, result=CacheState.HIT.value).inc()
            return Resolution(key, entry, CacheState.HIT)

        try:
            fresh = await self._fetch_coalesced(key, load, ttl)
        except (UpstreamUnavailable, MalformedUpstreamResponse):
            if not self.settings.serve_stale_on_error:
                raise
            prior = self.cache.get(key)
            if prior is None:
                raise
            logger.warning(
                "serving stale %s entry after upstream failure (age %.1fs)",
                key.query,
                prior.age(self.cache.now()),
                extra=_log_context(key),
            )
            CACHE_LOOKUPS.labels(query=key.query, result=CacheState.STALE.value).inc()
            return Resolution(key, prior, CacheState.STALE)

        return Resolution(key, fresh, CacheState.MISS)

    async def _fetch_coalesced(self, key: CacheKey, load: Loader, ttl: float) -> CacheEntry:
        task = self._inflight.get(key)
        if task is None or task.done():
            CACHE_LOOKUPS.labels(query=key.query, result=CacheState.MISS.value).inc()
            task = asyncio.create_task(self._refresh(key, load, ttl))
            self._inflight[key] = task
            task.add_done_callback(partial(self._forget, key))
        else:
            CACHE_LOOKUPS.labels(query=key.query, result="COALESCED").inc()
        return await asyncio.shield(task)

    def _forget(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # mark the outcome as retrieved even if every waiter went away
        if not task.cancelled():
            task.exception()

    async def _refresh(self, key: CacheKey, load: Loader, ttl: float) -> CacheEntry:
        attempt = 0
        while True:
            try:
                payload = await load()
            except UpstreamUnavailable as exc:
                if not exc.retryable or attempt >= self.settings.upstream_retries:
                    logger.warning(
                        "upstream unavailable for %s %s (%s, status=%s, attempts=%d): %s",
                        key.query,
                        ",".join(key.assets),
                        exc.code.value,
                        exc.status_code,
                        attempt + 1,
                        exc.message,
                        extra=_log_context(key, status_code=exc.status_code, attempt=attempt + 1),
                    )
                    raise
                delay = self.settings.retry_backoff_sec * (2**attempt)
                attempt += 1
                logger.info(
                    "retrying %s in %.2fs (attempt %d)",
                    key.query,
                    delay,
                    attempt + 1,
                    extra=_log_context(key, attempt=attempt + 1),
                )
                await self._sleep(delay)
                continue
            except MalformedUpstreamResponse as exc:
                # distinct from plain unavailability so schema drift shows up in logs
                logger.error(
                    "malformed upstream payload for %s: %s",
                    key.query,
                    exc.message,
                    extra=_log_context(key),
                )
                raise
            return self.cache.put(key, payload, ttl)


# --------------------------------------------------------------------------------------
# HTTP mapping
# --------------------------------------------------------------------------------------
# every upstream 4xx/5xx, for routes that mirror the provider status
UPSTREAM_ERROR_STATUSES = range(400, 600)
# token routes only surface rate limiting; anything else is a 500
RATE_LIMIT_STATUS = (429,)


def error_status(exc: ProxyError, *, passthrough: Collection[int] = ()) -> int:
    """400 for bad input; an upstream status if it is in `passthrough`; otherwise 500."""
    if isinstance(exc, InvalidRequest):
        return 400
    if (
        isinstance(exc, UpstreamUnavailable)
        and exc.status_code is not None
        and exc.status_code in passthrough
    ):
        return exc.status_code
    return 500


def error_message(exc: ProxyError) -> str:
    if isinstance(exc, InvalidRequest):
        return exc.message
    if isinstance(exc, UpstreamUnavailable):
        if exc.timed_out:
            return "Upstream provider timed out"
        if exc.status_code == 429:
            return "Rate limit exceeded. Please try again in a moment."
        return "Failed to fetch from upstream provider"
    if isinstance(exc, MalformedUpstreamResponse):
        return "Upstream provider returned an unexpected response"
    return "Internal server error"


def error_response(exc: ProxyError, *, passthrough: Collection[int] = ()) -> JSONResponse:
    if isinstance(exc, InvalidRequest):
        logger.info("rejected request: %s", exc.message)
    return JSONResponse(
        status_code=error_status(exc, passthrough=passthrough),
        content=ErrorResponse(error=error_message(exc)).model_dump(),
    )


def proxy_response(body: Any, resolution: Resolution, now: float) -> JSONResponse:
    headers = {
        "X-Cache": resolution.state.value,
        "Cache-Control": f"public, max-age={int(resolution.entry.remaining(now))}",
    }
    if resolution.state is CacheState.STALE:
        headers["Warning"] = '110 - "Response is Stale"'
    return JSONResponse(content=body, headers=headers)
