"""
Thin async client for the market-data provider (CoinGecko v3 shape).

Query shapes:
  - snapshot: GET /simple/price?ids=a,b&vs_currencies=usd&include_...=true
  - chart / history: GET /coins/{id}/market_chart?vs_currency=usd&days=N

Notes / Pitfalls:
- Returns the raw JSON; normalization is the caller's job.
- No retries here. Every failure becomes UpstreamUnavailable (with the status
  code when there was a response) so retry policy lives with the dispatcher.
- Every call is bounded by an explicit timeout.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import httpx

from coinproxy.errors import MalformedUpstreamResponse, UpstreamUnavailable
from coinproxy.observability import UPSTREAM_CALLS, UPSTREAM_LATENCY, timer_ms

logger = logging.getLogger("coinproxy.upstream")


class UpstreamClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        *,
        timeout: float = 10.0,
        api_key: str | None = None,
        vs_currency: str = "usd",
    ) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout)
        self._headers = {"Accept": "application/json"}
        if api_key:
            self._headers["x-cg-demo-api-key"] = api_key
        self.vs_currency = vs_currency

    # ----------------------------------------------------------------------------------
    # Transport
    # ----------------------------------------------------------------------------------
    async def _get_json(self, shape: str, path: str, params: dict[str, str]) -> Any:
        url = f"{self._base_url}{path}"
        with timer_ms() as elapsed:
            try:
                r = await self._http.get(
                    url, params=params, headers=self._headers, timeout=self._timeout
                )
            except httpx.TimeoutException as e:
                UPSTREAM_CALLS.labels(query=shape, outcome="timeout").inc()
                raise UpstreamUnavailable(f"upstream timed out: {e!r}", timed_out=True) from e
            except httpx.RequestError as e:
                UPSTREAM_CALLS.labels(query=shape, outcome="network_error").inc()
                raise UpstreamUnavailable(f"upstream unreachable: {e!r}") from e
            finally:
                UPSTREAM_LATENCY.labels(query=shape).observe(elapsed() / 1000.0)

        logger.debug("upstream %s %s -> %s in %sms", shape, path, r.status_code, elapsed())

        if not r.is_success:
            UPSTREAM_CALLS.labels(query=shape, outcome="http_error").inc()
            raise UpstreamUnavailable(
                f"upstream returned {r.status_code} for {path}", status_code=r.status_code
            )

        UPSTREAM_CALLS.labels(query=shape, outcome="ok").inc()
        try:
            return r.json()
        except ValueError as e:
            raise MalformedUpstreamResponse(f"upstream body for {path} is not JSON") from e

    # ----------------------------------------------------------------------------------
    # Public API
    # ----------------------------------------------------------------------------------
    async def fetch_snapshot(self, asset_ids: Iterable[str]) -> Any:
        ids = ",".join(asset_ids)
        if not ids:
            raise ValueError("fetch_snapshot needs at least one asset id")
        params = {
            "ids": ids,
            "vs_currencies": self.vs_currency,
            "include_market_cap": "true",
            "include_24hr_vol": "true",
            "include_24hr_change": "true",
        }
        return await self._get_json("snapshot", "/simple/price", params)

    async def fetch_chart(self, asset_id: str, range_days: int = 7) -> Any:
        return await self._market_chart("chart", asset_id, range_days)

    async def fetch_history(self, asset_id: str, range_days: int = 7) -> Any:
        return await self._market_chart("history", asset_id, range_days)

    async def _market_chart(self, shape: str, asset_id: str, range_days: int) -> Any:
        if isinstance(range_days, bool) or not isinstance(range_days, int) or range_days < 1:
            raise ValueError(f"range_days must be a positive integer, got {range_days!r}")
        params = {"vs_currency": self.vs_currency, "days": str(range_days)}
        return await self._get_json(shape, f"/coins/{asset_id}/market_chart", params)
