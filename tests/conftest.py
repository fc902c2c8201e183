"""Pytest configuration and fixtures."""

import asyncio
from typing import Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from coinproxy.cache import FreshnessCache
from coinproxy.dispatcher import ProxyDispatcher
from coinproxy.main import app
from coinproxy.routers.market import get_dispatcher
from coinproxy.settings import Settings
from coinproxy.upstream import UpstreamClient

BASE_URL = "https://upstream.test/api/v3"
SNAPSHOT_PATH = "/api/v3/simple/price"


def chart_path(asset_id: str) -> str:
    return f"/api/v3/coins/{asset_id}/market_chart"


SNAPSHOT = {
    "bitcoin": {
        "usd": 50000.0,
        "usd_market_cap": 980000000000.0,
        "usd_24h_vol": 30000000000.0,
        "usd_24h_change": 1.5,
    },
    "ethereum": {
        "usd": 2500.0,
        "usd_market_cap": 3e11,
        "usd_24h_vol": 1.2e10,
        "usd_24h_change": -0.7,
    },
    "solana": {"usd": 140.0, "usd_market_cap": 6e10, "usd_24h_vol": 2e9, "usd_24h_change": 3.1},
    "binancecoin": {
        "usd": 580.0,
        "usd_market_cap": 8.5e10,
        "usd_24h_vol": 1e9,
        "usd_24h_change": 0.2,
    },
    "cardano": {"usd": 0.45, "usd_market_cap": 1.6e10, "usd_24h_vol": 3e8, "usd_24h_change": None},
}

SERIES = {"prices": [[1000, 50000], [2000, 50100]]}


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubUpstream:
    """
    httpx.MockTransport handler that answers by URL path and records every request.

    Outcomes per path are consumed in order; the last one repeats. An outcome is
    a JSON body (dict/list -> 200), an int status, an httpx.Response, or an
    exception instance to raise.
    """

    def __init__(self) -> None:
        self.calls: list[httpx.Request] = []
        self.routes: dict[str, list[Any]] = {}
        self.delay = 0.0

    def set(self, path: str, *outcomes: Any) -> None:
        self.routes[path] = list(outcomes)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcomes = self.routes.get(request.url.path)
        if not outcomes:
            return httpx.Response(404, json={"error": "coin not found"})
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, httpx.Response):
            return outcome
        if isinstance(outcome, int):
            return httpx.Response(outcome, json={"error": f"status {outcome}"})
        return httpx.Response(200, json=outcome)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return StubUpstream()


@pytest.fixture
def settings():
    return Settings(upstream_base_url=BASE_URL, upstream_retries=0, retry_backoff_sec=0.0)


@pytest.fixture
def cache(clock):
    return FreshnessCache(clock=clock)


@pytest.fixture
async def http(upstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        yield client


@pytest.fixture
def upstream_client(http):
    return UpstreamClient(http, BASE_URL, timeout=2.0)


@pytest.fixture
def make_dispatcher(upstream_client, cache, settings):
    """Build a dispatcher over the shared stub, optionally overriding settings."""

    def _make(sleep=None, **overrides) -> ProxyDispatcher:
        cfg = settings.model_copy(update=overrides) if overrides else settings
        kwargs = {"sleep": sleep} if sleep is not None else {}
        return ProxyDispatcher(upstream_client, cache, cfg, **kwargs)

    return _make


@pytest.fixture
def dispatcher(make_dispatcher):
    return make_dispatcher()


@pytest.fixture
async def client(dispatcher):
    """Test client wired to a fresh dispatcher and cache."""
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
