# coinproxy/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from coinproxy.cache import FreshnessCache
from coinproxy.dispatcher import ProxyDispatcher
from coinproxy.logging_conf import setup_logging

# --- Observability ---
from coinproxy.observability import metrics_endpoint, timing_middleware

# --- Routers ---
from coinproxy.routers import market
from coinproxy.routers.market import get_dispatcher
from coinproxy.schemas import CacheStats, HealthResponse, VersionResponse
from coinproxy.settings import load_settings
from coinproxy.upstream import UpstreamClient
from coinproxy.version import SERVICE_VERSION, service_version_payload

logger = logging.getLogger("coinproxy.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """One HTTP pool, one cache and one dispatcher per app instance."""
    settings = load_settings()
    async with httpx.AsyncClient(timeout=settings.upstream_timeout_sec) as http:
        client = UpstreamClient(
            http,
            settings.upstream_base_url,
            timeout=settings.upstream_timeout_sec,
            api_key=settings.upstream_api_key,
        )
        app.state.dispatcher = ProxyDispatcher(client, FreshnessCache(), settings)
        logger.info(
            "coinproxy started (upstream=%s, stale_on_error=%s)",
            settings.upstream_base_url,
            settings.serve_stale_on_error,
        )
        yield
    logger.info("coinproxy stopped")


# --- App ---
setup_logging()
app = FastAPI(title="coinproxy", version=SERVICE_VERSION, lifespan=lifespan)

# --- Include routers ---
app.include_router(market.router)

# --- Observability ---
app.middleware("http")(timing_middleware)


@app.exception_handler(Exception)
async def unhandled_exc_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --- Utility endpoints ---


@app.get("/health", response_model=HealthResponse)
def health(dispatcher: ProxyDispatcher = Depends(get_dispatcher)):
    stats = dispatcher.cache.stats()
    return HealthResponse(
        as_of=datetime.now(UTC).isoformat(),
        cache=CacheStats(
            entries=stats["entries"], fresh=stats["fresh"], inflight=dispatcher.inflight
        ),
    )


@app.get("/version", response_model=VersionResponse)
def version(dispatcher: ProxyDispatcher = Depends(get_dispatcher)):
    return VersionResponse(**service_version_payload(dispatcher.settings.upstream_base_url))


@app.get("/metrics")
def metrics():
    return metrics_endpoint()
