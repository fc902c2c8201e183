# coinproxy/observability.py
from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from contextlib import contextmanager

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# ---- Prometheus metrics (low-cardinality labels) ----
REQUEST_COUNT = Counter(
    "cp_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "cp_http_request_duration_seconds",
    "HTTP request latency (seconds)",
    buckets=(0.005, 0.01, 0.02, 0.05, 0.1, 0.2, 0.5, 1.0, 2.5, 5.0),
)

CACHE_LOOKUPS = Counter(
    "cp_cache_lookups_total",
    "Cache lookups by query shape and result (HIT/MISS/STALE)",
    ["query", "result"],
)

UPSTREAM_CALLS = Counter(
    "cp_upstream_calls_total",
    "Upstream provider calls by query shape and outcome",
    ["query", "outcome"],
)

UPSTREAM_LATENCY = Histogram(
    "cp_upstream_duration_seconds",
    "Upstream provider latency (seconds)",
    ["query"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


@contextmanager
def timer_ms():
    """Yield a callable returning elapsed milliseconds since entry."""
    start = time.perf_counter()
    yield lambda: int((time.perf_counter() - start) * 1000)


def metrics_endpoint():
    """Return Prometheus exposition format."""
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


# ---- Per-request timing + JSON request log ----
async def timing_middleware(request: Request, call_next: Callable):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start

    path = request.url.path
    status = str(response.status_code)

    REQUEST_COUNT.labels(method=request.method, path=path, status=status).inc()
    REQUEST_LATENCY.observe(elapsed)

    response.headers["X-Request-ID"] = request_id
    logging.getLogger("request").info(
        "%s %s -> %s",
        request.method,
        path,
        status,
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": path,
            "status": status,
            "cache": response.headers.get("x-cache"),
            "duration_s": round(elapsed, 6),
            "client": request.client.host if request.client else None,
        },
    )
    return response
