from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict


# --- Domain types produced by the normalizer ---
class PricePoint(BaseModel):
    model_config = ConfigDict(frozen=True)
    timestamp: int  # ms since epoch
    price: float


class SnapshotPrice(BaseModel):
    model_config = ConfigDict(frozen=True)
    asset_id: str  # provider id, e.g. "bitcoin"
    symbol: str  # ticker, e.g. "BTC"
    usd_price: float
    usd_market_cap: float | None = None
    usd_24h_volume: float | None = None
    usd_24h_change_percent: float | None = None


# --- Cache state reported alongside a payload ---
class CacheState(str, Enum):
    HIT = "HIT"
    MISS = "MISS"
    STALE = "STALE"


# --- Health payload ---
class CacheStats(BaseModel):
    entries: int
    fresh: int
    inflight: int


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    as_of: str
    service: str = "coinproxy"
    cache: CacheStats


# --- Version payload ---
class VersionResponse(BaseModel):
    service: str  # "coinproxy:0.1.0"
    service_version: str
    upstream: str


# --- Error taxonomy ---
class ErrorCode(str, Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    MALFORMED_UPSTREAM = "MALFORMED_UPSTREAM"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    error: str
