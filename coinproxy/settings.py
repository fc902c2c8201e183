# coinproxy/settings.py
from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_UPSTREAM = "https://api.coingecko.com/api/v3"


class Settings(BaseModel):
    """Runtime knobs. TTLs are per query shape and handed to the cache at each call site."""

    model_config = ConfigDict(frozen=True)

    upstream_base_url: str = DEFAULT_UPSTREAM
    upstream_api_key: str | None = None
    upstream_timeout_sec: float = Field(10.0, gt=0)
    upstream_retries: int = Field(1, ge=0, le=5)
    retry_backoff_sec: float = Field(0.25, ge=0)

    prices_ttl_sec: float = Field(30.0, gt=0)
    chart_ttl_sec: float = Field(300.0, gt=0)
    history_ttl_sec: float = Field(300.0, gt=0)
    tokens_ttl_sec: float = Field(60.0, gt=0)

    serve_stale_on_error: bool = True


# env var -> settings field
_ENV_FIELDS = {
    "CP_UPSTREAM_BASE_URL": "upstream_base_url",
    "CP_UPSTREAM_API_KEY": "upstream_api_key",
    "CP_UPSTREAM_TIMEOUT_SEC": "upstream_timeout_sec",
    "CP_UPSTREAM_RETRIES": "upstream_retries",
    "CP_RETRY_BACKOFF_SEC": "retry_backoff_sec",
    "CP_PRICES_TTL_SEC": "prices_ttl_sec",
    "CP_CHART_TTL_SEC": "chart_ttl_sec",
    "CP_HISTORY_TTL_SEC": "history_ttl_sec",
    "CP_TOKENS_TTL_SEC": "tokens_ttl_sec",
    "CP_SERVE_STALE": "serve_stale_on_error",
}


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """Build Settings from CP_* environment variables; pydantic coerces and validates."""
    env = os.environ if environ is None else environ
    values = {field: env[name] for name, field in _ENV_FIELDS.items() if env.get(name)}
    return Settings(**values)
