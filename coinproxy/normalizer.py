"""
Provider payload -> stable internal types.

Snapshot payload (simple/price):
  {"bitcoin": {"usd": 50000, "usd_market_cap": ..., "usd_24h_vol": ..., "usd_24h_change": ...}, ...}

Series payload (coins/{id}/market_chart):
  {"prices": [[1700000000000, 50000.1], ...], "market_caps": [...], "total_volumes": [...]}

Anything missing or non-numeric raises MalformedUpstreamResponse; nothing is zero-filled.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any

from coinproxy.catalog import symbol_for
from coinproxy.errors import MalformedUpstreamResponse
from coinproxy.schemas import PricePoint, SnapshotPrice

# internal field -> provider field (usd quote)
_OPTIONAL_FIELDS = {
    "usd_market_cap": "usd_market_cap",
    "usd_24h_volume": "usd_24h_vol",
    "usd_24h_change_percent": "usd_24h_change",
}


def _is_number(val: Any) -> bool:
    if isinstance(val, bool) or not isinstance(val, int | float):
        return False
    # NaN and +-Infinity cannot be served as JSON numbers
    try:
        return math.isfinite(val)
    except OverflowError:
        # ints too large for a float
        return False


def _snapshot_row(asset_id: str, quote: Any) -> SnapshotPrice:
    if not isinstance(quote, Mapping):
        raise MalformedUpstreamResponse(f"snapshot entry for {asset_id!r} is not an object")
    price = quote.get("usd")
    if not _is_number(price):
        raise MalformedUpstreamResponse(f"snapshot entry for {asset_id!r} has no numeric 'usd'")

    extras: dict[str, float | None] = {}
    for ours, theirs in _OPTIONAL_FIELDS.items():
        val = quote.get(theirs)
        if val is None:
            extras[ours] = None
        elif _is_number(val):
            extras[ours] = float(val)
        else:
            raise MalformedUpstreamResponse(
                f"snapshot field {theirs!r} for {asset_id!r} is not numeric"
            )

    return SnapshotPrice(
        asset_id=asset_id,
        symbol=symbol_for(asset_id),
        usd_price=float(price),
        **extras,
    )


def normalize_snapshot(
    raw: Any, expected_ids: Iterable[str] | None = None
) -> tuple[SnapshotPrice, ...]:
    """Validate a simple/price payload. Every expected id must be present."""
    if not isinstance(raw, Mapping):
        raise MalformedUpstreamResponse("snapshot payload is not an object")

    if expected_ids is None:
        ids = list(raw.keys())
    else:
        ids = list(expected_ids)
        missing = [i for i in ids if i not in raw]
        if missing:
            raise MalformedUpstreamResponse(
                f"snapshot payload missing assets: {', '.join(missing)}"
            )

    return tuple(_snapshot_row(asset_id, raw[asset_id]) for asset_id in ids)


def normalize_price_series(raw: Any) -> tuple[PricePoint, ...]:
    """Validate a market_chart payload and keep its 'prices' pairs in received order."""
    if not isinstance(raw, Mapping) or "prices" not in raw:
        raise MalformedUpstreamResponse("series payload has no 'prices' field")
    pairs = raw["prices"]
    if not isinstance(pairs, list):
        raise MalformedUpstreamResponse("series field 'prices' is not a list")

    points: list[PricePoint] = []
    for i, pair in enumerate(pairs):
        if not isinstance(pair, list | tuple) or len(pair) != 2:
            raise MalformedUpstreamResponse(f"prices[{i}] is not a [timestamp, price] pair")
        ts, price = pair
        if not _is_number(ts) or not _is_number(price):
            raise MalformedUpstreamResponse(f"prices[{i}] has a non-numeric member")
        points.append(PricePoint(timestamp=int(ts), price=float(price)))
    return tuple(points)
