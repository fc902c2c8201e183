# coinproxy/catalog.py
# Purpose: The small, fixed set of assets the proxy knows how to ask for.
# Why: Provider ids ("binancecoin") differ from tickers ("BNB"); keep the mapping in one place.

from __future__ import annotations

import re

# Snapshot endpoint: fixed asset set, in response order.
TRACKED_ASSETS: tuple[str, ...] = ("bitcoin", "ethereum", "solana", "binancecoin", "cardano")

# Chart endpoint: fixed asset and range.
CHART_ASSET = "bitcoin"
CHART_DAYS = 7

DEFAULT_HISTORY_DAYS = 7
DEFAULT_TOKENS = ("bitcoin", "ethereum")

# ticker -> provider id, for assets the token price endpoint accepts
TOKEN_IDS: dict[str, str] = {
    "btc": "bitcoin",
    "eth": "ethereum",
    "sol": "solana",
    "bnb": "binancecoin",
    "usdt": "tether",
    "usdc": "usd-coin",
    "xrp": "ripple",
    "ada": "cardano",
    "doge": "dogecoin",
    "matic": "matic-network",
    "link": "chainlink",
    "uni": "uniswap",
    "avax": "avalanche-2",
    "atom": "cosmos",
    "dot": "polkadot",
}

# Extra tickers accepted by price history on top of TOKEN_IDS.
_HISTORY_ONLY_IDS: dict[str, str] = {
    "trx": "tron",
    "ltc": "litecoin",
    "etc": "ethereum-classic",
    "okb": "okb",
    "icp": "internet-computer",
    "shib": "shiba-inu",
    "bch": "bitcoin-cash",
    "fil": "filecoin",
    "apt": "aptos",
    "arb": "arbitrum",
    "op": "optimism",
    "pepe": "pepe",
    "render": "render-token",
    "inj": "injective-protocol",
    "near": "near",
    "grt": "the-graph",
}

_SYMBOL_BY_ID: dict[str, str] = {v: k.upper() for k, v in TOKEN_IDS.items()}
_ASSET_ID_RE = re.compile(r"^[a-z0-9][a-z0-9-]{0,63}$")


def symbol_for(asset_id: str) -> str:
    """Ticker for a provider id; unknown ids fall back to the id itself, upper-cased."""
    return _SYMBOL_BY_ID.get(asset_id, asset_id.upper())


def resolve_asset_id(raw: str) -> str | None:
    """
    Map user input to a provider id.
    Accepts tickers ("BTC") and provider ids ("bitcoin"). Returns None if the
    value cannot be a provider id (keeps arbitrary text out of the upstream URL path).
    """
    candidate = (raw or "").strip().lower()
    if not candidate:
        return None
    mapped = TOKEN_IDS.get(candidate) or _HISTORY_ONLY_IDS.get(candidate)
    if mapped:
        return mapped
    if not _ASSET_ID_RE.match(candidate):
        return None
    return candidate


def supported_token_ids(raw: str) -> tuple[str, ...]:
    """Filter a comma-separated id list down to supported ids, de-duplicated, order kept."""
    known = set(TOKEN_IDS.values())
    out: list[str] = []
    for part in raw.split(","):
        tok = part.strip().lower()
        if tok in known and tok not in out:
            out.append(tok)
    return tuple(out)


def token_ids_for_symbols(symbols: list[str]) -> tuple[str, ...]:
    """Map tickers ("BTC", "eth") to provider ids via TOKEN_IDS; unknown entries are dropped."""
    out: list[str] = []
    for sym in symbols:
        if not isinstance(sym, str):
            continue
        asset_id = TOKEN_IDS.get(sym.strip().lower())
        if asset_id and asset_id not in out:
            out.append(asset_id)
    return tuple(out)
