"""Ordered-source merge of raw provider payloads.

Each merged field lists the provider paths it may be read from, in
precedence order. GMGN (real-time) paths come first and DexScreener fills
the gaps. Unless a rule says otherwise, a candidate that is missing, zero
or empty falls through to the next one. Keeping the precedence as data
makes it auditable and lets tests pin it field by field; historical
features are only reproducible while this table is unchanged.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

GMGN = "gmgn"
DEXSCREENER = "dexscreener"

SourcePath = tuple[str, tuple[str, ...]]


@dataclass(frozen=True)
class FieldRule:
    """Where a merged field comes from.

    Attributes:
        sources: Candidate (provider, key path) pairs in precedence order.
        skip_falsy: Fall through on zero/False/empty values. When False only
            a missing value falls through, so an explicit ``False`` wins.
        kind: How the selected value is coerced ('number', 'bool', 'str', 'raw').
    """

    sources: tuple[SourcePath, ...]
    skip_falsy: bool = True
    kind: str = "number"


def _g(*path: str) -> SourcePath:
    return (GMGN, path)


def _d(*path: str) -> SourcePath:
    return (DEXSCREENER, path)


FIELD_RULES: dict[str, FieldRule] = {
    "price_usd": FieldRule((_g("price"), _g("priceUsd"), _d("priceUsd"))),
    "price_sol": FieldRule((_g("priceSol"),)),
    "market_cap": FieldRule((_g("marketCap"), _g("mc"), _d("marketCap"), _d("fdv"))),
    "fdv": FieldRule((_g("fdv"), _d("fdv"))),
    "volume_5m": FieldRule((_g("volume5m"), _g("v5m"), _d("volume", "m5"))),
    "volume_1h": FieldRule((_g("volume1h"), _g("v1h"), _d("volume", "h1"))),
    "volume_24h": FieldRule((_g("volume24h"), _g("v24h"), _d("volume", "h24"))),
    "liquidity_usd": FieldRule((_g("liquidity"), _g("liquidityUsd"), _d("liquidity", "usd"))),
    "holder_count": FieldRule((_g("holderCount"), _g("holders"))),
    "top10_percent": FieldRule((_g("top10Percent"), _g("top10"))),
    "price_change_5m": FieldRule((_g("priceChange5m"), _g("change5m"), _d("priceChange", "m5"))),
    "price_change_1h": FieldRule((_g("priceChange1h"), _g("change1h"), _d("priceChange", "h1"))),
    "price_change_24h": FieldRule(
        (_g("priceChange24h"), _g("change24h"), _d("priceChange", "h24"))
    ),
    "buys_5m": FieldRule((_g("buys5m"), _g("buys", "m5"), _d("txns", "m5", "buys"))),
    "sells_5m": FieldRule((_g("sells5m"), _g("sells", "m5"), _d("txns", "m5", "sells"))),
    "buys_1h": FieldRule((_g("buys1h"), _g("buys", "h1"), _d("txns", "h1", "buys"))),
    "sells_1h": FieldRule((_g("sells1h"), _g("sells", "h1"), _d("txns", "h1", "sells"))),
    "lp_burned_percent": FieldRule((_g("lpBurnedPercent"), _g("lpBurned"))),
    "mint_revoked": FieldRule((_g("mintRevoked"), _g("renounced")), skip_falsy=False, kind="bool"),
    "freeze_revoked": FieldRule((_g("freezeRevoked"),), skip_falsy=False, kind="bool"),
    "name": FieldRule((_g("name"), _d("baseToken", "name")), kind="str"),
    "pool_address": FieldRule((_g("poolAddress"), _d("pairAddress")), kind="str"),
    "created_at": FieldRule((_g("createdAt"), _d("pairCreatedAt")), kind="raw"),
}


@dataclass
class MergedMarketData:
    """Provider-agnostic view of one token's raw market state."""

    price_usd: float | None = None
    price_sol: float | None = None
    market_cap: float | None = None
    fdv: float | None = None
    volume_5m: float | None = None
    volume_1h: float | None = None
    volume_24h: float | None = None
    liquidity_usd: float | None = None
    holder_count: float | None = None
    top10_percent: float | None = None
    price_change_5m: float | None = None
    price_change_1h: float | None = None
    price_change_24h: float | None = None
    buys_5m: float | None = None
    sells_5m: float | None = None
    buys_1h: float | None = None
    sells_1h: float | None = None
    lp_burned_percent: float | None = None
    mint_revoked: bool | None = None
    freeze_revoked: bool | None = None
    name: str | None = None
    pool_address: str | None = None
    created_at: datetime | None = None
    has_twitter: bool = False
    has_telegram: bool = False
    has_website: bool = False
    source: str | None = None


def get_path(data: Mapping[str, Any] | None, path: tuple[str, ...]) -> Any:
    """Walk nested mappings, returning None as soon as a key is absent."""
    current: Any = data
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _to_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse epoch seconds, epoch milliseconds or ISO-8601 into aware UTC."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    number = _to_number(value)
    if number is not None:
        if not math.isfinite(number) or number <= 0:
            return None
        seconds = number / 1000 if number > 1e12 else number
        return datetime.fromtimestamp(seconds, tz=UTC)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _coerce(value: Any, kind: str) -> Any:
    if kind == "number":
        return _to_number(value)
    if kind == "bool":
        return _to_bool(value)
    if kind == "str":
        return str(value) if value is not None else None
    return value


def resolve_field(
    rule: FieldRule,
    payloads: Mapping[str, Mapping[str, Any] | None],
) -> Any:
    """Return the first acceptable candidate for one field, or None."""
    for provider, path in rule.sources:
        payload = payloads.get(provider)
        if not payload:
            continue
        value = _coerce(get_path(payload, path), rule.kind)
        if value is None:
            continue
        if rule.skip_falsy and not value:
            continue
        return value
    return None


def _social_flags(dex_data: Mapping[str, Any] | None) -> tuple[bool, bool, bool]:
    socials = get_path(dex_data, ("info", "socials")) or []
    types = {s.get("type") for s in socials if isinstance(s, Mapping)}
    websites = get_path(dex_data, ("info", "websites")) or []
    return "twitter" in types, "telegram" in types, bool(websites)


def merge_data_sources(
    dex_data: Mapping[str, Any] | None,
    gmgn_data: Mapping[str, Any] | None,
) -> MergedMarketData:
    """Merge DexScreener and GMGN payloads with fixed per-field precedence."""
    payloads = {GMGN: gmgn_data, DEXSCREENER: dex_data}
    values = {name: resolve_field(rule, payloads) for name, rule in FIELD_RULES.items()}
    values["created_at"] = parse_timestamp(values["created_at"])

    merged = MergedMarketData(**values)
    if dex_data:
        merged.has_twitter, merged.has_telegram, merged.has_website = _social_flags(dex_data)

    if gmgn_data:
        merged.source = GMGN
    elif dex_data:
        merged.source = DEXSCREENER
    return merged
