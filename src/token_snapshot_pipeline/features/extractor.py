"""Feature extraction and normalization.

Turns merged provider data (plus the previous stored snapshot) into a
``TokenSnapshot`` carrying the raw 28-field ``MLFeatureVector`` and its
[0, 1]-normalized array. Everything here is deterministic given the
inputs and the injected clock; no I/O happens in this module.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from token_snapshot_pipeline.events import Clock, now_utc
from token_snapshot_pipeline.features.merge import merge_data_sources
from token_snapshot_pipeline.features.models import (
    FEATURE_COUNT,
    FEATURE_DISPLAY_NAMES,
    FEATURE_NAMES,
    MLFeatureVector,
    PreviousSnapshot,
    SentimentReading,
    SmartMoneyActivity,
    TokenSnapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_RISK_SCORE = 50.0

# Normalization bounds
MAX_LIQUIDITY_USD = 1_000_000.0
MAX_HOLDER_COUNT = 100_000.0
MAX_TOKEN_AGE_HOURS = 720.0
PRICE_CHANGE_MIN = -100.0
PRICE_CHANGE_MAX = 500.0
SMART_MONEY_NET_BUYS_RANGE = 50.0
SMART_MONEY_HOLDING_MAX = 50.0
VELOCITY_RANGE = 100.0
ACCELERATION_RANGE = 10.0
TREND_RANGE = 2.0

# Pattern thresholds
VOLUME_SPIKE_MULTIPLE = 5.0
PUMP_5M_PERCENT = 10.0
PUMP_1H_PERCENT = 30.0


@dataclass(frozen=True)
class FeatureValidation:
    """Outcome of ``validate_features``."""

    valid: bool
    missing_count: int
    invalid_count: int
    issues: list[str]

    @property
    def bad_percent(self) -> float:
        """Share of the vector that is missing or non-numeric, in percent."""
        return (self.missing_count + self.invalid_count) / FEATURE_COUNT * 100


def _as_float(value: Any) -> float:
    """Coerce to float; None and non-numerics become NaN so they normalize to 0."""
    if value is None:
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _clamp(value: float, low: float, high: float) -> float:
    if math.isnan(value):
        return value
    return max(low, min(high, value))


def normalize_log_scale(value: float, max_value: float) -> float:
    if not value > 0:
        return 0.0
    return min(1.0, math.log10(value + 1) / math.log10(max_value + 1))


def normalize_range(value: float, low: float, high: float) -> float:
    return (_clamp(value, low, high) - low) / (high - low)


def normalize_signed(value: float, bound: float) -> float:
    return (_clamp(value, -bound, bound) + bound) / (2 * bound)


def _finalize(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


def features_to_array(features: MLFeatureVector | Mapping[str, Any]) -> list[float]:
    """Fixed-order raw feature array; missing entries default to 0."""
    data = features.to_dict() if isinstance(features, MLFeatureVector) else features
    result: list[float] = []
    for name in FEATURE_NAMES:
        value = data.get(name)
        result.append(0.0 if value is None else float(value))
    return result


def array_to_features(values: Sequence[float]) -> MLFeatureVector:
    """Inverse of ``features_to_array``; a short array pads with 0."""
    return MLFeatureVector(
        **{
            name: float(values[i]) if i < len(values) and values[i] is not None else 0.0
            for i, name in enumerate(FEATURE_NAMES)
        }
    )


def normalize_features(features: MLFeatureVector | Mapping[str, Any]) -> list[float]:
    """Scale every feature into [0, 1] in canonical order.

    Non-finite or missing inputs never leak: any non-finite result is
    coerced to 0 before the final clamp.
    """
    data = features.to_dict() if isinstance(features, MLFeatureVector) else features
    f = {name: _as_float(data.get(name)) for name in FEATURE_NAMES}

    normalized = [
        # Core
        normalize_log_scale(f["liquidity_usd"], MAX_LIQUIDITY_USD),
        f["risk_score"] / 100,
        normalize_log_scale(f["holder_count"], MAX_HOLDER_COUNT),
        f["top10_percent"] / 100,
        f["mint_revoked"],
        f["freeze_revoked"],
        f["lp_burned_percent"] / 100,
        f["has_socials"],
        f["token_age_hours"] / MAX_TOKEN_AGE_HOURS,
        # Momentum
        normalize_range(f["price_change_5m"], PRICE_CHANGE_MIN, PRICE_CHANGE_MAX),
        normalize_range(f["price_change_1h"], PRICE_CHANGE_MIN, PRICE_CHANGE_MAX),
        normalize_range(f["price_change_24h"], PRICE_CHANGE_MIN, PRICE_CHANGE_MAX),
        normalize_range(f["volume_change_1h"], PRICE_CHANGE_MIN, PRICE_CHANGE_MAX),
        normalize_range(f["volume_change_24h"], PRICE_CHANGE_MIN, PRICE_CHANGE_MAX),
        f["buy_pressure_1h"],
        # Smart money
        normalize_signed(f["smart_money_net_buys"], SMART_MONEY_NET_BUYS_RANGE),
        f["smart_money_holding"] / SMART_MONEY_HOLDING_MAX,
        f["is_smart_money_bullish"],
        # Trend
        normalize_signed(f["price_velocity"], VELOCITY_RANGE),
        normalize_signed(f["volume_acceleration"], ACCELERATION_RANGE),
        normalize_signed(f["liquidity_trend"], TREND_RANGE),
        normalize_signed(f["holder_trend"], TREND_RANGE),
        # Pattern
        f["has_volume_spike"],
        f["is_pumping"],
        f["is_dumping"],
        # Sentiment (-1..1 -> 0..1)
        (f["sentiment_score"] + 1) / 2,
        f["sentiment_confidence"],
        f["has_sentiment_data"],
    ]
    return [_finalize(v) for v in normalized]


def validate_features(features: MLFeatureVector | Mapping[str, Any]) -> FeatureValidation:
    """Count missing and non-numeric fields of a feature vector."""
    data = features.to_dict() if isinstance(features, MLFeatureVector) else features
    issues: list[str] = []
    missing = 0
    invalid = 0
    for name in FEATURE_NAMES:
        value = data.get(name)
        if value is None:
            missing += 1
            issues.append(f"Missing: {name}")
        elif isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            invalid += 1
            issues.append(f"Invalid: {name} = {value!r}")
    return FeatureValidation(
        valid=missing == 0 and invalid == 0,
        missing_count=missing,
        invalid_count=invalid,
        issues=issues,
    )


def calculate_trend(current: float | None, previous: float | None) -> float:
    if not previous:
        return 0.0
    if not current:
        return -1.0
    return (current - previous) / previous


def calculate_buy_pressure(buys: float, sells: float) -> float:
    total = buys + sells
    if total == 0:
        return 0.5
    return buys / total


def _average_hourly_volume(snapshot: TokenSnapshot) -> float:
    return snapshot.volume_24h / 24 if snapshot.volume_24h else 0.0


class FeatureExtractor:
    """Builds snapshots and feature vectors from raw provider data.

    Args:
        clock: Source of "now", used for recorded_at and token age.
    """

    def __init__(self, *, clock: Clock = now_utc) -> None:
        self._clock = clock

    def create_snapshot(
        self,
        mint: str,
        symbol: str,
        *,
        dex_data: Mapping[str, Any] | None = None,
        gmgn_data: Mapping[str, Any] | None = None,
        previous: PreviousSnapshot | None = None,
        smart_money: SmartMoneyActivity | None = None,
        sentiment: SentimentReading | None = None,
        risk_score: float | None = None,
    ) -> TokenSnapshot | None:
        """Merge provider payloads into a fully featurized snapshot.

        Returns:
            The snapshot, or None when neither provider reported a price.
        """
        merged = merge_data_sources(dex_data, gmgn_data)
        if not merged.price_usd:
            logger.debug("No price for %s (%s); skipping snapshot", symbol, mint)
            return None

        now = self._clock()
        snapshot = TokenSnapshot(
            mint=mint,
            symbol=symbol,
            name=merged.name,
            price_usd=merged.price_usd,
            price_sol=merged.price_sol,
            market_cap=merged.market_cap,
            fdv=merged.fdv,
            volume_5m=merged.volume_5m or 0.0,
            volume_1h=merged.volume_1h or 0.0,
            volume_24h=merged.volume_24h or 0.0,
            liquidity_usd=merged.liquidity_usd or 0.0,
            lp_burned_percent=merged.lp_burned_percent or 0.0,
            holder_count=merged.holder_count or 0.0,
            top10_percent=merged.top10_percent or 0.0,
            mint_revoked=bool(merged.mint_revoked),
            freeze_revoked=bool(merged.freeze_revoked),
            has_twitter=merged.has_twitter,
            has_telegram=merged.has_telegram,
            has_website=merged.has_website,
            price_change_5m=merged.price_change_5m or 0.0,
            price_change_1h=merged.price_change_1h or 0.0,
            price_change_24h=merged.price_change_24h or 0.0,
            buys_5m=merged.buys_5m or 0.0,
            sells_5m=merged.sells_5m or 0.0,
            buys_1h=merged.buys_1h or 0.0,
            sells_1h=merged.sells_1h or 0.0,
            smart_money_net_buys=smart_money.net_buys if smart_money else None,
            smart_money_holding=smart_money.holding_percent if smart_money else None,
            is_smart_money_bullish=smart_money.is_bullish if smart_money else None,
            sentiment_score=sentiment.score if sentiment else None,
            sentiment_confidence=sentiment.confidence if sentiment else None,
            risk_score=risk_score or DEFAULT_RISK_SCORE,
            source=merged.source or "mixed",
            pool_address=merged.pool_address,
            created_at=merged.created_at or now,
            recorded_at=now,
        )

        features = self.extract_features(snapshot, previous, smart_money, sentiment)
        return dataclasses.replace(
            snapshot,
            features=features,
            normalized_features=tuple(normalize_features(features)),
        )

    def extract_features(
        self,
        snapshot: TokenSnapshot,
        previous: PreviousSnapshot | None = None,
        smart_money: SmartMoneyActivity | None = None,
        sentiment: SentimentReading | None = None,
    ) -> MLFeatureVector:
        """Compute all 28 raw features for a snapshot."""
        token_age_hours = max(0.0, (snapshot.recorded_at - snapshot.created_at).total_seconds() / 3600)

        if smart_money is not None:
            net_buys, holding, bullish = smart_money.net_buys, smart_money.holding_percent, smart_money.is_bullish
        else:
            net_buys = snapshot.smart_money_net_buys or 0.0
            holding = snapshot.smart_money_holding or 0.0
            bullish = bool(snapshot.is_smart_money_bullish)

        if sentiment is not None:
            sentiment_score, sentiment_confidence = sentiment.score, sentiment.confidence
            has_sentiment = sentiment.has_data
        else:
            sentiment_score = snapshot.sentiment_score or 0.0
            sentiment_confidence = snapshot.sentiment_confidence or 0.0
            has_sentiment = snapshot.sentiment_score is not None

        has_socials = snapshot.has_twitter or snapshot.has_telegram or snapshot.has_website

        return MLFeatureVector(
            liquidity_usd=snapshot.liquidity_usd,
            risk_score=snapshot.risk_score,
            holder_count=snapshot.holder_count,
            top10_percent=snapshot.top10_percent,
            mint_revoked=float(snapshot.mint_revoked),
            freeze_revoked=float(snapshot.freeze_revoked),
            lp_burned_percent=snapshot.lp_burned_percent,
            has_socials=float(has_socials),
            token_age_hours=token_age_hours,
            price_change_5m=snapshot.price_change_5m,
            price_change_1h=snapshot.price_change_1h,
            price_change_24h=snapshot.price_change_24h,
            volume_change_1h=self.volume_change_1h(snapshot, previous),
            volume_change_24h=self.volume_change_24h(snapshot),
            buy_pressure_1h=calculate_buy_pressure(snapshot.buys_1h, snapshot.sells_1h),
            smart_money_net_buys=float(net_buys),
            smart_money_holding=float(holding),
            is_smart_money_bullish=float(bool(bullish)),
            price_velocity=snapshot.price_change_5m - snapshot.price_change_1h / 12,
            volume_acceleration=self.volume_acceleration(snapshot),
            liquidity_trend=calculate_trend(
                snapshot.liquidity_usd, previous.liquidity_usd if previous else None
            ),
            holder_trend=calculate_trend(
                snapshot.holder_count, previous.holder_count if previous else None
            ),
            has_volume_spike=float(self.has_volume_spike(snapshot)),
            is_pumping=float(
                snapshot.price_change_5m > PUMP_5M_PERCENT and snapshot.price_change_1h > PUMP_1H_PERCENT
            ),
            is_dumping=float(
                snapshot.price_change_5m < -PUMP_5M_PERCENT
                and snapshot.price_change_1h < -PUMP_1H_PERCENT
            ),
            sentiment_score=float(sentiment_score),
            sentiment_confidence=float(sentiment_confidence),
            has_sentiment_data=float(bool(has_sentiment)),
        )

    @staticmethod
    def volume_change_1h(snapshot: TokenSnapshot, previous: PreviousSnapshot | None) -> float:
        if previous is None or not previous.volume_1h:
            return 0.0
        return (snapshot.volume_1h - previous.volume_1h) / previous.volume_1h * 100

    @staticmethod
    def volume_change_24h(snapshot: TokenSnapshot) -> float:
        """Deviation of the last hour's volume from the 24h hourly average, in percent."""
        avg_hourly = _average_hourly_volume(snapshot)
        if avg_hourly == 0:
            return 0.0
        return (snapshot.volume_1h - avg_hourly) / avg_hourly * 100

    @staticmethod
    def volume_acceleration(snapshot: TokenSnapshot) -> float:
        avg_hourly = _average_hourly_volume(snapshot)
        if avg_hourly == 0:
            return 0.0
        return (snapshot.volume_1h - avg_hourly) / avg_hourly

    @staticmethod
    def has_volume_spike(snapshot: TokenSnapshot) -> bool:
        avg_hourly = _average_hourly_volume(snapshot)
        if avg_hourly == 0:
            return False
        return snapshot.volume_1h > avg_hourly * VOLUME_SPIKE_MULTIPLE

    normalize_features = staticmethod(normalize_features)
    features_to_array = staticmethod(features_to_array)
    array_to_features = staticmethod(array_to_features)
    validate_features = staticmethod(validate_features)

    @staticmethod
    def get_feature_display_names() -> dict[str, str]:
        return dict(FEATURE_DISPLAY_NAMES)
