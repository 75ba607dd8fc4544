"""Data models for snapshots and the 28-dimensional feature vector.

The order of ``FEATURE_NAMES`` is the contract between the extractor and
every consumer that treats a feature vector as a plain array. Changing it
requires bumping ``FEATURE_VERSION``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any

FEATURE_VERSION = "v2"

FEATURE_NAMES: tuple[str, ...] = (
    # Core (9)
    "liquidity_usd",
    "risk_score",
    "holder_count",
    "top10_percent",
    "mint_revoked",
    "freeze_revoked",
    "lp_burned_percent",
    "has_socials",
    "token_age_hours",
    # Momentum (6)
    "price_change_5m",
    "price_change_1h",
    "price_change_24h",
    "volume_change_1h",
    "volume_change_24h",
    "buy_pressure_1h",
    # Smart money (3)
    "smart_money_net_buys",
    "smart_money_holding",
    "is_smart_money_bullish",
    # Trend (4)
    "price_velocity",
    "volume_acceleration",
    "liquidity_trend",
    "holder_trend",
    # Pattern (3)
    "has_volume_spike",
    "is_pumping",
    "is_dumping",
    # Sentiment (3)
    "sentiment_score",
    "sentiment_confidence",
    "has_sentiment_data",
)

FEATURE_COUNT = len(FEATURE_NAMES)

FEATURE_DISPLAY_NAMES: dict[str, str] = {
    "liquidity_usd": "Liquidity USD",
    "risk_score": "Risk Score",
    "holder_count": "Holder Count",
    "top10_percent": "Top 10% Holdings",
    "mint_revoked": "Mint Revoked",
    "freeze_revoked": "Freeze Revoked",
    "lp_burned_percent": "LP Burned %",
    "has_socials": "Has Socials",
    "token_age_hours": "Token Age",
    "price_change_5m": "Price Change 5m",
    "price_change_1h": "Price Change 1h",
    "price_change_24h": "Price Change 24h",
    "volume_change_1h": "Volume Change 1h",
    "volume_change_24h": "Volume Change 24h",
    "buy_pressure_1h": "Buy Pressure 1h",
    "smart_money_net_buys": "Smart Money Net Buys",
    "smart_money_holding": "Smart Money Holding %",
    "is_smart_money_bullish": "Smart Money Bullish",
    "price_velocity": "Price Velocity",
    "volume_acceleration": "Volume Acceleration",
    "liquidity_trend": "Liquidity Trend",
    "holder_trend": "Holder Trend",
    "has_volume_spike": "Volume Spike",
    "is_pumping": "Is Pumping",
    "is_dumping": "Is Dumping",
    "sentiment_score": "Sentiment Score",
    "sentiment_confidence": "Sentiment Confidence",
    "has_sentiment_data": "Has Sentiment Data",
}


@dataclass
class MLFeatureVector:
    """Raw (un-normalized) feature values.

    Binary features are encoded as 0.0 / 1.0 so the whole vector is numeric.
    """

    liquidity_usd: float = 0.0
    risk_score: float = 0.0
    holder_count: float = 0.0
    top10_percent: float = 0.0
    mint_revoked: float = 0.0
    freeze_revoked: float = 0.0
    lp_burned_percent: float = 0.0
    has_socials: float = 0.0
    token_age_hours: float = 0.0

    price_change_5m: float = 0.0
    price_change_1h: float = 0.0
    price_change_24h: float = 0.0
    volume_change_1h: float = 0.0
    volume_change_24h: float = 0.0
    buy_pressure_1h: float = 0.0

    smart_money_net_buys: float = 0.0
    smart_money_holding: float = 0.0
    is_smart_money_bullish: float = 0.0

    price_velocity: float = 0.0
    volume_acceleration: float = 0.0
    liquidity_trend: float = 0.0
    holder_trend: float = 0.0

    has_volume_spike: float = 0.0
    is_pumping: float = 0.0
    is_dumping: float = 0.0

    sentiment_score: float = 0.0
    sentiment_confidence: float = 0.0
    has_sentiment_data: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in FEATURE_NAMES}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MLFeatureVector:
        """Build a vector from a mapping; unknown keys are ignored, missing ones are 0."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: float(v) for k, v in data.items() if k in known and v is not None})


@dataclass(frozen=True)
class SmartMoneyActivity:
    """Smart-money summary for a token, supplied by an external tracker."""

    net_buys: float = 0.0
    holding_percent: float = 0.0
    is_bullish: bool = False


@dataclass(frozen=True)
class SentimentReading:
    """Aggregated social sentiment for a token, supplied by an external analyzer."""

    score: float = 0.0
    confidence: float = 0.0
    has_data: bool = True


@dataclass(frozen=True)
class PreviousSnapshot:
    """The fields of the last stored snapshot that trend features need."""

    recorded_at: datetime
    volume_1h: float = 0.0
    liquidity_usd: float = 0.0
    holder_count: float = 0.0


@dataclass(frozen=True)
class TokenSnapshot:
    """One timestamped observation of a token plus its derived features.

    Attributes:
        mint: Token mint address.
        symbol: Ticker symbol.
        source: Which provider supplied the leading data ('gmgn' or 'dexscreener').
        created_at: Pool creation time (observation time when unknown).
        recorded_at: When the observation was taken.
        features: Raw feature vector.
        normalized_features: Fixed-order feature array scaled to [0, 1].
    """

    mint: str
    symbol: str
    price_usd: float
    recorded_at: datetime
    created_at: datetime
    name: str | None = None
    price_sol: float | None = None
    market_cap: float | None = None
    fdv: float | None = None

    volume_5m: float = 0.0
    volume_1h: float = 0.0
    volume_24h: float = 0.0

    liquidity_usd: float = 0.0
    lp_burned_percent: float = 0.0
    lp_locked_percent: float = 0.0

    holder_count: float = 0.0
    top10_percent: float = 0.0
    top20_percent: float | None = None
    largest_holder_percent: float | None = None

    mint_revoked: bool = False
    freeze_revoked: bool = False
    is_honeypot: bool = False

    has_twitter: bool = False
    has_telegram: bool = False
    has_website: bool = False

    price_change_5m: float = 0.0
    price_change_1h: float = 0.0
    price_change_24h: float = 0.0
    buys_5m: float = 0.0
    sells_5m: float = 0.0
    buys_1h: float = 0.0
    sells_1h: float = 0.0

    smart_money_net_buys: float | None = None
    smart_money_holding: float | None = None
    is_smart_money_bullish: bool | None = None

    sentiment_score: float | None = None
    sentiment_confidence: float | None = None

    risk_score: float = 50.0
    source: str = "mixed"
    pool_address: str | None = None

    feature_version: str = FEATURE_VERSION
    features: MLFeatureVector = field(default_factory=MLFeatureVector)
    normalized_features: tuple[float, ...] = ()

    def to_record(self) -> dict[str, Any]:
        """Flatten to a JSON-friendly dict (features included)."""
        record = asdict(self)
        record["recorded_at"] = self.recorded_at.isoformat()
        record["created_at"] = self.created_at.isoformat()
        record["normalized_features"] = list(self.normalized_features)
        return record
