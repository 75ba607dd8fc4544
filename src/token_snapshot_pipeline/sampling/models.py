"""Data models for adaptive sampling."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SamplingTier(str, Enum):
    """Sampling-frequency class of a tracked token, most urgent first."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    MINIMAL = "minimal"


class OutcomeLabel(str, Enum):
    """Outcome labels attached to training rows by downstream labelers."""

    RUG = "rug"
    PUMP = "pump"
    MOON = "moon"
    STABLE = "stable"
    DECLINE = "decline"
    UNKNOWN = "unknown"


class MarketEventType(str, Enum):
    """Market events that can request an out-of-schedule snapshot."""

    PRICE_SPIKE = "price_spike"
    VOLUME_SPIKE = "volume_spike"
    WHALE_ACTIVITY = "whale_activity"
    PUMP_DETECTED = "pump_detected"
    DUMP_DETECTED = "dump_detected"
    SMART_MONEY_ENTRY = "smart_money_entry"


IMMEDIATE_EVENT_TYPES: frozenset[MarketEventType] = frozenset(
    {
        MarketEventType.PUMP_DETECTED,
        MarketEventType.DUMP_DETECTED,
        MarketEventType.SMART_MONEY_ENTRY,
    }
)


@dataclass(frozen=True)
class SamplingConfig:
    """Cadence and limits for one tier.

    Attributes:
        tier: The tier this config belongs to.
        interval_seconds: Base time between snapshots.
        max_snapshots_per_token: Lifetime snapshot cap per token.
        priority: Base scheduling priority (higher is more urgent).
    """

    tier: SamplingTier
    interval_seconds: int
    max_snapshots_per_token: int
    priority: int


@dataclass
class TrackedTokenState:
    """Sampling state of one watched token.

    Owned by the collector; every other component receives it read-only.
    """

    mint: str
    symbol: str
    tier: SamplingTier
    config: SamplingConfig
    added_at: datetime
    expires_at: datetime
    snapshot_count: int = 0
    last_snapshot_at: datetime | None = None
    has_prediction: bool = False
    predicted_outcome: OutcomeLabel | None = None
    has_interesting_event: bool = False
    last_event_type: str | None = None
    last_event_at: datetime | None = None
    liquidity_usd: float = 0.0
    is_high_potential: bool = False
    risk_score: float | None = None
    is_active: bool = True

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def at_snapshot_cap(self) -> bool:
        return self.snapshot_count >= self.config.max_snapshots_per_token


@dataclass
class DatasetBalance:
    """Observed outcome-label counts and the outcomes currently under-represented."""

    total: int = 0
    by_outcome: dict[OutcomeLabel, int] = field(
        default_factory=lambda: {outcome: 0 for outcome in OutcomeLabel}
    )
    imbalance_ratio: float = 0.0
    needed_outcomes: list[OutcomeLabel] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "by_outcome": {k.value: v for k, v in self.by_outcome.items()},
            "imbalance_ratio": self.imbalance_ratio,
            "needed_outcomes": [o.value for o in self.needed_outcomes],
        }
