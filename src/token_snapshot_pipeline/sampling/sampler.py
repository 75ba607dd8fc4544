"""Adaptive sampling policy.

Decides which tier a token belongs to, how often it should be sampled,
whether a market event warrants an immediate snapshot, and which tokens
get the scarce fetch slots of the next batch. The only state kept is a
small dataset-balance summary used to favour under-represented outcomes.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from token_snapshot_pipeline.config import SamplerSettings
from token_snapshot_pipeline.events import Clock, now_utc
from token_snapshot_pipeline.sampling.models import (
    IMMEDIATE_EVENT_TYPES,
    DatasetBalance,
    MarketEventType,
    OutcomeLabel,
    SamplingConfig,
    SamplingTier,
    TrackedTokenState,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.fromtimestamp(0, tz=UTC)

# Scheduling bonuses
PREDICTION_BONUS = 50.0
MAX_EVENT_BONUS = 50.0
MAX_OVERDUE_BONUS = 30.0
OVERDUE_BONUS_PER_INTERVAL = 10.0
NEEDED_OUTCOME_BOOST = 2.0
NEEDED_OUTCOME_FRACTION = 0.25

# Dynamic interval multipliers
EXTREME_MOVE_PERCENT = 50.0
LARGE_MOVE_PERCENT = 20.0

BASE_TRACKING_CAPACITY: dict[SamplingTier, int] = {
    SamplingTier.HIGH: 50,
    SamplingTier.MEDIUM: 200,
    SamplingTier.LOW: 500,
    SamplingTier.MINIMAL: 2000,
}


class AdaptiveSampler:
    """Sampling policy for tracked tokens.

    Example:
        ```python
        sampler = AdaptiveSampler()
        tier = sampler.determine_tier(150_000)  # SamplingTier.HIGH
        batch = sampler.prioritize_tokens(due_tokens, batch_size=10)
        ```
    """

    def __init__(
        self,
        settings: SamplerSettings | None = None,
        *,
        clock: Clock = now_utc,
    ) -> None:
        self._settings = settings or SamplerSettings()
        self._clock = clock
        s = self._settings
        self._configs: dict[SamplingTier, SamplingConfig] = {
            SamplingTier.HIGH: SamplingConfig(
                SamplingTier.HIGH, s.high_interval_seconds, s.high_max_snapshots, s.high_priority
            ),
            SamplingTier.MEDIUM: SamplingConfig(
                SamplingTier.MEDIUM, s.medium_interval_seconds, s.medium_max_snapshots, s.medium_priority
            ),
            SamplingTier.LOW: SamplingConfig(
                SamplingTier.LOW, s.low_interval_seconds, s.low_max_snapshots, s.low_priority
            ),
            SamplingTier.MINIMAL: SamplingConfig(
                SamplingTier.MINIMAL,
                s.minimal_interval_seconds,
                s.minimal_max_snapshots,
                s.minimal_priority,
            ),
        }
        self._balance = DatasetBalance()

    @property
    def settings(self) -> SamplerSettings:
        return self._settings

    def determine_tier(
        self,
        liquidity_usd: float,
        *,
        has_prediction: bool = False,
        has_interesting_event: bool = False,
        is_high_potential: bool = False,
    ) -> SamplingTier:
        """Resolve the sampling tier for a token.

        Tokens under active model scrutiny (a prediction or a flagged
        event) are always HIGH, whatever their size. High-potential
        tokens are promoted to at least MEDIUM. Everything else is
        bucketed by liquidity.
        """
        s = self._settings
        if has_prediction or has_interesting_event:
            return SamplingTier.HIGH

        if is_high_potential:
            return SamplingTier.HIGH if liquidity_usd >= s.low_liquidity_usd else SamplingTier.MEDIUM

        if liquidity_usd >= s.high_liquidity_usd:
            return SamplingTier.HIGH
        if liquidity_usd >= s.medium_liquidity_usd:
            return SamplingTier.MEDIUM
        if liquidity_usd >= s.low_liquidity_usd:
            return SamplingTier.LOW
        return SamplingTier.MINIMAL

    def get_sampling_config(self, tier: SamplingTier) -> SamplingConfig:
        return self._configs[tier]

    def calculate_dynamic_interval(
        self,
        state: TrackedTokenState,
        *,
        price_change_1h: float | None = None,
        volume_spike: bool = False,
        smart_money_active: bool = False,
    ) -> int:
        """Shrink the tier's base interval under volatile conditions.

        Multipliers compose: a large move, a volume spike and smart-money
        activity together cut the interval to an eighth (or a sixteenth
        for extreme moves), floored at the configured minimum.

        Returns:
            Interval in whole seconds.
        """
        interval = state.config.interval_seconds

        if price_change_1h is not None and math.isfinite(price_change_1h):
            move = abs(price_change_1h)
            if move > EXTREME_MOVE_PERCENT:
                interval = math.floor(interval * 0.25)
            elif move > LARGE_MOVE_PERCENT:
                interval = math.floor(interval * 0.5)

        if volume_spike:
            interval = math.floor(interval * 0.5)

        if smart_money_active:
            interval = math.floor(interval * 0.5)

        return max(self._settings.min_interval_seconds, interval)

    def should_sample_immediately(
        self,
        state: TrackedTokenState,
        event_type: MarketEventType | str,
        magnitude: float | None = None,
    ) -> bool:
        """Decide whether a market event warrants a snapshot right now.

        A cooldown applies to every event type. Pump, dump and
        smart-money-entry events always fire; other events fire only when
        they carry a magnitude above the spike threshold.
        """
        now = self._clock()
        last = state.last_snapshot_at or _EPOCH
        if (now - last).total_seconds() < self._settings.immediate_cooldown_seconds:
            return False

        try:
            event = MarketEventType(event_type)
        except ValueError:
            event = None
        if event in IMMEDIATE_EVENT_TYPES:
            return True

        if magnitude is not None:
            return magnitude > self._settings.spike_magnitude_threshold

        return False

    def update_dataset_balance(self, counts: Mapping[str, int]) -> DatasetBalance:
        """Refresh outcome counts and recompute which outcomes are needed.

        Args:
            counts: Outcome label to number of labelled rows. Unknown labels
                are ignored; missing labels count as zero.
        """
        by_outcome = {outcome: int(counts.get(outcome.value, 0) or 0) for outcome in OutcomeLabel}
        values = list(by_outcome.values())
        max_count = max(values)
        non_zero = [v for v in values if v > 0]
        min_count = min(non_zero) if non_zero else 0

        threshold = max_count * NEEDED_OUTCOME_FRACTION
        self._balance = DatasetBalance(
            total=sum(int(v or 0) for v in counts.values()),
            by_outcome=by_outcome,
            imbalance_ratio=max_count / min_count if min_count > 0 else 0.0,
            needed_outcomes=[o for o, c in by_outcome.items() if c < threshold],
        )
        logger.debug(
            "Dataset balance updated: total=%d ratio=%.2f needed=%s",
            self._balance.total,
            self._balance.imbalance_ratio,
            [o.value for o in self._balance.needed_outcomes],
        )
        return self._balance

    def get_balance_priority_boost(self, predicted_outcome: OutcomeLabel | str | None = None) -> float:
        if not predicted_outcome:
            return 1.0
        try:
            outcome = OutcomeLabel(predicted_outcome)
        except ValueError:
            return 1.0
        return NEEDED_OUTCOME_BOOST if outcome in self._balance.needed_outcomes else 1.0

    def score_token(self, token: TrackedTokenState, now: datetime | None = None) -> float:
        """Scheduling score of one token (higher is sampled first)."""
        now = now or self._clock()
        score = float(token.config.priority)

        if token.has_prediction:
            score += PREDICTION_BONUS

        if token.has_interesting_event:
            since_event = (now - (token.last_event_at or _EPOCH)).total_seconds()
            decay = self._settings.event_bonus_decay_seconds
            score += max(0.0, MAX_EVENT_BONUS * (1 - since_event / decay))

        since_snapshot = (now - (token.last_snapshot_at or _EPOCH)).total_seconds()
        overdue_ratio = since_snapshot / token.config.interval_seconds
        if overdue_ratio > 1:
            score += min(MAX_OVERDUE_BONUS, (overdue_ratio - 1) * OVERDUE_BONUS_PER_INTERVAL)

        return score * self.get_balance_priority_boost(token.predicted_outcome)

    def prioritize_tokens(
        self,
        tokens: Sequence[TrackedTokenState],
        batch_size: int,
    ) -> list[TrackedTokenState]:
        """Pick the ``batch_size`` most urgent tokens, most urgent first."""
        if batch_size <= 0:
            return []
        now = self._clock()
        scored = [(self.score_token(token, now), token) for token in tokens]
        scored.sort(key=lambda item: item[0], reverse=True)
        return [token for _, token in scored[:batch_size]]

    def calculate_optimal_tracking_capacity(
        self, available_resources_percent: float = 100.0
    ) -> dict[SamplingTier, int]:
        scale = available_resources_percent / 100
        return {tier: math.floor(base * scale) for tier, base in BASE_TRACKING_CAPACITY.items()}

    def get_stats(self) -> dict[str, object]:
        s = self._settings
        return {
            "dataset_balance": self._balance.to_dict(),
            "sampling_configs": {
                tier.value: {
                    "interval_seconds": cfg.interval_seconds,
                    "max_snapshots_per_token": cfg.max_snapshots_per_token,
                    "priority": cfg.priority,
                }
                for tier, cfg in self._configs.items()
            },
            "liquidity_thresholds": {
                "high": s.high_liquidity_usd,
                "medium": s.medium_liquidity_usd,
                "low": s.low_liquidity_usd,
            },
        }

    @property
    def dataset_balance(self) -> DatasetBalance:
        return self._balance
