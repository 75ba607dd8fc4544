"""Tests for the adaptive sampling policy."""

from __future__ import annotations

from datetime import timedelta

import pytest

from token_snapshot_pipeline.config import SamplerSettings
from token_snapshot_pipeline.sampling.models import (
    MarketEventType,
    OutcomeLabel,
    SamplingTier,
    TrackedTokenState,
)
from token_snapshot_pipeline.sampling.sampler import (
    MAX_OVERDUE_BONUS,
    PREDICTION_BONUS,
    AdaptiveSampler,
)

TIER_RANK = {
    SamplingTier.MINIMAL: 0,
    SamplingTier.LOW: 1,
    SamplingTier.MEDIUM: 2,
    SamplingTier.HIGH: 3,
}


@pytest.fixture
def sampler(clock) -> AdaptiveSampler:
    return AdaptiveSampler(clock=clock)


@pytest.fixture
def make_state(sampler: AdaptiveSampler, clock):
    def _make(mint: str = "mint", tier: SamplingTier = SamplingTier.MEDIUM, **kwargs) -> TrackedTokenState:
        now = clock()
        return TrackedTokenState(
            mint=mint,
            symbol=mint.upper(),
            tier=tier,
            config=sampler.get_sampling_config(tier),
            added_at=now,
            expires_at=now + timedelta(hours=48),
            **kwargs,
        )

    return _make


class TestDetermineTier:
    """Tier resolution from liquidity and overrides."""

    @pytest.mark.parametrize(
        ("liquidity", "expected"),
        [
            (0, SamplingTier.MINIMAL),
            (999.99, SamplingTier.MINIMAL),
            (1_000, SamplingTier.LOW),
            (9_999, SamplingTier.LOW),
            (10_000, SamplingTier.MEDIUM),
            (99_999, SamplingTier.MEDIUM),
            (100_000, SamplingTier.HIGH),
            (150_000, SamplingTier.HIGH),
        ],
    )
    def test_liquidity_buckets(self, sampler: AdaptiveSampler, liquidity: float, expected: SamplingTier) -> None:
        assert sampler.determine_tier(liquidity) is expected

    def test_monotonic_in_liquidity(self, sampler: AdaptiveSampler) -> None:
        liquidities = [0, 10, 500, 1_000, 5_000, 10_000, 50_000, 100_000, 1_000_000]
        ranks = [TIER_RANK[sampler.determine_tier(liq)] for liq in liquidities]
        assert ranks == sorted(ranks)

    def test_prediction_forces_high(self, sampler: AdaptiveSampler) -> None:
        assert sampler.determine_tier(0, has_prediction=True) is SamplingTier.HIGH

    def test_interesting_event_forces_high(self, sampler: AdaptiveSampler) -> None:
        assert sampler.determine_tier(50, has_interesting_event=True) is SamplingTier.HIGH

    def test_high_potential_promotes(self, sampler: AdaptiveSampler) -> None:
        assert sampler.determine_tier(500, is_high_potential=True) is SamplingTier.MEDIUM
        assert sampler.determine_tier(5_000, is_high_potential=True) is SamplingTier.HIGH

    def test_custom_thresholds(self) -> None:
        settings = SamplerSettings(high_liquidity_usd=50_000, medium_liquidity_usd=5_000, low_liquidity_usd=500)
        sampler = AdaptiveSampler(settings)
        assert sampler.determine_tier(60_000) is SamplingTier.HIGH
        assert sampler.determine_tier(600) is SamplingTier.LOW


class TestSamplingConfig:
    """Per-tier cadence and the liquid-token scenario."""

    def test_liquid_token_lands_in_high_tier(self, sampler: AdaptiveSampler) -> None:
        tier = sampler.determine_tier(150_000)
        config = sampler.get_sampling_config(tier)
        assert tier is SamplingTier.HIGH
        assert config.interval_seconds == 300
        assert config.priority == 100

    def test_intervals_grow_as_priority_falls(self, sampler: AdaptiveSampler) -> None:
        configs = [sampler.get_sampling_config(t) for t in SamplingTier]
        intervals = [c.interval_seconds for c in configs]
        priorities = [c.priority for c in configs]
        assert intervals == sorted(intervals)
        assert priorities == sorted(priorities, reverse=True)


class TestDynamicInterval:
    """Volatility-driven interval shortening."""

    def test_calm_market_keeps_base(self, sampler: AdaptiveSampler, make_state) -> None:
        state = make_state(tier=SamplingTier.LOW)
        assert sampler.calculate_dynamic_interval(state, price_change_1h=5.0) == 3600

    def test_large_move_halves(self, sampler: AdaptiveSampler, make_state) -> None:
        state = make_state(tier=SamplingTier.LOW)
        assert sampler.calculate_dynamic_interval(state, price_change_1h=-30.0) == 1800

    def test_extreme_move_quarters(self, sampler: AdaptiveSampler, make_state) -> None:
        state = make_state(tier=SamplingTier.LOW)
        assert sampler.calculate_dynamic_interval(state, price_change_1h=75.0) == 900

    def test_multipliers_compose(self, sampler: AdaptiveSampler, make_state) -> None:
        state = make_state(tier=SamplingTier.MINIMAL)
        interval = sampler.calculate_dynamic_interval(
            state, price_change_1h=80.0, volume_spike=True, smart_money_active=True
        )
        assert interval == 14400 // 16

    def test_floor(self, sampler: AdaptiveSampler, make_state) -> None:
        state = make_state(tier=SamplingTier.HIGH)
        interval = sampler.calculate_dynamic_interval(
            state, price_change_1h=80.0, volume_spike=True, smart_money_active=True
        )
        assert interval == 60

    def test_non_finite_change_ignored(self, sampler: AdaptiveSampler, make_state) -> None:
        state = make_state(tier=SamplingTier.MEDIUM)
        assert sampler.calculate_dynamic_interval(state, price_change_1h=float("nan")) == 900


class TestShouldSampleImmediately:
    """Event-triggered sampling decisions."""

    def test_pump_fires(self, sampler: AdaptiveSampler, make_state) -> None:
        assert sampler.should_sample_immediately(make_state(), MarketEventType.PUMP_DETECTED)

    def test_accepts_string_event(self, sampler: AdaptiveSampler, make_state) -> None:
        assert sampler.should_sample_immediately(make_state(), "smart_money_entry")

    def test_cooldown_blocks_everything(self, sampler: AdaptiveSampler, make_state, clock) -> None:
        state = make_state(last_snapshot_at=clock() - timedelta(seconds=10))
        assert not sampler.should_sample_immediately(state, MarketEventType.DUMP_DETECTED)
        assert not sampler.should_sample_immediately(state, MarketEventType.PRICE_SPIKE, 90.0)

    def test_cooldown_expires(self, sampler: AdaptiveSampler, make_state, clock) -> None:
        state = make_state(last_snapshot_at=clock() - timedelta(seconds=31))
        assert sampler.should_sample_immediately(state, MarketEventType.DUMP_DETECTED)

    def test_spike_needs_magnitude(self, sampler: AdaptiveSampler, make_state) -> None:
        state = make_state()
        assert not sampler.should_sample_immediately(state, MarketEventType.VOLUME_SPIKE)
        assert not sampler.should_sample_immediately(state, MarketEventType.VOLUME_SPIKE, 20.0)
        assert sampler.should_sample_immediately(state, MarketEventType.VOLUME_SPIKE, 20.5)

    def test_unknown_event_uses_magnitude(self, sampler: AdaptiveSampler, make_state) -> None:
        state = make_state()
        assert not sampler.should_sample_immediately(state, "listing")
        assert sampler.should_sample_immediately(state, "listing", 45.0)


class TestDatasetBalance:
    """Balance tracking and the under-represented outcome boost."""

    def test_needed_outcomes(self, sampler: AdaptiveSampler) -> None:
        balance = sampler.update_dataset_balance({"rug": 400, "pump": 300, "stable": 50, "moon": 10})

        assert balance.total == 760
        assert balance.imbalance_ratio == pytest.approx(40.0)
        assert OutcomeLabel.STABLE in balance.needed_outcomes
        assert OutcomeLabel.MOON in balance.needed_outcomes
        assert OutcomeLabel.DECLINE in balance.needed_outcomes
        assert OutcomeLabel.RUG not in balance.needed_outcomes
        assert OutcomeLabel.PUMP not in balance.needed_outcomes

    def test_boost(self, sampler: AdaptiveSampler) -> None:
        sampler.update_dataset_balance({"rug": 400, "moon": 10})
        assert sampler.get_balance_priority_boost(OutcomeLabel.MOON) == 2.0
        assert sampler.get_balance_priority_boost("rug") == 1.0
        assert sampler.get_balance_priority_boost(None) == 1.0
        assert sampler.get_balance_priority_boost("not-an-outcome") == 1.0

    def test_empty_counts(self, sampler: AdaptiveSampler) -> None:
        balance = sampler.update_dataset_balance({})
        assert balance.total == 0
        assert balance.imbalance_ratio == 0.0
        assert balance.needed_outcomes == []


class TestPrioritizeTokens:
    """Batch selection ordering."""

    def test_higher_tier_first(self, sampler: AdaptiveSampler, make_state, clock) -> None:
        now = clock()
        low = make_state("low", SamplingTier.LOW, last_snapshot_at=now)
        high = make_state("high", SamplingTier.HIGH, last_snapshot_at=now)
        medium = make_state("medium", SamplingTier.MEDIUM, last_snapshot_at=now)

        batch = sampler.prioritize_tokens([low, high, medium], batch_size=2)

        assert [t.mint for t in batch] == ["high", "medium"]

    def test_prediction_bonus(self, sampler: AdaptiveSampler, make_state, clock) -> None:
        now = clock()
        plain = make_state("plain", SamplingTier.MEDIUM, last_snapshot_at=now)
        predicted = make_state("predicted", SamplingTier.MEDIUM, last_snapshot_at=now, has_prediction=True)

        assert sampler.score_token(predicted) - sampler.score_token(plain) == pytest.approx(PREDICTION_BONUS)

    def test_event_bonus_decays(self, sampler: AdaptiveSampler, make_state, clock) -> None:
        now = clock()
        fresh = make_state(
            "fresh", SamplingTier.LOW, last_snapshot_at=now, has_interesting_event=True, last_event_at=now
        )
        stale = make_state(
            "stale",
            SamplingTier.LOW,
            last_snapshot_at=now,
            has_interesting_event=True,
            last_event_at=now - timedelta(hours=2),
        )
        assert sampler.score_token(fresh) == pytest.approx(25 + 50)
        assert sampler.score_token(stale) == pytest.approx(25)

    def test_overdue_bonus_is_capped(self, sampler: AdaptiveSampler, make_state) -> None:
        never_sampled = make_state("never", SamplingTier.HIGH)
        assert sampler.score_token(never_sampled) == pytest.approx(100 + MAX_OVERDUE_BONUS)

    def test_needed_outcome_doubles_score(self, sampler: AdaptiveSampler, make_state, clock) -> None:
        sampler.update_dataset_balance({"rug": 400, "moon": 10})
        now = clock()
        token = make_state("m", SamplingTier.LOW, last_snapshot_at=now, predicted_outcome=OutcomeLabel.MOON)
        assert sampler.score_token(token) == pytest.approx(50)

    def test_empty_batch(self, sampler: AdaptiveSampler, make_state) -> None:
        assert sampler.prioritize_tokens([make_state()], batch_size=0) == []


class TestCapacity:
    """Tracking capacity scaling."""

    def test_full_resources(self, sampler: AdaptiveSampler) -> None:
        capacity = sampler.calculate_optimal_tracking_capacity()
        assert capacity == {
            SamplingTier.HIGH: 50,
            SamplingTier.MEDIUM: 200,
            SamplingTier.LOW: 500,
            SamplingTier.MINIMAL: 2000,
        }

    def test_scaled(self, sampler: AdaptiveSampler) -> None:
        capacity = sampler.calculate_optimal_tracking_capacity(50)
        assert capacity[SamplingTier.HIGH] == 25
        assert capacity[SamplingTier.MINIMAL] == 1000

    def test_stats_shape(self, sampler: AdaptiveSampler) -> None:
        stats = sampler.get_stats()
        assert stats["sampling_configs"]["high"]["interval_seconds"] == 300
        assert stats["liquidity_thresholds"]["low"] == 1_000.0
