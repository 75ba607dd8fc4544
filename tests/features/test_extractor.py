"""Tests for feature extraction and normalization."""

from __future__ import annotations

import math
from datetime import timedelta

import pytest

from token_snapshot_pipeline.features.extractor import (
    FeatureExtractor,
    array_to_features,
    calculate_buy_pressure,
    calculate_trend,
    features_to_array,
    normalize_features,
    validate_features,
)
from token_snapshot_pipeline.features.models import (
    FEATURE_COUNT,
    FEATURE_NAMES,
    MLFeatureVector,
    PreviousSnapshot,
    SentimentReading,
    SmartMoneyActivity,
)


@pytest.fixture
def extractor(clock) -> FeatureExtractor:
    return FeatureExtractor(clock=clock)


class TestCreateSnapshot:
    """Snapshot construction from provider payloads."""

    def test_core_fields(self, make_snapshot, clock) -> None:
        snapshot = make_snapshot()

        assert snapshot.price_usd == pytest.approx(0.0042)
        assert snapshot.recorded_at == clock()
        assert snapshot.source == "gmgn"
        assert snapshot.risk_score == 50.0
        assert len(snapshot.normalized_features) == FEATURE_COUNT

    def test_derived_features(self, make_snapshot) -> None:
        f = make_snapshot().features

        assert f.token_age_hours == pytest.approx(6.0)
        assert f.buy_pressure_1h == pytest.approx(0.6)
        assert f.volume_change_24h == pytest.approx(100.0)
        assert f.volume_acceleration == pytest.approx(1.0)
        assert f.price_velocity == pytest.approx(1.0)
        assert f.has_volume_spike == 0.0
        assert f.is_pumping == 0.0
        assert f.has_socials == 1.0
        assert f.mint_revoked == 1.0
        assert f.has_sentiment_data == 0.0

    def test_pump_and_spike_patterns(self, make_snapshot) -> None:
        f = make_snapshot(priceChange5m=15, priceChange1h=45, volume1h=30_000).features
        assert f.is_pumping == 1.0
        assert f.has_volume_spike == 1.0
        assert f.is_dumping == 0.0

    def test_dump_pattern(self, make_snapshot) -> None:
        f = make_snapshot(priceChange5m=-15, priceChange1h=-45).features
        assert f.is_dumping == 1.0
        assert f.is_pumping == 0.0

    def test_trends_use_previous_snapshot(self, extractor, clock, gmgn_payload, sample_mint) -> None:
        previous = PreviousSnapshot(
            recorded_at=clock() - timedelta(minutes=15),
            volume_1h=4_000,
            liquidity_usd=26_000,
            holder_count=2_500,
        )
        snapshot = extractor.create_snapshot(sample_mint, "SMPL", gmgn_data=gmgn_payload, previous=previous)

        assert snapshot is not None
        assert snapshot.features.volume_change_1h == pytest.approx(100.0)
        assert snapshot.features.liquidity_trend == pytest.approx(1.0)
        assert snapshot.features.holder_trend == pytest.approx(-0.5)

    def test_external_signals(self, extractor, gmgn_payload, sample_mint) -> None:
        snapshot = extractor.create_snapshot(
            sample_mint,
            "SMPL",
            gmgn_data=gmgn_payload,
            smart_money=SmartMoneyActivity(net_buys=12, holding_percent=8.0, is_bullish=True),
            sentiment=SentimentReading(score=0.4, confidence=0.9),
            risk_score=72,
        )

        assert snapshot is not None
        f = snapshot.features
        assert f.smart_money_net_buys == 12.0
        assert f.is_smart_money_bullish == 1.0
        assert f.sentiment_score == pytest.approx(0.4)
        assert f.has_sentiment_data == 1.0
        assert f.risk_score == 72.0

    def test_no_price_returns_none(self, extractor, sample_mint) -> None:
        assert extractor.create_snapshot(sample_mint, "SMPL", gmgn_data={"liquidity": 1000}) is None
        assert extractor.create_snapshot(sample_mint, "SMPL") is None

    def test_missing_created_at_uses_now(self, extractor, clock, sample_mint) -> None:
        snapshot = extractor.create_snapshot(sample_mint, "SMPL", gmgn_data={"price": 1.0})
        assert snapshot is not None
        assert snapshot.created_at == clock()
        assert snapshot.features.token_age_hours == 0.0

    def test_to_record_is_json_friendly(self, make_snapshot) -> None:
        record = make_snapshot().to_record()
        assert isinstance(record["recorded_at"], str)
        assert isinstance(record["normalized_features"], list)
        assert record["features"]["liquidity_usd"] == 52_000


class TestNormalize:
    """Scaling into the unit interval."""

    def test_output_shape_and_range(self, make_snapshot) -> None:
        values = normalize_features(make_snapshot().features)
        assert len(values) == FEATURE_COUNT
        assert all(0.0 <= v <= 1.0 for v in values)

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf, None, "junk"])
    def test_degenerate_inputs_stay_in_range(self, bad) -> None:
        values = normalize_features({name: bad for name in FEATURE_NAMES})
        assert len(values) == FEATURE_COUNT
        assert all(math.isfinite(v) and 0.0 <= v <= 1.0 for v in values)

    def test_extremes_clamp(self) -> None:
        features = MLFeatureVector(
            liquidity_usd=1e12,
            risk_score=250,
            price_change_1h=10_000,
            price_change_5m=-500,
            smart_money_net_buys=-1_000,
        )
        values = dict(zip(FEATURE_NAMES, normalize_features(features)))
        assert values["liquidity_usd"] == 1.0
        assert values["risk_score"] == 1.0
        assert values["price_change_1h"] == 1.0
        assert values["price_change_5m"] == 0.0
        assert values["smart_money_net_buys"] == 0.0

    def test_neutral_points(self) -> None:
        values = dict(zip(FEATURE_NAMES, normalize_features(MLFeatureVector())))
        assert values["liquidity_usd"] == 0.0
        assert values["sentiment_score"] == pytest.approx(0.5)
        assert values["smart_money_net_buys"] == pytest.approx(0.5)
        assert values["price_change_1h"] == pytest.approx(100 / 600)

    def test_liquidity_is_log_scaled(self) -> None:
        low = normalize_features(MLFeatureVector(liquidity_usd=1_000))[0]
        high = normalize_features(MLFeatureVector(liquidity_usd=100_000))[0]
        assert 0.0 < low < high < 1.0
        assert high == pytest.approx(math.log10(100_001) / math.log10(1_000_001))


class TestArrays:
    """Fixed-order array conversion."""

    def test_round_trip(self, make_snapshot) -> None:
        features = make_snapshot().features
        assert array_to_features(features_to_array(features)) == features

    def test_order_follows_feature_names(self) -> None:
        features = MLFeatureVector(liquidity_usd=1.0, has_sentiment_data=1.0)
        array = features_to_array(features)
        assert array[0] == 1.0
        assert array[-1] == 1.0
        assert sum(array) == 2.0

    def test_mapping_with_gaps(self) -> None:
        array = features_to_array({"risk_score": 40, "holder_count": None})
        assert array[1] == 40.0
        assert array[2] == 0.0

    def test_short_array_pads(self) -> None:
        features = array_to_features([5.0, 6.0])
        assert features.liquidity_usd == 5.0
        assert features.risk_score == 6.0
        assert features.has_sentiment_data == 0.0


class TestValidate:
    """Missing and invalid field accounting."""

    def test_complete_vector_is_valid(self, make_snapshot) -> None:
        result = validate_features(make_snapshot().features)
        assert result.valid
        assert result.bad_percent == 0.0

    def test_counts_missing_and_invalid(self) -> None:
        data = {name: 1.0 for name in FEATURE_NAMES}
        data.pop("risk_score")
        data["holder_count"] = "many"
        data["top10_percent"] = math.nan
        data["mint_revoked"] = True

        result = validate_features(data)

        assert not result.valid
        assert result.missing_count == 1
        assert result.invalid_count == 3
        assert result.bad_percent == pytest.approx(4 / 28 * 100)
        assert "Missing: risk_score" in result.issues


class TestHelpers:
    """Small numeric helpers."""

    def test_trend(self) -> None:
        assert calculate_trend(150, 100) == pytest.approx(0.5)
        assert calculate_trend(0, 100) == -1.0
        assert calculate_trend(100, None) == 0.0
        assert calculate_trend(100, 0) == 0.0

    def test_buy_pressure(self) -> None:
        assert calculate_buy_pressure(0, 0) == 0.5
        assert calculate_buy_pressure(3, 1) == pytest.approx(0.75)

    def test_display_names_cover_every_feature(self) -> None:
        names = FeatureExtractor.get_feature_display_names()
        assert set(names) == set(FEATURE_NAMES)
