"""Tests for the data quality checker."""

from __future__ import annotations

import math
from itertools import cycle
from unittest.mock import AsyncMock

import numpy as np
import pytest

from token_snapshot_pipeline.config import QualitySettings
from token_snapshot_pipeline.features.models import FEATURE_COUNT, FEATURE_NAMES
from token_snapshot_pipeline.monitoring.quality import DataQualityChecker, build_feature_matrix
from token_snapshot_pipeline.storage.errors import SnapshotStoreError
from token_snapshot_pipeline.storage.store import FeatureRow

OUTCOMES = ("rug", "pump", "stable", "moon")


def uniform_rows(clock, count: int = 200, *, seed: int = 7, outcomes=OUTCOMES) -> list[FeatureRow]:
    """Rows with uniform [0, 1) features; uniform data never has 3-sigma outliers."""
    rng = np.random.default_rng(seed)
    labels = cycle(outcomes)
    return [
        FeatureRow(
            mint=f"mint{i}",
            features={name: float(rng.uniform(0, 1)) for name in FEATURE_NAMES},
            outcome=next(labels),
            created_at=clock(),
        )
        for i in range(count)
    ]


def with_missing(rows: list[FeatureRow], fraction: float) -> list[FeatureRow]:
    """Blank a deterministic, nested share of all cells."""
    threshold = fraction * 100
    result = []
    for i, row in enumerate(rows):
        features = {
            name: (None if (i * FEATURE_COUNT + j) % 100 < threshold else value)
            for j, (name, value) in enumerate(row.features.items())
        }
        result.append(FeatureRow(row.mint, features, row.outcome, row.created_at))
    return result


@pytest.fixture
def mock_store() -> AsyncMock:
    store = AsyncMock()
    store.load_recent_feature_rows = AsyncMock(return_value=[])
    store.save_quality_report = AsyncMock()
    return store


@pytest.fixture
def checker(mock_store: AsyncMock, bus, clock) -> DataQualityChecker:
    return DataQualityChecker(mock_store, bus=bus, clock=clock)


class TestFeatureMatrix:
    """Tests for matrix construction."""

    def test_shape_and_coercion(self, clock) -> None:
        rows = [
            FeatureRow("a", {"liquidity_usd": 10, "risk_score": None, "holder_count": "x"}, None, clock()),
            FeatureRow("b", {"liquidity_usd": math.inf, "mint_revoked": True}, None, clock()),
        ]
        matrix = build_feature_matrix(rows)

        assert matrix.shape == (2, FEATURE_COUNT)
        assert matrix[0, 0] == 10.0
        assert np.isnan(matrix[0, 1])
        assert np.isnan(matrix[0, 2])
        assert np.isnan(matrix[1, 0])
        assert np.isnan(matrix[1, 4])


class TestBuildReport:
    """Scoring and report contents."""

    def test_healthy_dataset(self, checker: DataQualityChecker, clock) -> None:
        report = checker.build_report(uniform_rows(clock))

        assert report.total_samples == 200
        assert report.valid_samples == 200
        assert report.total_missing_percent == 0.0
        assert report.total_outlier_percent == 0.0
        assert not report.is_imbalanced
        assert report.imbalance_ratio == pytest.approx(1.0)
        assert report.low_quality_features == []
        assert report.quality_score == 100.0
        assert report.issues == []
        assert report.recommendations == ["Data quality is good. Continue monitoring for drift."]

    def test_constant_feature_is_low_quality(self, checker: DataQualityChecker, clock) -> None:
        rows = uniform_rows(clock)
        baseline = checker.build_report(rows)
        for row in rows:
            row.features["holder_count"] = 5.0

        report = checker.build_report(rows)

        assert "holder_count" in report.low_quality_features
        holder = next(m for m in report.feature_metrics if m.feature_name == "holder_count")
        assert holder.std == 0.0
        assert report.sub_scores is not None and baseline.sub_scores is not None
        assert report.sub_scores.feature_quality < baseline.sub_scores.feature_quality
        assert report.sub_scores.feature_quality == pytest.approx(27 / 28 * 100)
        assert report.quality_score < baseline.quality_score

    def test_score_decreases_as_missing_data_grows(self, checker: DataQualityChecker, clock) -> None:
        rows = uniform_rows(clock)
        scores = [checker.build_report(with_missing(rows, f)).quality_score for f in (0, 0.02, 0.05, 0.1, 0.2, 0.4)]

        assert scores == sorted(scores, reverse=True)
        assert scores[0] > scores[-1]

    def test_missing_data_issues(self, checker: DataQualityChecker, clock) -> None:
        report = checker.build_report(with_missing(uniform_rows(clock), 0.2))

        assert report.total_missing_percent == pytest.approx(20.0, abs=0.5)
        assert report.issues[0].startswith("Critical:")
        assert "Improve data collection pipeline to reduce missing values" in report.recommendations

    def test_class_imbalance(self, checker: DataQualityChecker, clock) -> None:
        rows = uniform_rows(clock, 100, outcomes=("rug",)) + uniform_rows(clock, 5, seed=8, outcomes=("moon",))

        report = checker.build_report(rows)

        assert report.class_counts == {"rug": 100, "moon": 5}
        assert report.class_ratios["moon"] == pytest.approx(5 / 105)
        assert report.is_imbalanced
        assert report.imbalance_ratio == pytest.approx(20.0)
        assert report.sub_scores is not None and report.sub_scores.class_balance == 0.0
        assert "Critical: class imbalance detected (ratio: 20.0:1)" in report.issues
        assert "Collect more samples for class 'moon' (currently 5)" in report.recommendations

    def test_outlier_detection(self, checker: DataQualityChecker, clock) -> None:
        rows = uniform_rows(clock)
        rows[0].features["volume_change_1h"] = 1_000.0

        report = checker.build_report(rows)

        metric = next(m for m in report.feature_metrics if m.feature_name == "volume_change_1h")
        assert metric.outlier_count == 1
        assert report.outliers_by_feature["volume_change_1h"] == pytest.approx(0.5)
        assert metric.max == 1_000.0
        assert metric.skewness > 0

    def test_descriptive_statistics(self, checker: DataQualityChecker, clock) -> None:
        rows = [FeatureRow(f"m{i}", {"risk_score": float(v)}, None, clock()) for i, v in enumerate([1, 2, 3, 4, 5])]

        report = checker.build_report(rows)

        risk = next(m for m in report.feature_metrics if m.feature_name == "risk_score")
        assert risk.mean == pytest.approx(3.0)
        assert risk.median == pytest.approx(3.0)
        assert risk.std == pytest.approx(math.sqrt(2))
        assert risk.skewness == pytest.approx(0.0)
        assert (risk.min, risk.max) == (1.0, 5.0)

    def test_valid_samples_threshold(self, checker: DataQualityChecker, clock) -> None:
        full = {name: 0.5 for name in FEATURE_NAMES}
        five_missing = dict(full, **{name: None for name in FEATURE_NAMES[:5]})
        six_missing = dict(full, **{name: None for name in FEATURE_NAMES[:6]})
        rows = [FeatureRow("a", five_missing, None, clock())] * 10 + [FeatureRow("b", six_missing, None, clock())] * 10

        report = checker.build_report(rows)

        assert report.valid_samples == 10
        assert report.valid_percent == pytest.approx(50.0)

    def test_no_rows(self, checker: DataQualityChecker) -> None:
        report = checker.build_report([])
        assert report.insufficient_data
        assert report.quality_score == 0.0
        assert report.issues == ["No training data available"]


class TestCheckQuality:
    """The full audit cycle with its side effects."""

    @pytest.mark.asyncio
    async def test_records_persists_and_publishes(self, mock_store: AsyncMock, bus, clock) -> None:
        cache = AsyncMock()
        checker = DataQualityChecker(mock_store, bus=bus, cache=cache, clock=clock)
        mock_store.load_recent_feature_rows.return_value = uniform_rows(clock)

        report = await checker.check_quality(sample_limit=50)

        mock_store.load_recent_feature_rows.assert_awaited_once_with(50)
        mock_store.save_quality_report.assert_awaited_once_with(report)
        cache.publish_quality.assert_awaited_once_with(report)
        assert checker.get_last_report() is report
        assert checker.get_history() == [report]

    @pytest.mark.asyncio
    async def test_insufficient_data_not_recorded(
        self, checker: DataQualityChecker, mock_store: AsyncMock, recorder
    ) -> None:
        report = await checker.check_quality()

        assert report.insufficient_data
        assert checker.get_last_report() is None
        mock_store.save_quality_report.assert_not_awaited()
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_critical_alert(self, checker: DataQualityChecker, mock_store: AsyncMock, recorder, clock) -> None:
        mock_store.load_recent_feature_rows.return_value = [
            FeatureRow(f"m{i}", {}, None, clock()) for i in range(10)
        ]

        report = await checker.check_quality()

        assert report.quality_score == pytest.approx(45.0)
        (event,) = recorder.of_type("quality_critical")
        assert event.payload["score"] == report.quality_score
        assert recorder.of_type("quality_warning") == []

    @pytest.mark.asyncio
    async def test_imbalance_alert(self, checker: DataQualityChecker, mock_store: AsyncMock, recorder, clock) -> None:
        mock_store.load_recent_feature_rows.return_value = uniform_rows(
            clock, 100, outcomes=("rug",)
        ) + uniform_rows(clock, 5, seed=8, outcomes=("moon",))

        await checker.check_quality()

        (event,) = recorder.of_type("class_imbalance")
        assert event.payload["counts"] == {"rug": 100, "moon": 5}
        assert recorder.of_type("quality_critical") == []

    @pytest.mark.asyncio
    async def test_store_failure_is_tolerated(self, checker: DataQualityChecker, mock_store: AsyncMock, clock) -> None:
        mock_store.load_recent_feature_rows.return_value = uniform_rows(clock, 20)
        mock_store.save_quality_report.side_effect = SnapshotStoreError("disk full")

        report = await checker.check_quality()

        assert checker.get_last_report() is report

    @pytest.mark.asyncio
    async def test_cache_failure_is_tolerated(self, mock_store: AsyncMock, clock) -> None:
        cache = AsyncMock()
        cache.publish_quality.side_effect = ConnectionError("redis down")
        checker = DataQualityChecker(mock_store, cache=cache, clock=clock)
        mock_store.load_recent_feature_rows.return_value = uniform_rows(clock, 20)

        report = await checker.check_quality()

        assert not report.insufficient_data

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, mock_store: AsyncMock, clock) -> None:
        checker = DataQualityChecker(mock_store, QualitySettings(history_size=2), clock=clock)
        mock_store.load_recent_feature_rows.return_value = uniform_rows(clock, 20)

        reports = [await checker.check_quality() for _ in range(3)]

        assert checker.get_history() == reports[1:]
