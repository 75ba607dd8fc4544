"""Training data quality audit.

Analyses a bounded sample of stored feature rows:

- missing data per feature and overall
- Z-score outliers per feature
- outcome class balance
- descriptive statistics per feature (mean, std, quantiles, skew, kurtosis)

and blends four 0-100 sub-scores into a single quality score. Reports are
kept in memory (last + bounded history), persisted to the store and
optionally published to the Redis report cache.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import numpy as np
from scipy import stats

from token_snapshot_pipeline.config import QualitySettings
from token_snapshot_pipeline.events import Clock, EventBus, EventType, now_utc
from token_snapshot_pipeline.features.models import FEATURE_COUNT, FEATURE_NAMES
from token_snapshot_pipeline.monitoring.models import (
    DataQualityReport,
    FeatureQualityMetrics,
    QualitySubScores,
)
from token_snapshot_pipeline.storage.errors import SnapshotStoreError

if TYPE_CHECKING:
    from token_snapshot_pipeline.monitoring.report_cache import ReportCache
    from token_snapshot_pipeline.storage.store import FeatureRow, SnapshotStore

logger = logging.getLogger(__name__)

# Sub-score points lost per percent of missing values / outliers.
PENALTY_PER_PERCENT = 5.0
# Balance sub-score points lost per unit of imbalance ratio above 1:1.
PENALTY_PER_IMBALANCE_UNIT = 10.0
# A sample is valid when fewer than this share of its features is missing.
VALID_SAMPLE_MAX_MISSING = 0.2
MAX_LISTED_FEATURES = 5


def _coerce(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return float("nan")
    return float(value)


def build_feature_matrix(rows: Sequence[FeatureRow]) -> np.ndarray:
    """Stack feature dicts into an ``(n, 28)`` array in canonical order.

    Missing keys, nulls and non-numeric values become NaN.
    """
    matrix = np.full((len(rows), FEATURE_COUNT), np.nan, dtype=np.float64)
    for i, row in enumerate(rows):
        for j, name in enumerate(FEATURE_NAMES):
            matrix[i, j] = _coerce(row.features.get(name))
    matrix[~np.isfinite(matrix)] = np.nan
    return matrix


def _column_metrics(name: str, column: np.ndarray, zscore_threshold: float) -> FeatureQualityMetrics:
    total = len(column)
    values = column[~np.isnan(column)]
    n = len(values)
    missing = total - n
    missing_pct = missing / total * 100 if total else 0.0
    if n == 0:
        return FeatureQualityMetrics(
            feature_name=name,
            missing_count=missing,
            missing_percent=missing_pct,
            outlier_count=0,
            outlier_percent=0.0,
            mean=0.0,
            std=0.0,
            min=0.0,
            max=0.0,
            median=0.0,
            skewness=0.0,
            kurtosis=0.0,
        )

    lo = float(values.min())
    hi = float(values.max())
    mean = float(values.mean())
    # A constant column must report exactly zero spread.
    std = 0.0 if lo == hi else float(values.std())

    outliers = 0
    skewness = 0.0
    kurtosis = 0.0
    if std > 0:
        outliers = int(np.count_nonzero(np.abs((values - mean) / std) > zscore_threshold))
        skewness = float(stats.skew(values, bias=True))
        kurtosis = float(stats.kurtosis(values, fisher=True, bias=True))

    return FeatureQualityMetrics(
        feature_name=name,
        missing_count=missing,
        missing_percent=missing_pct,
        outlier_count=outliers,
        outlier_percent=outliers / n * 100,
        mean=mean,
        std=std,
        min=lo,
        max=hi,
        median=float(np.median(values)),
        skewness=skewness,
        kurtosis=kurtosis,
    )


class DataQualityChecker:
    """Audits stored training rows and scores the dataset.

    Args:
        store: Source of feature rows and sink for persisted reports.
        settings: Thresholds and score weights.
        bus: Receives quality and class-imbalance events.
        cache: Optional Redis cache the reports are published to.
        clock: Time source for report timestamps.
    """

    def __init__(
        self,
        store: SnapshotStore,
        settings: QualitySettings | None = None,
        *,
        bus: EventBus | None = None,
        cache: ReportCache | None = None,
        clock: Clock = now_utc,
    ) -> None:
        self._store = store
        self._settings = settings or QualitySettings()
        self._bus = bus
        self._cache = cache
        self._clock = clock
        self._last_report: DataQualityReport | None = None
        self._history: deque[DataQualityReport] = deque(maxlen=self._settings.history_size)

    @property
    def settings(self) -> QualitySettings:
        return self._settings

    async def check_quality(self, sample_limit: int | None = None) -> DataQualityReport:
        """Run a full audit over the most recent stored rows.

        Args:
            sample_limit: Number of rows to analyse (settings default if None).

        Returns:
            The report. With no stored rows the report has
            ``insufficient_data=True`` and is neither recorded nor alerted on.
        """
        started = self._clock()
        rows = await self._store.load_recent_feature_rows(sample_limit or self._settings.sample_limit)
        report = self.build_report(rows)
        if report.insufficient_data:
            logger.info("Quality check skipped: no training data available")
            return report

        self._last_report = report
        self._history.append(report)

        try:
            await self._store.save_quality_report(report)
        except SnapshotStoreError as e:
            logger.warning("Failed to persist quality report: %s", e)
        if self._cache is not None:
            try:
                await self._cache.publish_quality(report)
            except Exception as e:
                logger.warning("Failed to cache quality report: %s", e)

        self._emit_alerts(report)

        elapsed = (self._clock() - started).total_seconds()
        logger.info(
            "Quality check complete in %.2fs: score=%.1f/100 samples=%d issues=%d",
            elapsed,
            report.quality_score,
            report.total_samples,
            len(report.issues),
        )
        return report

    def build_report(self, rows: Sequence[FeatureRow]) -> DataQualityReport:
        """Compute a report from rows without side effects."""
        if not rows:
            return self._empty_report()

        cfg = self._settings
        matrix = build_feature_matrix(rows)
        total = len(rows)

        metrics = [
            _column_metrics(name, matrix[:, j], cfg.zscore_threshold) for j, name in enumerate(FEATURE_NAMES)
        ]
        missing_by_feature = {m.feature_name: m.missing_percent for m in metrics}
        outliers_by_feature = {m.feature_name: m.outlier_percent for m in metrics}
        total_missing = float(np.isnan(matrix).sum()) / matrix.size * 100
        present = sum(total - m.missing_count for m in metrics)
        total_outliers = sum(m.outlier_count for m in metrics) / present * 100 if present else 0.0

        counts, ratios, ratio = self._class_balance(rows)
        is_imbalanced = ratio > cfg.imbalance_warn_ratio

        low_quality = [
            m.feature_name
            for m in metrics
            if m.missing_percent > cfg.missing_critical_percent
            or m.outlier_percent > cfg.outlier_critical_percent
            or m.std == 0
        ]

        missing_per_row = np.isnan(matrix).sum(axis=1) / FEATURE_COUNT
        valid = int(np.count_nonzero(missing_per_row < VALID_SAMPLE_MAX_MISSING))

        sub_scores = QualitySubScores(
            missing=max(0.0, 100 - total_missing * PENALTY_PER_PERCENT),
            outliers=max(0.0, 100 - total_outliers * PENALTY_PER_PERCENT),
            class_balance=(
                max(0.0, 100 - (ratio - 1) * PENALTY_PER_IMBALANCE_UNIT) if is_imbalanced else 100.0
            ),
            feature_quality=(FEATURE_COUNT - len(low_quality)) / FEATURE_COUNT * 100,
        )
        score = (
            sub_scores.missing * cfg.weight_missing
            + sub_scores.outliers * cfg.weight_outliers
            + sub_scores.class_balance * cfg.weight_class_balance
            + sub_scores.feature_quality * cfg.weight_feature_quality
        )

        report = DataQualityReport(
            timestamp=self._clock(),
            total_samples=total,
            valid_samples=valid,
            valid_percent=valid / total * 100,
            missing_data_by_feature=missing_by_feature,
            total_missing_percent=total_missing,
            outliers_by_feature=outliers_by_feature,
            total_outlier_percent=total_outliers,
            class_counts=counts,
            class_ratios=ratios,
            is_imbalanced=is_imbalanced,
            imbalance_ratio=ratio,
            feature_metrics=metrics,
            low_quality_features=low_quality,
            quality_score=round(score, 1),
            sub_scores=sub_scores,
        )
        report.issues, report.recommendations = self._issues_and_recommendations(report)
        return report

    def get_last_report(self) -> DataQualityReport | None:
        return self._last_report

    def get_history(self) -> list[DataQualityReport]:
        return list(self._history)

    @staticmethod
    def _class_balance(rows: Sequence[FeatureRow]) -> tuple[dict[str, int], dict[str, float], float]:
        labels = [r.outcome for r in rows if r.outcome]
        counts = dict(Counter(labels))
        if not counts:
            return {}, {}, 0.0
        ratios = {label: count / len(labels) for label, count in counts.items()}
        ratio = max(counts.values()) / min(counts.values())
        return counts, ratios, ratio

    def _issues_and_recommendations(self, report: DataQualityReport) -> tuple[list[str], list[str]]:
        cfg = self._settings
        issues: list[str] = []
        recommendations: list[str] = []

        if report.total_missing_percent > cfg.missing_critical_percent:
            issues.append(f"Critical: {report.total_missing_percent:.1f}% missing data overall")
            recommendations.append("Improve data collection pipeline to reduce missing values")
        elif report.total_missing_percent > cfg.missing_warn_percent:
            issues.append(f"Warning: {report.total_missing_percent:.1f}% missing data overall")

        for name, pct in report.missing_data_by_feature.items():
            if pct > cfg.missing_critical_percent:
                issues.append(f"Feature '{name}' has {pct:.1f}% missing values")

        if report.total_outlier_percent > cfg.outlier_critical_percent:
            issues.append(f"Critical: {report.total_outlier_percent:.1f}% outliers detected")
            recommendations.append("Review outlier handling in feature extraction")
        elif report.total_outlier_percent > cfg.outlier_warn_percent:
            issues.append(f"Warning: {report.total_outlier_percent:.1f}% outliers detected")

        if report.is_imbalanced:
            prefix = "Critical: class" if report.imbalance_ratio > cfg.imbalance_critical_ratio else "Class"
            issues.append(f"{prefix} imbalance detected (ratio: {report.imbalance_ratio:.1f}:1)")
            rarest, rarest_count = min(report.class_counts.items(), key=lambda kv: kv[1])
            recommendations.append(f"Collect more samples for class '{rarest}' (currently {rarest_count})")
            recommendations.append("Consider using class weights or oversampling during training")

        low = report.low_quality_features
        if low:
            listed = ", ".join(low[:MAX_LISTED_FEATURES])
            more = "..." if len(low) > MAX_LISTED_FEATURES else ""
            issues.append(f"{len(low)} low-quality features detected: {listed}{more}")
            recommendations.append("Consider removing or fixing low-quality features")

        if not issues:
            recommendations.append("Data quality is good. Continue monitoring for drift.")
        return issues, recommendations

    def _emit_alerts(self, report: DataQualityReport) -> None:
        if self._bus is None:
            return
        cfg = self._settings
        if report.quality_score < cfg.critical_score:
            self._bus.emit(EventType.QUALITY_CRITICAL, score=report.quality_score, issues=list(report.issues))
        elif report.quality_score < cfg.warning_score:
            self._bus.emit(EventType.QUALITY_WARNING, score=report.quality_score, issues=list(report.issues))
        if report.is_imbalanced:
            self._bus.emit(
                EventType.CLASS_IMBALANCE,
                ratio=report.imbalance_ratio,
                counts=dict(report.class_counts),
            )

    def _empty_report(self) -> DataQualityReport:
        return DataQualityReport(
            timestamp=self._clock(),
            quality_score=0.0,
            issues=["No training data available"],
            recommendations=["Collect training data before running quality checks"],
            insufficient_data=True,
        )
