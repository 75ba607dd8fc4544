"""Feature distribution drift monitoring.

One baseline ``DistributionSnapshot`` is kept per feature. A drift check
summarises the recent window of stored feature rows, bins it on the
baseline's histogram edges and blends three signals into a 0-1 score per
feature:

- relative mean shift (weight 0.4)
- relative std change (weight 0.3)
- Laplace-smoothed symmetric KL divergence of the histograms (weight 0.3)

Per-feature scores are bucketed into significance levels and aggregated
into an urgency that decides whether retraining is recommended.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import numpy as np
from scipy import stats

from token_snapshot_pipeline.config import DriftSettings
from token_snapshot_pipeline.events import Clock, EventBus, EventType, now_utc
from token_snapshot_pipeline.features.models import FEATURE_COUNT, FEATURE_NAMES
from token_snapshot_pipeline.monitoring.models import (
    DistributionSnapshot,
    DriftReport,
    DriftType,
    FeatureDrift,
    HistogramBin,
    Significance,
    Urgency,
)
from token_snapshot_pipeline.monitoring.quality import build_feature_matrix
from token_snapshot_pipeline.storage.errors import SnapshotStoreError

if TYPE_CHECKING:
    from token_snapshot_pipeline.monitoring.report_cache import ReportCache
    from token_snapshot_pipeline.storage.store import FeatureRow, SnapshotStore

logger = logging.getLogger(__name__)

PERCENTILES = (0.05, 0.25, 0.50, 0.75, 0.95)

MEAN_SHIFT_WEIGHT = 0.4
STD_CHANGE_WEIGHT = 0.3
HISTOGRAM_WEIGHT = 0.3

SUDDEN_SHIFT_STDS = 2.0
GRADUAL_SHIFT_STDS = 0.5
STABLE_STD_RATIO = (0.8, 1.2)
SEASONAL_STD_RATIO = (0.67, 1.5)

CRITICAL_FEATURES_FOR_CRITICAL = 3
HIGH_FEATURES_FOR_HIGH = 3
SYSTEMATIC_SHIFT = 0.1
MAX_LISTED_FEATURES = 3


def compute_distribution(
    feature_name: str,
    values: Sequence[float] | np.ndarray,
    timestamp: datetime,
    *,
    bins: int = 10,
    reference: DistributionSnapshot | None = None,
) -> DistributionSnapshot:
    """Summarise finite ``values`` of one feature.

    Args:
        feature_name: Feature being summarised.
        values: Finite sample values (must not be empty).
        timestamp: Time stamped on the snapshot.
        bins: Number of equal-width bins when building fresh edges.
        reference: When given, values are binned on its edges instead and
            out-of-range values fall into the first or last bin.

    Returns:
        The distribution snapshot.
    """
    arr = np.sort(np.asarray(values, dtype=np.float64))
    n = len(arr)
    if n == 0:
        raise ValueError(f"No values to summarise for {feature_name}")

    lo = float(arr[0])
    hi = float(arr[-1])
    mean = float(arr.mean())
    std = 0.0 if lo == hi else float(arr.std())
    percentiles = tuple(float(arr[min(n - 1, math.floor(n * p))]) for p in PERCENTILES)

    if reference is not None and reference.histogram:
        start = reference.histogram[0].bin_start
        width = reference.bin_width
        bins = len(reference.histogram)
    else:
        start = lo
        width = (hi - lo) / bins or 1.0

    idx = np.clip(np.floor((arr - start) / width), 0, bins - 1).astype(np.int64)
    counts = np.bincount(idx, minlength=bins)
    histogram = tuple(
        HistogramBin(bin_start=start + i * width, count=int(counts[i])) for i in range(bins)
    )
    return DistributionSnapshot(
        feature_name=feature_name,
        timestamp=timestamp,
        mean=mean,
        std=std,
        percentiles=percentiles,
        histogram=histogram,
        bin_width=width,
        sample_count=n,
    )


def histogram_divergence(baseline: DistributionSnapshot, current: DistributionSnapshot) -> float:
    """Symmetric KL (Jeffreys) divergence of two histograms over the same bins.

    Bin probabilities are Laplace-smoothed so empty bins never produce an
    infinite term. Returns 0.0 when the bin counts differ in length.
    """
    if len(baseline.histogram) != len(current.histogram) or not baseline.histogram:
        return 0.0
    b = np.array([h.count for h in baseline.histogram], dtype=np.float64)
    c = np.array([h.count for h in current.histogram], dtype=np.float64)
    k = len(b)
    p = (b + 1) / (b.sum() + k)
    q = (c + 1) / (c.sum() + k)
    return float(np.sum((p - q) * np.log(p / q)))


def _relative_change(current: float, baseline: float) -> float:
    delta = abs(current - baseline)
    return delta / abs(baseline) if baseline != 0 else delta


def calculate_drift_score(baseline: DistributionSnapshot, current: DistributionSnapshot) -> float:
    """Blend mean shift, std change and histogram divergence into [0, 1]."""
    mean_shift = _relative_change(current.mean, baseline.mean)
    std_change = _relative_change(current.std, baseline.std)
    divergence = histogram_divergence(baseline, current)
    score = (
        MEAN_SHIFT_WEIGHT * min(1.0, mean_shift)
        + STD_CHANGE_WEIGHT * min(1.0, std_change)
        + HISTOGRAM_WEIGHT * min(1.0, divergence)
    )
    return min(1.0, score)


def classify_drift_type(baseline: DistributionSnapshot, current: DistributionSnapshot) -> DriftType:
    shift_in_stds = abs(current.mean - baseline.mean) / (baseline.std or 1.0)
    std_ratio = current.std / baseline.std if baseline.std > 0 else 1.0

    if shift_in_stds > SUDDEN_SHIFT_STDS:
        return DriftType.SUDDEN
    if shift_in_stds > GRADUAL_SHIFT_STDS and STABLE_STD_RATIO[0] < std_ratio < STABLE_STD_RATIO[1]:
        return DriftType.GRADUAL
    if std_ratio > SEASONAL_STD_RATIO[1] or std_ratio < SEASONAL_STD_RATIO[0]:
        return DriftType.SEASONAL
    return DriftType.NONE


def welch_p_value(baseline: DistributionSnapshot, current: DistributionSnapshot) -> float:
    """Two-sided Welch t-test p-value from summary statistics.

    Snapshots store population std; it is converted to the sample std the
    test expects. Degenerate inputs (zero variance, fewer than two samples)
    yield 1.0 for equal means and 0.0 otherwise.
    """

    def sample_std(snap: DistributionSnapshot) -> float:
        n = snap.sample_count
        return snap.std * math.sqrt(n / (n - 1)) if n > 1 else 0.0

    if baseline.sample_count > 1 and current.sample_count > 1:
        _, p = stats.ttest_ind_from_stats(
            baseline.mean,
            sample_std(baseline),
            baseline.sample_count,
            current.mean,
            sample_std(current),
            current.sample_count,
            equal_var=False,
        )
        p = float(p)
        if math.isfinite(p):
            return p
    return 1.0 if current.mean == baseline.mean else 0.0


class DistributionMonitor:
    """Detects drift of recent feature distributions against stored baselines.

    Args:
        store: Source of feature rows and baseline/report persistence.
        settings: Thresholds and window sizes.
        bus: Receives drift and retraining events.
        cache: Optional Redis cache the reports are published to.
        clock: Time source.
    """

    def __init__(
        self,
        store: SnapshotStore,
        settings: DriftSettings | None = None,
        *,
        bus: EventBus | None = None,
        cache: ReportCache | None = None,
        clock: Clock = now_utc,
    ) -> None:
        self._store = store
        self._settings = settings or DriftSettings()
        self._bus = bus
        self._cache = cache
        self._clock = clock
        self._baselines: dict[str, DistributionSnapshot] = {}
        self._history: dict[str, deque[DistributionSnapshot]] = {}
        self._last_report: DriftReport | None = None

    @property
    def settings(self) -> DriftSettings:
        return self._settings

    @property
    def has_baselines(self) -> bool:
        return bool(self._baselines)

    async def initialize(self) -> None:
        """Load stored baselines, computing fresh ones when none exist."""
        self._baselines = dict(await self._store.load_baselines())
        if self._baselines:
            logger.info("Loaded %d feature baselines", len(self._baselines))
            return
        await self.calculate_baselines()

    async def calculate_baselines(self) -> bool:
        """Compute baselines from the most recent rows and persist them.

        Returns:
            False when there were too few rows to build a baseline.
        """
        cfg = self._settings
        rows = await self._store.load_recent_feature_rows(cfg.baseline_sample_size)
        if len(rows) < cfg.min_samples:
            logger.warning("Not enough samples for baselines: %d < %d", len(rows), cfg.min_samples)
            return False

        now = self._clock()
        matrix = build_feature_matrix(rows)
        baselines: dict[str, DistributionSnapshot] = {}
        for j, name in enumerate(FEATURE_NAMES):
            values = matrix[:, j]
            values = values[~np.isnan(values)]
            if len(values) == 0:
                continue
            baselines[name] = compute_distribution(name, values, now, bins=cfg.histogram_bins)

        self._baselines = baselines
        try:
            await self._store.save_baselines(baselines)
        except SnapshotStoreError as e:
            logger.warning("Failed to persist baselines: %s", e)
        logger.info("Calculated baselines for %d features from %d samples", len(baselines), len(rows))
        return True

    async def update_baselines(self) -> bool:
        updated = await self.calculate_baselines()
        if updated:
            logger.info("Baselines updated")
        return updated

    async def check_drift(self, period_days: int | None = None) -> DriftReport:
        """Compare the last ``period_days`` of rows against the baselines.

        Args:
            period_days: Comparison window (settings default if None).

        Returns:
            The drift report; ``insufficient_data`` is set when the window
            holds fewer than ``min_samples`` rows or no baseline exists.
        """
        cfg = self._settings
        period = period_days or cfg.comparison_period_days
        started = self._clock()

        if not self._baselines:
            self._baselines = dict(await self._store.load_baselines())
            if not self._baselines and not await self.calculate_baselines():
                return self._insufficient_report(period, 0, "No baselines available")

        since = started - timedelta(days=period)
        rows = await self._store.load_recent_feature_rows(cfg.recent_sample_size, since=since)
        if len(rows) < cfg.min_samples:
            return self._insufficient_report(period, len(rows), "Insufficient recent samples")

        report = self.build_report(rows, period_days=period, timestamp=started)
        self._last_report = report

        try:
            await self._store.save_drift_report(report)
        except SnapshotStoreError as e:
            logger.warning("Failed to persist drift report: %s", e)
        if self._cache is not None:
            try:
                await self._cache.publish_drift(report)
            except Exception as e:
                logger.warning("Failed to cache drift report: %s", e)

        self._emit_alerts(report)

        logger.info(
            "Drift check complete in %.2fs: score=%.3f drifted=%d urgency=%s",
            (self._clock() - started).total_seconds(),
            report.overall_drift_score,
            report.drifted_feature_count,
            report.urgency.value,
        )
        return report

    def build_report(
        self,
        rows: Sequence[FeatureRow],
        *,
        period_days: int,
        timestamp: datetime,
    ) -> DriftReport:
        """Score ``rows`` against the loaded baselines and record history."""
        matrix = build_feature_matrix(rows)
        feature_drift: list[FeatureDrift] = []

        for j, name in enumerate(FEATURE_NAMES):
            baseline = self._baselines.get(name)
            if baseline is None:
                continue
            values = matrix[:, j]
            values = values[~np.isnan(values)]
            if len(values) == 0:
                continue

            current = compute_distribution(
                name, values, timestamp, bins=self._settings.histogram_bins, reference=baseline
            )
            score = calculate_drift_score(baseline, current)
            feature_drift.append(
                FeatureDrift(
                    feature_name=name,
                    drift_score=score,
                    drift_type=classify_drift_type(baseline, current),
                    significance=self.classify_significance(score),
                    current_mean=current.mean,
                    baseline_mean=baseline.mean,
                    current_std=current.std,
                    baseline_std=baseline.std,
                    p_value=welch_p_value(baseline, current),
                )
            )
            self._record_history(name, current)

        overall = sum(f.drift_score for f in feature_drift) / len(feature_drift) if feature_drift else 0.0
        drifted = sum(1 for f in feature_drift if f.is_drifted)
        urgency = self.determine_urgency(feature_drift, overall)
        return DriftReport(
            timestamp=timestamp,
            comparison_period_days=period_days,
            feature_drift=feature_drift,
            overall_drift_score=overall,
            drifted_feature_count=drifted,
            retraining_recommended=urgency in (Urgency.HIGH, Urgency.CRITICAL),
            urgency=urgency,
            suggested_actions=self._suggested_actions(feature_drift, urgency),
            sample_count=len(rows),
        )

    def classify_significance(self, score: float) -> Significance:
        cfg = self._settings
        if score >= cfg.threshold_critical:
            return Significance.CRITICAL
        if score >= cfg.threshold_high:
            return Significance.HIGH
        if score >= cfg.threshold_medium:
            return Significance.MEDIUM
        return Significance.LOW

    def determine_urgency(self, feature_drift: Sequence[FeatureDrift], overall: float) -> Urgency:
        cfg = self._settings
        critical = sum(1 for f in feature_drift if f.significance == Significance.CRITICAL)
        high = sum(1 for f in feature_drift if f.significance == Significance.HIGH)
        drifted = sum(1 for f in feature_drift if f.is_drifted)

        if critical >= CRITICAL_FEATURES_FOR_CRITICAL or overall > cfg.threshold_critical:
            return Urgency.CRITICAL
        if critical >= 1 or high >= HIGH_FEATURES_FOR_HIGH or overall > cfg.threshold_high:
            return Urgency.HIGH
        if high >= 1 or drifted >= cfg.drifted_features_warn:
            return Urgency.MEDIUM
        if drifted > 0:
            return Urgency.LOW
        return Urgency.NONE

    def get_last_report(self) -> DriftReport | None:
        return self._last_report

    def get_baseline(self, feature_name: str) -> DistributionSnapshot | None:
        return self._baselines.get(feature_name)

    def get_baselines(self) -> Mapping[str, DistributionSnapshot]:
        return dict(self._baselines)

    def get_history(self, feature_name: str) -> list[DistributionSnapshot]:
        return list(self._history.get(feature_name, ()))

    def _record_history(self, feature_name: str, snapshot: DistributionSnapshot) -> None:
        history = self._history.get(feature_name)
        if history is None:
            history = deque(maxlen=self._settings.history_size)
            self._history[feature_name] = history
        history.append(snapshot)

    @staticmethod
    def _suggested_actions(feature_drift: Sequence[FeatureDrift], urgency: Urgency) -> list[str]:
        actions: list[str] = []
        if urgency == Urgency.CRITICAL:
            actions.append("CRITICAL: Trigger immediate model retraining")
            actions.append("Pause automated trading signals until model is updated")
        elif urgency == Urgency.HIGH:
            actions.append("Schedule model retraining within 24 hours")
            actions.append("Monitor prediction accuracy closely")
        elif urgency == Urgency.MEDIUM:
            actions.append("Consider retraining model within the next week")

        critical = [f.feature_name for f in feature_drift if f.significance == Significance.CRITICAL]
        if critical:
            actions.append(f"Review feature extraction for: {', '.join(critical[:MAX_LISTED_FEATURES])}")

        increased = sum(1 for f in feature_drift if f.current_mean > f.baseline_mean * (1 + SYSTEMATIC_SHIFT))
        decreased = sum(1 for f in feature_drift if f.current_mean < f.baseline_mean * (1 - SYSTEMATIC_SHIFT))
        if increased > FEATURE_COUNT / 2:
            actions.append("Systematic increase detected across features - check data source")
        if decreased > FEATURE_COUNT / 2:
            actions.append("Systematic decrease detected across features - check data source")

        if not actions:
            actions.append("No immediate action required - continue monitoring")
        return actions

    def _emit_alerts(self, report: DriftReport) -> None:
        if self._bus is None:
            return
        payload = {
            "urgency": report.urgency.value,
            "overall_drift_score": report.overall_drift_score,
            "drifted_feature_count": report.drifted_feature_count,
            "report": report,
        }
        if report.urgency == Urgency.CRITICAL:
            self._bus.emit(EventType.DRIFT_CRITICAL, **payload)
        elif report.urgency == Urgency.HIGH:
            self._bus.emit(EventType.DRIFT_HIGH, **payload)
        if report.retraining_recommended:
            self._bus.emit(EventType.RETRAINING_RECOMMENDED, **payload)

    def _insufficient_report(self, period_days: int, sample_count: int, reason: str) -> DriftReport:
        logger.info("Drift check skipped: %s (%d samples)", reason, sample_count)
        return DriftReport(
            timestamp=self._clock(),
            comparison_period_days=period_days,
            suggested_actions=[reason],
            sample_count=sample_count,
            insufficient_data=True,
        )
