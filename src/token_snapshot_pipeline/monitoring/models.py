"""Report and distribution models for dataset monitoring."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class DriftType(str, Enum):
    """Shape of a detected distribution change."""

    NONE = "none"
    GRADUAL = "gradual"
    SUDDEN = "sudden"
    SEASONAL = "seasonal"


class Significance(str, Enum):
    """Per-feature drift severity bucket."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Urgency(str, Enum):
    """Aggregate drift urgency across all features."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class HistogramBin:
    bin_start: float
    count: int


@dataclass(frozen=True)
class DistributionSnapshot:
    """Statistical fingerprint of one feature at a point in time.

    Attributes:
        feature_name: Feature the snapshot describes.
        timestamp: When the snapshot was computed.
        mean: Sample mean.
        std: Population standard deviation.
        percentiles: p5, p25, p50, p75 and p95.
        histogram: Equal-width bins, the last one closed on the right.
        bin_width: Width shared by every bin.
        sample_count: Number of finite values summarized.
    """

    feature_name: str
    timestamp: datetime
    mean: float
    std: float
    percentiles: tuple[float, ...]
    histogram: tuple[HistogramBin, ...]
    bin_width: float
    sample_count: int

    @property
    def bin_edges(self) -> list[float]:
        if not self.histogram:
            return []
        start = self.histogram[0].bin_start
        return [start + i * self.bin_width for i in range(len(self.histogram) + 1)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "feature_name": self.feature_name,
            "timestamp": self.timestamp.isoformat(),
            "mean": self.mean,
            "std": self.std,
            "percentiles": list(self.percentiles),
            "histogram": [{"bin": b.bin_start, "count": b.count} for b in self.histogram],
            "bin_width": self.bin_width,
            "sample_count": self.sample_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DistributionSnapshot:
        return cls(
            feature_name=data["feature_name"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            mean=float(data["mean"]),
            std=float(data["std"]),
            percentiles=tuple(float(p) for p in data["percentiles"]),
            histogram=tuple(
                HistogramBin(bin_start=float(b["bin"]), count=int(b["count"])) for b in data["histogram"]
            ),
            bin_width=float(data["bin_width"]),
            sample_count=int(data["sample_count"]),
        )


@dataclass(frozen=True)
class FeatureDrift:
    """Drift assessment of a single feature against its baseline."""

    feature_name: str
    drift_score: float
    drift_type: DriftType
    significance: Significance
    current_mean: float
    baseline_mean: float
    current_std: float
    baseline_std: float
    p_value: float | None = None

    @property
    def is_drifted(self) -> bool:
        return self.significance != Significance.LOW


@dataclass
class DriftReport:
    """Result of one drift check."""

    timestamp: datetime
    comparison_period_days: int
    feature_drift: list[FeatureDrift] = field(default_factory=list)
    overall_drift_score: float = 0.0
    drifted_feature_count: int = 0
    retraining_recommended: bool = False
    urgency: Urgency = Urgency.NONE
    suggested_actions: list[str] = field(default_factory=list)
    sample_count: int = 0
    insufficient_data: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["urgency"] = self.urgency.value
        for entry in data["feature_drift"]:
            entry["drift_type"] = entry["drift_type"].value
            entry["significance"] = entry["significance"].value
        return data


@dataclass(frozen=True)
class FeatureQualityMetrics:
    """Descriptive statistics and health counters of one feature."""

    feature_name: str
    missing_count: int
    missing_percent: float
    outlier_count: int
    outlier_percent: float
    mean: float
    std: float
    min: float
    max: float
    median: float
    skewness: float
    kurtosis: float


@dataclass(frozen=True)
class QualitySubScores:
    """The four 0-100 components blended into the overall quality score."""

    missing: float
    outliers: float
    class_balance: float
    feature_quality: float


@dataclass
class DataQualityReport:
    """Result of one data quality audit."""

    timestamp: datetime
    total_samples: int = 0
    valid_samples: int = 0
    valid_percent: float = 0.0
    missing_data_by_feature: dict[str, float] = field(default_factory=dict)
    total_missing_percent: float = 0.0
    outliers_by_feature: dict[str, float] = field(default_factory=dict)
    total_outlier_percent: float = 0.0
    class_counts: dict[str, int] = field(default_factory=dict)
    class_ratios: dict[str, float] = field(default_factory=dict)
    is_imbalanced: bool = False
    imbalance_ratio: float = 0.0
    feature_metrics: list[FeatureQualityMetrics] = field(default_factory=list)
    low_quality_features: list[str] = field(default_factory=list)
    quality_score: float = 0.0
    sub_scores: QualitySubScores | None = None
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    insufficient_data: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data
