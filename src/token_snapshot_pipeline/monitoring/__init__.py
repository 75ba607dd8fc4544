"""Dataset monitoring - Quality audits, drift detection and report caching."""

from token_snapshot_pipeline.monitoring.drift import (
    DistributionMonitor,
    calculate_drift_score,
    classify_drift_type,
    compute_distribution,
    histogram_divergence,
    welch_p_value,
)
from token_snapshot_pipeline.monitoring.models import (
    DataQualityReport,
    DistributionSnapshot,
    DriftReport,
    DriftType,
    FeatureDrift,
    FeatureQualityMetrics,
    HistogramBin,
    QualitySubScores,
    Significance,
    Urgency,
)
from token_snapshot_pipeline.monitoring.quality import DataQualityChecker, build_feature_matrix
from token_snapshot_pipeline.monitoring.report_cache import ReportCache

__all__ = [
    "DataQualityChecker",
    "DataQualityReport",
    "DistributionMonitor",
    "DistributionSnapshot",
    "DriftReport",
    "DriftType",
    "FeatureDrift",
    "FeatureQualityMetrics",
    "HistogramBin",
    "QualitySubScores",
    "ReportCache",
    "Significance",
    "Urgency",
    "build_feature_matrix",
    "calculate_drift_score",
    "classify_drift_type",
    "compute_distribution",
    "histogram_divergence",
    "welch_p_value",
]
