"""Feature extraction - snapshot models, provider merge and normalization."""

from token_snapshot_pipeline.features.extractor import (
    FeatureExtractor,
    FeatureValidation,
    array_to_features,
    features_to_array,
    normalize_features,
    validate_features,
)
from token_snapshot_pipeline.features.merge import MergedMarketData, merge_data_sources
from token_snapshot_pipeline.features.models import (
    FEATURE_COUNT,
    FEATURE_NAMES,
    FEATURE_VERSION,
    MLFeatureVector,
    PreviousSnapshot,
    SentimentReading,
    SmartMoneyActivity,
    TokenSnapshot,
)

__all__ = [
    "FEATURE_COUNT",
    "FEATURE_NAMES",
    "FEATURE_VERSION",
    "FeatureExtractor",
    "FeatureValidation",
    "MLFeatureVector",
    "MergedMarketData",
    "PreviousSnapshot",
    "SentimentReading",
    "SmartMoneyActivity",
    "TokenSnapshot",
    "array_to_features",
    "features_to_array",
    "merge_data_sources",
    "normalize_features",
    "validate_features",
]
