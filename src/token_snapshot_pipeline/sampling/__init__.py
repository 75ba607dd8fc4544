"""Adaptive sampling policy - tiers, scheduling scores and dataset balance."""

from token_snapshot_pipeline.sampling.models import (
    IMMEDIATE_EVENT_TYPES,
    DatasetBalance,
    MarketEventType,
    OutcomeLabel,
    SamplingConfig,
    SamplingTier,
    TrackedTokenState,
)
from token_snapshot_pipeline.sampling.sampler import AdaptiveSampler

__all__ = [
    "IMMEDIATE_EVENT_TYPES",
    "AdaptiveSampler",
    "DatasetBalance",
    "MarketEventType",
    "OutcomeLabel",
    "SamplingConfig",
    "SamplingTier",
    "TrackedTokenState",
]
