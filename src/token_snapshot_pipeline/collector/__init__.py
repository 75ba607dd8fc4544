"""Snapshot collection - Buffered, rate-limited, adaptive-cadence collection."""

from token_snapshot_pipeline.collector.buffer import BufferStats, SnapshotBuffer
from token_snapshot_pipeline.collector.collector import (
    CollectionResult,
    CollectorError,
    CollectorStats,
    SnapshotCollector,
    SnapshotOutcome,
)
from token_snapshot_pipeline.collector.job import CollectionJob, HealthStatus, JobHealth

__all__ = [
    "BufferStats",
    "CollectionJob",
    "CollectionResult",
    "CollectorError",
    "CollectorStats",
    "HealthStatus",
    "JobHealth",
    "SnapshotBuffer",
    "SnapshotCollector",
    "SnapshotOutcome",
]
