"""Scheduled collection job with liveness tracking."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from token_snapshot_pipeline.config import JobSettings
from token_snapshot_pipeline.events import Clock, EventBus, EventType, now_utc
from token_snapshot_pipeline.scheduler import PeriodicTask, TickOutcome
from token_snapshot_pipeline.storage.errors import SnapshotStoreError

if TYPE_CHECKING:
    from token_snapshot_pipeline.collector.collector import CollectionResult, SnapshotCollector
    from token_snapshot_pipeline.monitoring.report_cache import ReportCache
    from token_snapshot_pipeline.sampling.sampler import AdaptiveSampler
    from token_snapshot_pipeline.storage.store import SnapshotStore

logger = logging.getLogger(__name__)

OUTCOME_WINDOW = 10


class HealthStatus(str, Enum):
    """Liveness of the collection job."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class JobHealth:
    """Health snapshot of the collection job.

    Attributes:
        status: Overall verdict.
        last_success_at: End of the last successful cycle.
        seconds_since_success: Age of the last success (or of the job start
            when no cycle has succeeded yet).
        failure_rate: Failed or timed-out share of recent cycles.
        recent_cycles: Number of cycles the failure rate covers.
        last_error: Error of the most recent failed cycle.
    """

    status: HealthStatus
    last_success_at: datetime | None
    seconds_since_success: float | None
    failure_rate: float
    recent_cycles: int
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "seconds_since_success": self.seconds_since_success,
            "failure_rate": self.failure_rate,
            "recent_cycles": self.recent_cycles,
            "last_error": self.last_error,
        }


class CollectionJob:
    """Drives ``SnapshotCollector`` on a fixed cadence.

    Each collection cycle runs under a wall-clock budget with a re-entrancy
    guard (see ``PeriodicTask``). After a successful cycle the sampler's
    dataset balance is refreshed from the stored outcome counts. A separate
    hourly task removes expired watches and old snapshots.

    Example:
        ```python
        job = CollectionJob(collector, store, sampler, settings.job, bus=bus)
        await job.start()
        print(job.get_health_status().status)
        await job.stop()
        ```
    """

    def __init__(
        self,
        collector: SnapshotCollector,
        store: SnapshotStore,
        sampler: AdaptiveSampler,
        settings: JobSettings | None = None,
        *,
        bus: EventBus | None = None,
        cache: ReportCache | None = None,
        clock: Clock = now_utc,
    ) -> None:
        self._collector = collector
        self._store = store
        self._sampler = sampler
        self._settings = settings or JobSettings()
        self._bus = bus
        self._cache = cache
        self._clock = clock

        self._started_at: datetime | None = None
        self._last_success_at: datetime | None = None
        self._last_result: CollectionResult | None = None
        self._outcomes: deque[TickOutcome] = deque(maxlen=OUTCOME_WINDOW)

        s = self._settings
        self._collection_task = PeriodicTask(
            "collection",
            self.run_cycle,
            interval_seconds=s.collection_interval_seconds,
            initial_delay_seconds=s.initial_delay_seconds,
            timeout_seconds=s.max_cycle_seconds,
            on_outcome=self._record_outcome,
        )
        self._cleanup_task = PeriodicTask(
            "collection-cleanup",
            self.run_cleanup,
            interval_seconds=s.cleanup_interval_seconds,
            initial_delay_seconds=s.cleanup_interval_seconds,
        )

    @property
    def collection_task(self) -> PeriodicTask:
        return self._collection_task

    @property
    def is_started(self) -> bool:
        return self._started_at is not None

    @property
    def last_result(self) -> CollectionResult | None:
        return self._last_result

    async def start(self) -> None:
        if self._started_at is not None:
            logger.warning("Collection job already started")
            return
        self._started_at = self._clock()
        await self._collection_task.start()
        await self._cleanup_task.start()
        logger.info(
            "Collection job started (every %.0fs, budget %.0fs)",
            self._settings.collection_interval_seconds,
            self._settings.max_cycle_seconds,
        )

    async def stop(self) -> None:
        if self._started_at is None:
            return
        await self._collection_task.stop()
        await self._cleanup_task.stop()
        self._started_at = None
        logger.info("Collection job stopped")

    async def tick(self) -> TickOutcome:
        """Run one guarded, budgeted collection cycle now."""
        return await self._collection_task.tick()

    async def run_cycle(self) -> CollectionResult:
        """Collect due snapshots, then refresh the dataset balance."""
        result = await self._collector.collect_all_snapshots()
        self._last_result = result
        self._last_success_at = self._clock()

        try:
            counts = await self._store.outcome_counts()
        except SnapshotStoreError as e:
            logger.warning("Failed to refresh dataset balance: %s", e)
        else:
            self._sampler.update_dataset_balance(counts)

        if self._cache is not None:
            try:
                await self._cache.record_heartbeat(
                    self._last_success_at,
                    collected=result.collected,
                    skipped=result.skipped,
                    errors=result.errors,
                    duration_seconds=round(result.duration_seconds, 3),
                )
            except Exception as e:
                logger.warning("Failed to record collection heartbeat: %s", e)
        return result

    async def run_cleanup(self) -> int:
        """Remove expired watches and snapshots past the retention window.

        Returns:
            Number of snapshots deleted.
        """
        await self._collector.cleanup_expired()
        cutoff = self._clock() - timedelta(days=self._settings.snapshot_retention_days)
        try:
            deleted = await self._store.delete_snapshots_before(cutoff)
        except SnapshotStoreError as e:
            logger.warning("Failed to delete old snapshots: %s", e)
            return 0
        if deleted:
            logger.info("Deleted %d snapshots older than %s", deleted, cutoff.isoformat())
        return deleted

    def _record_outcome(self, outcome: TickOutcome) -> None:
        if outcome is TickOutcome.SKIPPED:
            return
        self._outcomes.append(outcome)
        if outcome in (TickOutcome.FAILED, TickOutcome.TIMED_OUT) and self._bus is not None:
            self._bus.emit(
                EventType.COLLECTION_FAILED,
                outcome=outcome.value,
                error=self._collection_task.stats.last_error,
            )

    def failure_rate(self) -> float:
        if not self._outcomes:
            return 0.0
        failed = sum(1 for o in self._outcomes if o is not TickOutcome.COMPLETED)
        return failed / len(self._outcomes)

    def get_health_status(self) -> JobHealth:
        """Judge liveness from the last success and recent failure rate.

        Unhealthy when the job is not running or nothing succeeded within
        the liveness tolerance; degraded when the recent failure rate
        exceeds the configured limit.
        """
        now = self._clock()
        rate = self.failure_rate()
        reference = self._last_success_at
        if self._started_at is not None and (reference is None or self._started_at > reference):
            reference = self._started_at
        since = (now - reference).total_seconds() if reference is not None else None

        if self._started_at is None or since is None or since > self._settings.liveness_tolerance_seconds:
            status = HealthStatus.UNHEALTHY
        elif rate > self._settings.degraded_failure_rate:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        return JobHealth(
            status=status,
            last_success_at=self._last_success_at,
            seconds_since_success=since,
            failure_rate=rate,
            recent_cycles=len(self._outcomes),
            last_error=self._collection_task.stats.last_error,
        )
