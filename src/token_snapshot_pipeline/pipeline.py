"""Main pipeline orchestrator for the token snapshot pipeline.

This module provides the Pipeline class that wires together the sampler,
collector, quality checker and drift monitor and owns their background
loops.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from token_snapshot_pipeline.collector.collector import SnapshotCollector
from token_snapshot_pipeline.collector.job import CollectionJob, JobHealth
from token_snapshot_pipeline.config import Settings, get_settings
from token_snapshot_pipeline.events import Clock, EventBus, now_utc
from token_snapshot_pipeline.features.extractor import FeatureExtractor
from token_snapshot_pipeline.ingestor.dexscreener import DexScreenerClient
from token_snapshot_pipeline.ingestor.gmgn import GmgnClient
from token_snapshot_pipeline.ingestor.rate_limit import SlidingWindowRateLimiter
from token_snapshot_pipeline.monitoring.drift import DistributionMonitor
from token_snapshot_pipeline.monitoring.quality import DataQualityChecker
from token_snapshot_pipeline.monitoring.report_cache import ReportCache
from token_snapshot_pipeline.sampling.models import MarketEventType, OutcomeLabel, SamplingTier
from token_snapshot_pipeline.sampling.sampler import AdaptiveSampler
from token_snapshot_pipeline.scheduler import PeriodicTask
from token_snapshot_pipeline.storage.database import DatabaseManager
from token_snapshot_pipeline.storage.store import SqlSnapshotStore

logger = logging.getLogger(__name__)

# Discovery risk score at which a token counts as high potential.
HIGH_POTENTIAL_RISK_SCORE = 70.0


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    tokens_discovered: int = 0
    events_handled: int = 0
    predictions_marked: int = 0
    last_error: str | None = None


class Pipeline:
    """Composition root of the token snapshot pipeline.

    Pipeline flow:
        Discovery -> SnapshotCollector (AdaptiveSampler, providers) -> store
        store -> DataQualityChecker / DistributionMonitor -> events + report cache

    Example:
        ```python
        from token_snapshot_pipeline.config import get_settings
        from token_snapshot_pipeline.pipeline import Pipeline

        async with Pipeline(get_settings()) as pipeline:
            await pipeline.add_discovered_token(mint, "BONK", liquidity_usd=25_000, risk_score=80)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        bus: EventBus | None = None,
        clock: Clock = now_utc,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            bus: Event bus shared by every component (a new one if omitted).
            clock: Time source injected into every component.
        """
        self._settings = settings or get_settings()
        self._bus = bus or EventBus()
        self._clock = clock

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._store: SqlSnapshotStore | None = None
        self._dex_client: DexScreenerClient | None = None
        self._gmgn_client: GmgnClient | None = None
        self._cache: ReportCache | None = None
        self._sampler: AdaptiveSampler | None = None
        self._collector: SnapshotCollector | None = None
        self._job: CollectionJob | None = None
        self._quality_checker: DataQualityChecker | None = None
        self._drift_monitor: DistributionMonitor | None = None
        self._quality_task: PeriodicTask | None = None
        self._drift_task: PeriodicTask | None = None

        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == PipelineState.RUNNING

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def collector(self) -> SnapshotCollector | None:
        return self._collector

    @property
    def quality_checker(self) -> DataQualityChecker | None:
        return self._quality_checker

    @property
    def drift_monitor(self) -> DistributionMonitor | None:
        return self._drift_monitor

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logging.getLogger("token_snapshot_pipeline").setLevel(self._settings.get_logging_level())
        logger.info("Starting pipeline with %s", self._settings.redacted_summary())

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = self._clock()
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop background loops, flush the buffer and release resources."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        settings = self._settings

        logger.debug("Initializing Redis connection...")
        self._redis = Redis.from_url(settings.redis.url)
        self._cache = ReportCache(
            self._redis,
            key_prefix=settings.redis.key_prefix,
            quality_history=settings.quality.history_size,
            drift_history=settings.drift.history_size,
        )

        logger.debug("Initializing database manager...")
        self._db_manager = DatabaseManager(settings.database.url, pool_size=settings.database.pool_size)
        self._store = SqlSnapshotStore(self._db_manager)

        logger.debug("Initializing market data providers...")
        provider_options: dict[str, Any] = {
            "timeout_seconds": settings.provider.request_timeout_seconds,
            "max_retries": settings.provider.max_retries,
            "requests_per_second": settings.provider.requests_per_second,
        }
        self._dex_client = DexScreenerClient(settings.provider.dexscreener_base_url, **provider_options)
        self._gmgn_client = GmgnClient(settings.provider.gmgn_base_url, **provider_options)

        self._sampler = AdaptiveSampler(settings.sampler, clock=self._clock)
        self._collector = SnapshotCollector(
            self._store,
            self._dex_client,
            self._gmgn_client,
            sampler=self._sampler,
            extractor=FeatureExtractor(clock=self._clock),
            settings=settings.collector,
            bus=self._bus,
            clock=self._clock,
            rate_limiter=SlidingWindowRateLimiter(
                settings.collector.rate_limit_requests,
                settings.collector.rate_limit_window_seconds,
            ),
        )
        self._job = CollectionJob(
            self._collector,
            self._store,
            self._sampler,
            settings.job,
            bus=self._bus,
            cache=self._cache,
            clock=self._clock,
        )
        self._quality_checker = DataQualityChecker(
            self._store,
            settings.quality,
            bus=self._bus,
            cache=self._cache,
            clock=self._clock,
        )
        self._drift_monitor = DistributionMonitor(
            self._store,
            settings.drift,
            bus=self._bus,
            cache=self._cache,
            clock=self._clock,
        )
        self._quality_task = PeriodicTask(
            "quality-check",
            self._quality_checker.check_quality,
            interval_seconds=settings.job.quality_check_interval_seconds,
            initial_delay_seconds=settings.job.quality_check_interval_seconds,
        )
        self._drift_task = PeriodicTask(
            "drift-check",
            self._drift_monitor.check_drift,
            interval_seconds=settings.job.drift_check_interval_seconds,
            initial_delay_seconds=settings.job.drift_check_interval_seconds,
        )

    async def _start_background_services(self) -> None:
        if self._collector:
            logger.debug("Starting snapshot collector...")
            await self._collector.start()

        if self._drift_monitor:
            try:
                await self._drift_monitor.initialize()
            except Exception as e:
                logger.warning("Drift baselines unavailable at startup: %s", e)

        if self._job:
            logger.debug("Starting collection job...")
            await self._job.start()
        if self._quality_task:
            await self._quality_task.start()
        if self._drift_task:
            await self._drift_task.start()

    async def _stop_background_services(self) -> None:
        for task in (self._quality_task, self._drift_task):
            if task:
                await task.stop()
        if self._job:
            logger.debug("Stopping collection job...")
            await self._job.stop()
        if self._collector:
            logger.debug("Stopping snapshot collector...")
            await self._collector.stop()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        for client in (self._dex_client, self._gmgn_client):
            if client:
                await client.aclose()
        self._dex_client = None
        self._gmgn_client = None

        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    def _require_collector(self) -> SnapshotCollector:
        if self._collector is None or not self.is_running:
            raise RuntimeError("Pipeline is not running")
        return self._collector

    # -- external triggers ---------------------------------------------------

    async def add_discovered_token(
        self,
        mint: str,
        symbol: str,
        *,
        liquidity_usd: float = 0.0,
        risk_score: float | None = None,
        tier: SamplingTier | None = None,
    ) -> bool:
        """Start tracking a newly discovered token.

        Tokens whose discovery risk score reaches ``HIGH_POTENTIAL_RISK_SCORE``
        are treated as high potential.

        Returns:
            True if the token is tracked after the call.
        """
        collector = self._require_collector()
        is_high_potential = risk_score is not None and risk_score >= HIGH_POTENTIAL_RISK_SCORE
        state = await collector.add_token(
            mint,
            symbol,
            tier=tier,
            liquidity_usd=liquidity_usd,
            is_high_potential=is_high_potential,
            risk_score=risk_score,
        )
        self._stats.tokens_discovered += 1
        return state is not None

    async def handle_market_event(
        self,
        mint: str,
        event_type: MarketEventType | str,
        magnitude: float | None = None,
    ) -> None:
        collector = self._require_collector()
        self._stats.events_handled += 1
        await collector.handle_market_event(mint, event_type, magnitude)

    def mark_interesting_event(self, mint: str, event_type: MarketEventType | str) -> bool:
        return self._require_collector().mark_interesting_event(mint, event_type)

    async def mark_has_prediction(
        self,
        mint: str,
        predicted_outcome: OutcomeLabel | str | None = None,
    ) -> bool:
        marked = await self._require_collector().mark_has_prediction(mint, predicted_outcome)
        if marked:
            self._stats.predictions_marked += 1
        return marked

    def get_health_status(self) -> JobHealth | None:
        """Liveness of the collection job, or None before start."""
        return self._job.get_health_status() if self._job else None

    def get_status(self) -> dict[str, Any]:
        """Collector counters, last quality/drift verdicts and job health."""
        status: dict[str, Any] = {
            "state": self._state.value,
            "started_at": self._stats.started_at.isoformat() if self._stats.started_at else None,
        }
        if self._collector:
            status["collector"] = self._collector.get_stats()
        health = self.get_health_status()
        if health:
            status["health"] = health.to_dict()
        if self._quality_checker and (quality := self._quality_checker.get_last_report()):
            status["quality"] = {
                "score": quality.quality_score,
                "issues": quality.issues[:3],
            }
        if self._drift_monitor and (drift := self._drift_monitor.get_last_report()):
            status["drift"] = {
                "urgency": drift.urgency.value,
                "retraining_recommended": drift.retraining_recommended,
                "suggested_actions": drift.suggested_actions[:3],
            }
        return status

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()
