"""Token snapshot collector.

Owns the tracked-token map and the snapshot buffer. Each collection cycle
selects the tokens whose sampling interval has elapsed, lets the adaptive
sampler order them into fetch batches, fans each batch out with bounded
concurrency and rate-limits between batches. Accepted snapshots are
buffered and written to the store in the background.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from token_snapshot_pipeline.collector.buffer import SnapshotBuffer
from token_snapshot_pipeline.config import CollectorSettings
from token_snapshot_pipeline.events import Clock, EventBus, EventType, now_utc
from token_snapshot_pipeline.features.extractor import FeatureExtractor, validate_features
from token_snapshot_pipeline.ingestor.rate_limit import SlidingWindowRateLimiter
from token_snapshot_pipeline.sampling.models import (
    MarketEventType,
    OutcomeLabel,
    SamplingTier,
    TrackedTokenState,
)
from token_snapshot_pipeline.sampling.sampler import AdaptiveSampler
from token_snapshot_pipeline.storage.errors import SnapshotStoreError

if TYPE_CHECKING:
    from token_snapshot_pipeline.features.models import TokenSnapshot
    from token_snapshot_pipeline.ingestor.provider import MarketDataProvider, RawPairData
    from token_snapshot_pipeline.storage.store import SnapshotStore

logger = logging.getLogger(__name__)


class CollectorError(Exception):
    """Raised when the collector is used outside its lifecycle."""


class SnapshotOutcome(str, Enum):
    """Result of one per-token snapshot attempt."""

    COLLECTED = "collected"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class CollectionResult:
    """Summary of one collection cycle."""

    collected: int = 0
    skipped: int = 0
    errors: int = 0
    duration_seconds: float = 0.0


@dataclass
class CollectorStats:
    """Running counters of collector activity."""

    snapshots_collected: int = 0
    skipped_duplicate: int = 0
    skipped_quality: int = 0
    skipped_no_data: int = 0
    errors: int = 0
    tokens_added: int = 0
    tokens_removed: int = 0
    tokens_evicted: int = 0
    cycles: int = 0
    last_collection_at: datetime | None = None
    last_result: CollectionResult = field(default_factory=CollectionResult)


class SnapshotCollector:
    """Tracks tokens and collects featurized snapshots for them.

    Args:
        store: Persistence for snapshots, training rows and the watch list.
        dex_provider: Secondary market-data source.
        gmgn_provider: Real-time market-data source; its fields win the merge.
        sampler: Sampling policy (tiers, intervals, batch ordering).
        extractor: Builds snapshots and feature vectors.
        settings: Buffering, concurrency, quality-gate and capacity settings.
        bus: Receives collector events.
        clock: Time source.
        rate_limiter: Limits token fetches across batches.
    """

    def __init__(
        self,
        store: SnapshotStore,
        dex_provider: MarketDataProvider,
        gmgn_provider: MarketDataProvider | None = None,
        *,
        sampler: AdaptiveSampler | None = None,
        extractor: FeatureExtractor | None = None,
        settings: CollectorSettings | None = None,
        bus: EventBus | None = None,
        clock: Clock = now_utc,
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        self._store = store
        self._dex = dex_provider
        self._gmgn = gmgn_provider
        self._settings = settings or CollectorSettings()
        self._sampler = sampler or AdaptiveSampler(clock=clock)
        self._extractor = extractor or FeatureExtractor(clock=clock)
        self._bus = bus
        self._clock = clock
        self._rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            self._settings.rate_limit_requests,
            self._settings.rate_limit_window_seconds,
        )
        self._buffer = SnapshotBuffer(
            store,
            capacity=self._settings.buffer_size,
            flush_interval_seconds=self._settings.flush_interval_seconds,
            bus=bus,
            clock=clock,
        )
        self._semaphore = asyncio.Semaphore(self._settings.max_concurrent_fetches)
        self._tokens: dict[str, TrackedTokenState] = {}
        self._inflight: set[str] = set()
        self._stats = CollectorStats()
        self._started = False

    @property
    def buffer(self) -> SnapshotBuffer:
        return self._buffer

    @property
    def sampler(self) -> AdaptiveSampler:
        return self._sampler

    @property
    def stats(self) -> CollectorStats:
        return self._stats

    @property
    def is_started(self) -> bool:
        return self._started

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Restore the persisted watch list and start the flush timer.

        Raises:
            CollectorError: If the collector is already started.
        """
        if self._started:
            raise CollectorError("Collector already started")
        await self._restore_watch_list()
        await self._buffer.start()
        self._started = True
        logger.info("Snapshot collector started with %d tracked tokens", len(self._tokens))

    async def stop(self) -> None:
        """Stop the flush timer and flush the remaining buffer."""
        if not self._started:
            return
        self._started = False
        flushed = await self._buffer.stop()
        logger.info("Snapshot collector stopped (final flush wrote %d snapshots)", flushed)

    async def _restore_watch_list(self) -> None:
        try:
            watches = await self._store.list_active_watches(self._clock())
        except SnapshotStoreError as e:
            logger.warning("Failed to load watch list: %s", e)
            return
        for watch in watches:
            # Liquidity is unknown until the next snapshot.
            tier = SamplingTier.HIGH if watch.has_prediction else SamplingTier.MEDIUM
            self._tokens[watch.mint] = TrackedTokenState(
                mint=watch.mint,
                symbol=watch.symbol or "UNKNOWN",
                tier=tier,
                config=self._sampler.get_sampling_config(tier),
                added_at=watch.added_at,
                expires_at=watch.expires_at,
                snapshot_count=watch.snapshot_count,
                last_snapshot_at=watch.last_snapshot_at,
                has_prediction=watch.has_prediction,
            )

    # -- watch list ----------------------------------------------------------

    async def add_token(
        self,
        mint: str,
        symbol: str,
        *,
        tier: SamplingTier | None = None,
        liquidity_usd: float = 0.0,
        has_prediction: bool = False,
        is_high_potential: bool = False,
        risk_score: float | None = None,
        expires_in_hours: float | None = None,
    ) -> TrackedTokenState | None:
        """Start (or refresh) tracking of a token.

        Re-adding a tracked token keeps its snapshot counters and its
        prediction and event flags, so a flagged token stays HIGH. When the
        tracked count exceeds the cap, the lowest-priority tokens are evicted.

        Returns:
            The token's state, or None if it was evicted right away.
        """
        now = self._clock()
        state = self._tokens.get(mint)
        if state is not None:
            has_prediction = has_prediction or state.has_prediction
            is_high_potential = is_high_potential or state.is_high_potential
        has_event = state is not None and state.has_interesting_event
        if tier is None or has_prediction or has_event:
            resolved = self._sampler.determine_tier(
                liquidity_usd,
                has_prediction=has_prediction,
                has_interesting_event=has_event,
                is_high_potential=is_high_potential,
            )
        else:
            resolved = tier
        hours = expires_in_hours if expires_in_hours is not None else self._settings.tracking_expiry_hours
        expires_at = now + timedelta(hours=hours)

        if state is None:
            state = TrackedTokenState(
                mint=mint,
                symbol=symbol,
                tier=resolved,
                config=self._sampler.get_sampling_config(resolved),
                added_at=now,
                expires_at=expires_at,
            )
            self._tokens[mint] = state
        else:
            state.symbol = symbol
            state.expires_at = max(state.expires_at, expires_at)
            self._set_tier(state, resolved)
        state.liquidity_usd = liquidity_usd
        state.has_prediction = state.has_prediction or has_prediction
        state.is_high_potential = state.is_high_potential or is_high_potential
        if risk_score is not None:
            state.risk_score = risk_score
        state.is_active = True

        await self._mirror_watch(state)
        self._stats.tokens_added += 1
        self._emit(EventType.TOKEN_ADDED, mint=mint, symbol=symbol, tier=state.tier.value)

        await self._enforce_capacity()
        return self._tokens.get(mint)

    async def remove_token(self, mint: str, *, reason: str = "removed") -> bool:
        state = self._tokens.pop(mint, None)
        if state is None:
            return False
        state.is_active = False
        try:
            await self._store.remove_watch(mint)
        except SnapshotStoreError as e:
            logger.warning("Failed to remove %s from the stored watch list: %s", mint, e)
        self._stats.tokens_removed += 1
        self._emit(EventType.TOKEN_REMOVED, mint=mint, symbol=state.symbol, reason=reason)
        return True

    def mark_interesting_event(self, mint: str, event_type: MarketEventType | str) -> bool:
        """Flag a market event; the token is sampled at the high tier from now on."""
        state = self._tokens.get(mint)
        if state is None:
            return False
        event = event_type.value if isinstance(event_type, MarketEventType) else str(event_type)
        state.has_interesting_event = True
        state.last_event_at = self._clock()
        state.last_event_type = event
        self._set_tier(state, SamplingTier.HIGH)
        self._emit(EventType.INTERESTING_EVENT, mint=mint, event_type=event)
        return True

    async def mark_has_prediction(
        self,
        mint: str,
        predicted_outcome: OutcomeLabel | str | None = None,
    ) -> bool:
        """Record that a prediction was made and extend tracking to see its outcome."""
        state = self._tokens.get(mint)
        if state is None:
            return False
        state.has_prediction = True
        if predicted_outcome:
            try:
                state.predicted_outcome = OutcomeLabel(predicted_outcome)
            except ValueError:
                logger.warning("Ignoring unknown predicted outcome %r for %s", predicted_outcome, mint)
        state.expires_at = self._clock() + timedelta(hours=self._settings.prediction_tracking_hours)
        self._set_tier(state, SamplingTier.HIGH)
        await self._mirror_watch(state)
        return True

    async def handle_market_event(
        self,
        mint: str,
        event_type: MarketEventType | str,
        magnitude: float | None = None,
    ) -> SnapshotOutcome | None:
        """Flag an event and take an immediate snapshot when the sampler allows.

        Returns:
            The snapshot outcome, or None when no snapshot was attempted.
        """
        state = self._tokens.get(mint)
        if state is None:
            return None
        sample_now = self._sampler.should_sample_immediately(state, event_type, magnitude)
        self.mark_interesting_event(mint, event_type)
        if not sample_now:
            return None
        return await self.collect_snapshot(state)

    async def cleanup_expired(self) -> int:
        """Drop expired tokens from memory and from the stored watch list."""
        now = self._clock()
        expired = [mint for mint, state in self._tokens.items() if state.is_expired(now)]
        for mint in expired:
            await self.remove_token(mint, reason="expired")

        try:
            stored = await self._store.cleanup_expired_watches(now)
        except SnapshotStoreError as e:
            logger.warning("Failed to clean up stored watch list: %s", e)
            stored = []
        for mint in stored:
            if mint in self._tokens:
                await self.remove_token(mint, reason="expired")

        removed = len(set(expired) | set(stored))
        if removed:
            logger.info("Cleaned up %d expired watches", removed)
        return removed

    async def _enforce_capacity(self) -> None:
        excess = len(self._tokens) - self._settings.max_tracked_tokens
        if excess <= 0:
            return
        # Stable sort: among equal priorities the oldest entries go first.
        by_priority = sorted(self._tokens.values(), key=lambda s: s.config.priority)
        for state in by_priority[:excess]:
            await self.remove_token(state.mint, reason="evicted")
        self._stats.tokens_evicted += excess
        logger.info("Evicted %d low-priority tokens (cap %d)", excess, self._settings.max_tracked_tokens)

    async def _mirror_watch(self, state: TrackedTokenState) -> None:
        try:
            await self._store.add_watch(state)
        except SnapshotStoreError as e:
            logger.warning("Failed to persist watch entry for %s: %s", state.mint, e)

    def _set_tier(self, state: TrackedTokenState, tier: SamplingTier) -> None:
        if state.tier != tier:
            state.tier = tier
            state.config = self._sampler.get_sampling_config(tier)

    # -- collection ----------------------------------------------------------

    def due_tokens(self, now: datetime | None = None) -> list[TrackedTokenState]:
        """Active, unexpired tokens whose sampling interval has elapsed.

        Sorted by tier priority, highest first. Tokens at their snapshot cap
        are excluded.
        """
        now = now or self._clock()
        due: list[TrackedTokenState] = []
        for state in self._tokens.values():
            if not state.is_active or state.is_expired(now) or state.at_snapshot_cap():
                continue
            last = state.last_snapshot_at
            if last is None or (now - last).total_seconds() >= state.config.interval_seconds:
                due.append(state)
        due.sort(key=lambda s: s.config.priority, reverse=True)
        return due

    async def collect_all_snapshots(self) -> CollectionResult:
        """Run one collection cycle over every due token."""
        started = time.monotonic()
        now = self._clock()

        for mint in [m for m, s in self._tokens.items() if s.is_expired(now)]:
            await self.remove_token(mint, reason="expired")

        remaining = self.due_tokens(now)
        collected = skipped = errors = 0
        batch_size = self._settings.max_concurrent_fetches
        if remaining:
            logger.debug("Collecting snapshots for %d tokens", len(remaining))

        while remaining:
            batch = self._sampler.prioritize_tokens(remaining, batch_size)
            chosen = {state.mint for state in batch}
            remaining = [state for state in remaining if state.mint not in chosen]

            waited = await self._rate_limiter.acquire(len(batch))
            if waited:
                logger.debug("Rate limited for %.2fs before next batch", waited)

            results = await asyncio.gather(
                *(self.collect_snapshot(state) for state in batch),
                return_exceptions=True,
            )
            for state, result in zip(batch, results, strict=True):
                if isinstance(result, BaseException):
                    errors += 1
                    self._stats.errors += 1
                    logger.warning("Snapshot collection failed for %s: %s", state.symbol, result)
                elif result is SnapshotOutcome.COLLECTED:
                    collected += 1
                elif result is SnapshotOutcome.SKIPPED:
                    skipped += 1
                else:
                    errors += 1

        duration = time.monotonic() - started
        result = CollectionResult(
            collected=collected,
            skipped=skipped,
            errors=errors,
            duration_seconds=duration,
        )
        self._stats.cycles += 1
        self._stats.last_collection_at = self._clock()
        self._stats.last_result = result

        if collected or skipped or errors:
            logger.info(
                "Collected %d snapshots, skipped %d, errors %d in %.2fs",
                collected,
                skipped,
                errors,
                duration,
            )
        self._emit(
            EventType.COLLECTION_COMPLETE,
            collected=collected,
            skipped=skipped,
            errors=errors,
            duration_seconds=duration,
        )
        return result

    async def collect_snapshot(self, state: TrackedTokenState) -> SnapshotOutcome:
        """Fetch, featurize, validate and buffer one snapshot of ``state``'s token."""
        mint = state.mint
        if mint in self._inflight:
            self._stats.skipped_duplicate += 1
            return SnapshotOutcome.SKIPPED

        now = self._clock()
        last = state.last_snapshot_at
        if last is not None and (now - last).total_seconds() < self._settings.min_snapshot_interval_seconds:
            self._stats.skipped_duplicate += 1
            return SnapshotOutcome.SKIPPED

        self._inflight.add(mint)
        try:
            async with self._semaphore:
                try:
                    dex_data, gmgn_data = await asyncio.wait_for(
                        self._fetch(mint),
                        timeout=self._settings.fetch_timeout_seconds,
                    )
                except TimeoutError:
                    self._stats.errors += 1
                    logger.warning(
                        "Fetch for %s timed out after %.1fs",
                        state.symbol,
                        self._settings.fetch_timeout_seconds,
                    )
                    return SnapshotOutcome.FAILED

            if dex_data is None and gmgn_data is None:
                self._stats.skipped_no_data += 1
                return SnapshotOutcome.SKIPPED

            try:
                previous = await self._store.get_previous_snapshot(mint)
            except SnapshotStoreError as e:
                logger.debug("No previous snapshot for %s: %s", mint, e)
                previous = None

            snapshot = self._extractor.create_snapshot(
                mint,
                state.symbol,
                dex_data=dex_data,
                gmgn_data=gmgn_data,
                previous=previous,
                risk_score=state.risk_score,
            )
            if snapshot is None:
                self._stats.skipped_no_data += 1
                return SnapshotOutcome.SKIPPED

            rejection = self.quality_rejection(snapshot)
            if rejection is not None:
                self._stats.skipped_quality += 1
                logger.debug("Rejected snapshot for %s: %s", state.symbol, rejection)
                return SnapshotOutcome.SKIPPED

            self._buffer.add(snapshot)
            self._record_snapshot(state, snapshot)

            try:
                await self._store.mark_snapshot(
                    mint,
                    at=snapshot.recorded_at,
                    snapshot_count=state.snapshot_count,
                )
            except SnapshotStoreError as e:
                logger.warning("Failed to update watch entry for %s: %s", mint, e)

            self._stats.snapshots_collected += 1
            return SnapshotOutcome.COLLECTED
        finally:
            self._inflight.discard(mint)

    def quality_rejection(self, snapshot: TokenSnapshot) -> str | None:
        """Reason the snapshot fails the quality gate, or None if it passes."""
        if not snapshot.price_usd or snapshot.price_usd <= 0:
            return "missing or invalid price"
        if snapshot.liquidity_usd < self._settings.min_liquidity_usd:
            return f"liquidity too low ({snapshot.liquidity_usd:.0f} USD)"
        validation = validate_features(snapshot.features)
        if validation.bad_percent > self._settings.max_missing_feature_percent:
            return f"too many missing features: {validation.bad_percent:.1f}%"
        return None

    def _record_snapshot(self, state: TrackedTokenState, snapshot: TokenSnapshot) -> None:
        if state.last_snapshot_at is None or snapshot.recorded_at > state.last_snapshot_at:
            state.last_snapshot_at = snapshot.recorded_at
        state.snapshot_count += 1
        state.liquidity_usd = snapshot.liquidity_usd

        if not state.has_interesting_event:
            tier = self._sampler.determine_tier(
                snapshot.liquidity_usd,
                has_prediction=state.has_prediction,
                is_high_potential=state.is_high_potential,
            )
            self._set_tier(state, tier)

    async def _fetch(self, mint: str) -> tuple[RawPairData | None, RawPairData | None]:
        providers: list[MarketDataProvider | None] = [self._dex, self._gmgn]
        results = await asyncio.gather(
            *(self._fetch_one(provider, mint) for provider in providers),
            return_exceptions=True,
        )
        data: list[RawPairData | None] = []
        for provider, result in zip(providers, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                name = getattr(provider, "name", "provider")
                logger.warning("%s fetch failed for %s: %s", name, mint, result)
                data.append(None)
            else:
                data.append(result)
        return data[0], data[1]

    @staticmethod
    async def _fetch_one(provider: MarketDataProvider | None, mint: str) -> RawPairData | None:
        if provider is None:
            return None
        return await provider.get_pair_data(mint)

    # -- introspection -------------------------------------------------------

    def get_token_state(self, mint: str) -> TrackedTokenState | None:
        return self._tokens.get(mint)

    def get_tracked_tokens(self) -> list[TrackedTokenState]:
        return list(self._tokens.values())

    def get_stats(self) -> dict[str, Any]:
        s = self._stats
        by_tier = Counter(state.tier.value for state in self._tokens.values())
        return {
            "tracked_tokens": len(self._tokens),
            "tokens_by_tier": {tier.value: by_tier.get(tier.value, 0) for tier in SamplingTier},
            "buffer_size": len(self._buffer),
            "snapshots_collected": s.snapshots_collected,
            "skipped_duplicate": s.skipped_duplicate,
            "skipped_quality": s.skipped_quality,
            "skipped_no_data": s.skipped_no_data,
            "errors": s.errors,
            "tokens_added": s.tokens_added,
            "tokens_removed": s.tokens_removed,
            "tokens_evicted": s.tokens_evicted,
            "cycles": s.cycles,
            "last_collection_at": s.last_collection_at.isoformat() if s.last_collection_at else None,
            "snapshots_written": self._buffer.stats.snapshots_written,
            "buffer_flushes": self._buffer.stats.flushes,
        }

    def _emit(self, event_type: EventType, /, **payload: Any) -> None:
        if self._bus is not None:
            self._bus.emit(event_type, **payload)
