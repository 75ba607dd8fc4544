"""Persistent store contract used by the collector and the monitors.

``SnapshotStore`` is the boundary the core components depend on;
``SqlSnapshotStore`` implements it over SQLAlchemy async sessions. Every
call runs in its own short transaction. Database failures are mapped to
two error kinds so callers can tell an item-level failure (skip it) from
the store being unreachable (stop and retry later).
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError

from token_snapshot_pipeline.features.models import FEATURE_VERSION, PreviousSnapshot, TokenSnapshot
from token_snapshot_pipeline.monitoring.models import (
    DataQualityReport,
    DistributionSnapshot,
    DriftReport,
    HistogramBin,
)
from token_snapshot_pipeline.storage.errors import SnapshotStoreError, StoreUnavailableError
from token_snapshot_pipeline.storage.repos import (
    BaselineDTO,
    BaselineRepository,
    ReportRepository,
    SnapshotRepository,
    TrainingDataRepository,
    WatchListDTO,
    WatchListRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from token_snapshot_pipeline.sampling.models import TrackedTokenState
    from token_snapshot_pipeline.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureRow:
    """A stored feature vector with its (optional) outcome label."""

    mint: str
    features: dict[str, float | None]
    outcome: str | None
    created_at: datetime


@runtime_checkable
class SnapshotStore(Protocol):
    """Persistence operations required by the pipeline."""

    async def save_snapshot(self, snapshot: TokenSnapshot) -> None: ...

    async def save_training_row(self, snapshot: TokenSnapshot) -> None: ...

    async def get_previous_snapshot(self, mint: str) -> PreviousSnapshot | None: ...

    async def add_watch(self, state: TrackedTokenState) -> None: ...

    async def remove_watch(self, mint: str) -> None: ...

    async def mark_snapshot(self, mint: str, *, at: datetime, snapshot_count: int) -> None: ...

    async def list_active_watches(self, now: datetime) -> list[WatchListDTO]: ...

    async def cleanup_expired_watches(self, now: datetime) -> list[str]: ...

    async def load_baselines(self) -> dict[str, DistributionSnapshot]: ...

    async def save_baselines(self, baselines: Mapping[str, DistributionSnapshot]) -> None: ...

    async def load_recent_feature_rows(
        self, limit: int, since: datetime | None = None
    ) -> list[FeatureRow]: ...

    async def outcome_counts(self) -> dict[str, int]: ...

    async def delete_snapshots_before(self, cutoff: datetime) -> int: ...

    async def save_quality_report(self, report: DataQualityReport) -> None: ...

    async def save_drift_report(self, report: DriftReport) -> None: ...


def _json_safe(values: Sequence[float] | Mapping[str, float]) -> str:
    """Encode floats as JSON, writing non-finite values as null."""

    def clean(v: float) -> float | None:
        return float(v) if v is not None and math.isfinite(v) else None

    if isinstance(values, Mapping):
        return json.dumps({k: clean(v) for k, v in values.items()})
    return json.dumps([clean(v) for v in values])


class SqlSnapshotStore:
    """``SnapshotStore`` backed by a SQL database.

    Args:
        db: Database manager supplying sessions.
        feature_version: Version tag written to and read from training rows.
    """

    def __init__(self, db: DatabaseManager, *, feature_version: str = FEATURE_VERSION) -> None:
        self._db = db
        self._feature_version = feature_version

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._db.get_async_session() as session:
                yield session
        except (OperationalError, InterfaceError, OSError) as e:
            logger.debug("Store connection error during %s: %s", operation, e)
            raise StoreUnavailableError(f"{operation} failed: store unavailable: {e}") from e
        except SQLAlchemyError as e:
            raise SnapshotStoreError(f"{operation} failed: {e}") from e

    # -- snapshots -----------------------------------------------------------

    async def save_snapshot(self, snapshot: TokenSnapshot) -> None:
        values: dict[str, Any] = {
            "mint": snapshot.mint,
            "symbol": snapshot.symbol,
            "name": snapshot.name,
            "price_usd": snapshot.price_usd,
            "price_sol": snapshot.price_sol,
            "market_cap": snapshot.market_cap,
            "fdv": snapshot.fdv,
            "volume_5m": snapshot.volume_5m,
            "volume_1h": snapshot.volume_1h,
            "volume_24h": snapshot.volume_24h,
            "liquidity_usd": snapshot.liquidity_usd,
            "lp_burned_percent": snapshot.lp_burned_percent,
            "holder_count": snapshot.holder_count,
            "top10_percent": snapshot.top10_percent,
            "mint_revoked": snapshot.mint_revoked,
            "freeze_revoked": snapshot.freeze_revoked,
            "has_twitter": snapshot.has_twitter,
            "has_telegram": snapshot.has_telegram,
            "has_website": snapshot.has_website,
            "price_change_5m": snapshot.price_change_5m,
            "price_change_1h": snapshot.price_change_1h,
            "price_change_24h": snapshot.price_change_24h,
            "buys_1h": snapshot.buys_1h,
            "sells_1h": snapshot.sells_1h,
            "risk_score": snapshot.risk_score,
            "source": snapshot.source,
            "pool_address": snapshot.pool_address,
            "pair_created_at": snapshot.created_at,
            "recorded_at": snapshot.recorded_at,
            "feature_version": snapshot.feature_version,
            "features_json": _json_safe(snapshot.features.to_dict()),
            "normalized_json": _json_safe(snapshot.normalized_features),
        }
        async with self._session("save_snapshot") as session:
            await SnapshotRepository(session).upsert(values)

    async def save_training_row(self, snapshot: TokenSnapshot) -> None:
        values = {
            "mint": snapshot.mint,
            "symbol": snapshot.symbol,
            "feature_version": snapshot.feature_version,
            "features_json": _json_safe(snapshot.features.to_dict()),
            "normalized_json": _json_safe(snapshot.normalized_features),
            "outcome": None,
            "price_usd": snapshot.price_usd,
            "liquidity_usd": snapshot.liquidity_usd,
            "risk_score": snapshot.risk_score,
            "created_at": snapshot.recorded_at,
        }
        async with self._session("save_training_row") as session:
            await TrainingDataRepository(session).upsert(values)

    async def get_previous_snapshot(self, mint: str) -> PreviousSnapshot | None:
        async with self._session("get_previous_snapshot") as session:
            row = await SnapshotRepository(session).get_latest(mint)
        if row is None:
            return None
        return PreviousSnapshot(
            recorded_at=row.recorded_at,
            volume_1h=row.volume_1h,
            liquidity_usd=row.liquidity_usd,
            holder_count=row.holder_count,
        )

    async def delete_snapshots_before(self, cutoff: datetime) -> int:
        async with self._session("delete_snapshots_before") as session:
            return await SnapshotRepository(session).delete_before(cutoff)

    # -- watch list ----------------------------------------------------------

    async def add_watch(self, state: TrackedTokenState) -> None:
        dto = WatchListDTO(
            mint=state.mint,
            symbol=state.symbol,
            tier=state.tier.value,
            has_prediction=state.has_prediction,
            snapshot_count=state.snapshot_count,
            is_active=state.is_active,
            added_at=state.added_at,
            expires_at=state.expires_at,
            last_snapshot_at=state.last_snapshot_at,
        )
        async with self._session("add_watch") as session:
            await WatchListRepository(session).upsert(dto)

    async def remove_watch(self, mint: str) -> None:
        async with self._session("remove_watch") as session:
            await WatchListRepository(session).remove(mint)

    async def mark_snapshot(self, mint: str, *, at: datetime, snapshot_count: int) -> None:
        async with self._session("mark_snapshot") as session:
            await WatchListRepository(session).mark_snapshot(mint, at=at, snapshot_count=snapshot_count)

    async def list_active_watches(self, now: datetime) -> list[WatchListDTO]:
        async with self._session("list_active_watches") as session:
            return await WatchListRepository(session).list_active(now=now)

    async def cleanup_expired_watches(self, now: datetime) -> list[str]:
        async with self._session("cleanup_expired_watches") as session:
            return await WatchListRepository(session).cleanup_expired(now=now)

    # -- baselines -----------------------------------------------------------

    async def load_baselines(self) -> dict[str, DistributionSnapshot]:
        async with self._session("load_baselines") as session:
            rows = await BaselineRepository(session).list_all()
        baselines: dict[str, DistributionSnapshot] = {}
        for row in rows:
            baselines[row.feature_name] = DistributionSnapshot(
                feature_name=row.feature_name,
                timestamp=row.computed_at,
                mean=row.mean,
                std=row.std,
                percentiles=tuple(row.percentiles),
                histogram=tuple(
                    HistogramBin(bin_start=float(b["bin"]), count=int(b["count"]))
                    for b in row.histogram.get("bins", [])
                ),
                bin_width=float(row.histogram.get("bin_width", 1.0)),
                sample_count=row.sample_count,
            )
        return baselines

    async def save_baselines(self, baselines: Mapping[str, DistributionSnapshot]) -> None:
        dtos = [
            BaselineDTO(
                feature_name=name,
                computed_at=snap.timestamp,
                mean=snap.mean,
                std=snap.std,
                sample_count=snap.sample_count,
                percentiles=list(snap.percentiles),
                histogram={
                    "bin_width": snap.bin_width,
                    "bins": [{"bin": b.bin_start, "count": b.count} for b in snap.histogram],
                },
            )
            for name, snap in baselines.items()
        ]
        async with self._session("save_baselines") as session:
            await BaselineRepository(session).upsert_many(dtos)

    # -- training rows -------------------------------------------------------

    async def load_recent_feature_rows(
        self, limit: int, since: datetime | None = None
    ) -> list[FeatureRow]:
        async with self._session("load_recent_feature_rows") as session:
            rows = await TrainingDataRepository(session).list_recent(
                limit=limit, since=since, feature_version=self._feature_version
            )
        return [
            FeatureRow(mint=r.mint, features=r.features, outcome=r.outcome, created_at=r.created_at)
            for r in rows
        ]

    async def outcome_counts(self) -> dict[str, int]:
        async with self._session("outcome_counts") as session:
            return await TrainingDataRepository(session).outcome_counts(
                feature_version=self._feature_version
            )

    async def set_outcome(
        self,
        *,
        mint: str,
        created_at: datetime,
        outcome: str,
        confidence: float | None = None,
    ) -> bool:
        """Label one training row (used by external outcome labelers)."""
        async with self._session("set_outcome") as session:
            return await TrainingDataRepository(session).set_outcome(
                mint=mint,
                feature_version=self._feature_version,
                created_at=created_at,
                outcome=outcome,
                confidence=confidence,
            )

    # -- reports -------------------------------------------------------------

    async def save_quality_report(self, report: DataQualityReport) -> None:
        async with self._session("save_quality_report") as session:
            await ReportRepository(session).insert_quality(
                generated_at=report.timestamp,
                total_samples=report.total_samples,
                valid_samples=report.valid_samples,
                quality_score=report.quality_score,
                is_imbalanced=report.is_imbalanced,
                imbalance_ratio=report.imbalance_ratio,
                payload_json=json.dumps(report.to_dict()),
            )

    async def save_drift_report(self, report: DriftReport) -> None:
        async with self._session("save_drift_report") as session:
            await ReportRepository(session).insert_drift(
                generated_at=report.timestamp,
                comparison_period_days=report.comparison_period_days,
                overall_drift_score=report.overall_drift_score,
                drifted_feature_count=report.drifted_feature_count,
                urgency=report.urgency.value,
                retraining_recommended=report.retraining_recommended,
                payload_json=json.dumps(report.to_dict()),
            )
