"""Repository pattern implementations for data access.

This module provides data access abstractions for token snapshots,
versioned training rows, the watch list, feature baselines and the
monitoring report logs. Writes are idempotent on each table's natural
key so flushes can be retried safely.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from token_snapshot_pipeline.storage.models import (
    DataQualityReportModel,
    DriftReportModel,
    FeatureBaselineModel,
    TokenSnapshotModel,
    TrainingRowModel,
    WatchListModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on read; values are always stored as UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _insert_for(session: AsyncSession, model: type[Any]) -> Any:
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


@dataclass
class SnapshotRowDTO:
    """Data transfer object for stored token snapshots."""

    mint: str
    symbol: str
    price_usd: float
    liquidity_usd: float
    holder_count: float
    volume_1h: float
    risk_score: float
    source: str
    recorded_at: datetime
    feature_version: str
    features: dict[str, float]
    normalized: list[float]

    @classmethod
    def from_model(cls, model: TokenSnapshotModel) -> SnapshotRowDTO:
        return cls(
            mint=model.mint,
            symbol=model.symbol,
            price_usd=model.price_usd,
            liquidity_usd=model.liquidity_usd,
            holder_count=model.holder_count,
            volume_1h=model.volume_1h,
            risk_score=model.risk_score,
            source=model.source,
            recorded_at=_as_utc(model.recorded_at) or model.recorded_at,
            feature_version=model.feature_version,
            features=json.loads(model.features_json),
            normalized=json.loads(model.normalized_json),
        )


class SnapshotRepository:
    """Repository for raw token snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, values: dict[str, Any]) -> None:
        """Insert a snapshot row; a duplicate (mint, recorded_at) overwrites itself."""
        stmt = _insert_for(self.session, TokenSnapshotModel).values(**values)
        updatable = {k: stmt.excluded[k] for k in values if k not in ("mint", "recorded_at")}
        stmt = stmt.on_conflict_do_update(index_elements=["mint", "recorded_at"], set_=updatable)
        await self.session.execute(stmt)
        await self.session.flush()

    async def get_latest(self, mint: str) -> SnapshotRowDTO | None:
        result = await self.session.execute(
            select(TokenSnapshotModel)
            .where(TokenSnapshotModel.mint == mint)
            .order_by(TokenSnapshotModel.recorded_at.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return SnapshotRowDTO.from_model(model) if model else None

    async def list_for_mint(self, mint: str, *, limit: int = 100) -> list[SnapshotRowDTO]:
        result = await self.session.execute(
            select(TokenSnapshotModel)
            .where(TokenSnapshotModel.mint == mint)
            .order_by(TokenSnapshotModel.recorded_at.desc())
            .limit(limit)
        )
        return [SnapshotRowDTO.from_model(m) for m in result.scalars().all()]

    async def delete_before(self, cutoff: datetime) -> int:
        if cutoff.tzinfo is None:
            raise ValueError("cutoff must be timezone-aware")
        result = await self.session.execute(
            delete(TokenSnapshotModel).where(TokenSnapshotModel.recorded_at < cutoff)
        )
        await self.session.flush()
        return int(result.rowcount or 0)


@dataclass
class TrainingRowDTO:
    """Data transfer object for training rows."""

    mint: str
    symbol: str
    feature_version: str
    features: dict[str, float | None]
    normalized: list[float]
    outcome: str | None
    created_at: datetime
    labeled_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TrainingRowModel) -> TrainingRowDTO:
        return cls(
            mint=model.mint,
            symbol=model.symbol,
            feature_version=model.feature_version,
            features=json.loads(model.features_json),
            normalized=json.loads(model.normalized_json),
            outcome=model.outcome,
            created_at=_as_utc(model.created_at) or model.created_at,
            labeled_at=_as_utc(model.labeled_at),
        )


class TrainingDataRepository:
    """Repository for versioned training rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, values: dict[str, Any]) -> None:
        """Insert a training row; existing labels survive a re-write of the same key."""
        stmt = _insert_for(self.session, TrainingRowModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["mint", "feature_version", "created_at"],
            set_={
                "features_json": stmt.excluded.features_json,
                "normalized_json": stmt.excluded.normalized_json,
                "price_usd": stmt.excluded.price_usd,
                "liquidity_usd": stmt.excluded.liquidity_usd,
                "risk_score": stmt.excluded.risk_score,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def list_recent(
        self,
        *,
        limit: int,
        since: datetime | None = None,
        feature_version: str | None = None,
        labeled_only: bool = False,
    ) -> list[TrainingRowDTO]:
        """Most recent rows first, bounded by ``limit``."""
        stmt = select(TrainingRowModel)
        if since is not None:
            stmt = stmt.where(TrainingRowModel.created_at >= since)
        if feature_version is not None:
            stmt = stmt.where(TrainingRowModel.feature_version == feature_version)
        if labeled_only:
            stmt = stmt.where(TrainingRowModel.outcome.is_not(None))
        stmt = stmt.order_by(TrainingRowModel.created_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return [TrainingRowDTO.from_model(m) for m in result.scalars().all()]

    async def outcome_counts(self, *, feature_version: str | None = None) -> dict[str, int]:
        stmt = (
            select(TrainingRowModel.outcome, func.count())
            .where(TrainingRowModel.outcome.is_not(None))
            .group_by(TrainingRowModel.outcome)
        )
        if feature_version is not None:
            stmt = stmt.where(TrainingRowModel.feature_version == feature_version)
        result = await self.session.execute(stmt)
        return {str(outcome): int(count) for outcome, count in result.all()}

    async def set_outcome(
        self,
        *,
        mint: str,
        feature_version: str,
        created_at: datetime,
        outcome: str,
        confidence: float | None = None,
        labeled_at: datetime | None = None,
    ) -> bool:
        """Attach an outcome label to one row. Returns False if the row does not exist."""
        result = await self.session.execute(
            update(TrainingRowModel)
            .where(
                (TrainingRowModel.mint == mint)
                & (TrainingRowModel.feature_version == feature_version)
                & (TrainingRowModel.created_at == created_at)
            )
            .values(
                outcome=outcome,
                outcome_confidence=confidence,
                labeled_at=labeled_at or datetime.now(UTC),
            )
        )
        await self.session.flush()
        return bool(result.rowcount)


@dataclass
class WatchListDTO:
    """Data transfer object for watch-list entries."""

    mint: str
    symbol: str
    tier: str
    has_prediction: bool
    snapshot_count: int
    is_active: bool
    added_at: datetime
    expires_at: datetime
    last_snapshot_at: datetime | None = None

    @classmethod
    def from_model(cls, model: WatchListModel) -> WatchListDTO:
        return cls(
            mint=model.mint,
            symbol=model.symbol,
            tier=model.tier,
            has_prediction=model.has_prediction,
            snapshot_count=model.snapshot_count,
            is_active=model.is_active,
            added_at=_as_utc(model.added_at) or model.added_at,
            expires_at=_as_utc(model.expires_at) or model.expires_at,
            last_snapshot_at=_as_utc(model.last_snapshot_at),
        )


class WatchListRepository:
    """Repository for the persistent watch list."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: WatchListDTO) -> WatchListDTO:
        values = {
            "mint": dto.mint,
            "symbol": dto.symbol,
            "tier": dto.tier,
            "has_prediction": dto.has_prediction,
            "snapshot_count": dto.snapshot_count,
            "is_active": dto.is_active,
            "added_at": dto.added_at,
            "expires_at": dto.expires_at,
            "last_snapshot_at": dto.last_snapshot_at,
        }
        now = datetime.now(UTC)
        stmt = _insert_for(self.session, WatchListModel).values(**values, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["mint"],
            set_={
                "symbol": stmt.excluded.symbol,
                "tier": stmt.excluded.tier,
                "has_prediction": stmt.excluded.has_prediction,
                "is_active": stmt.excluded.is_active,
                "expires_at": stmt.excluded.expires_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto

    async def get(self, mint: str) -> WatchListDTO | None:
        model = await self.session.get(WatchListModel, mint)
        return WatchListDTO.from_model(model) if model else None

    async def remove(self, mint: str) -> bool:
        result = await self.session.execute(delete(WatchListModel).where(WatchListModel.mint == mint))
        await self.session.flush()
        return bool(result.rowcount)

    async def mark_snapshot(self, mint: str, *, at: datetime, snapshot_count: int) -> None:
        await self.session.execute(
            update(WatchListModel)
            .where(WatchListModel.mint == mint)
            .values(last_snapshot_at=at, snapshot_count=snapshot_count, updated_at=datetime.now(UTC))
        )
        await self.session.flush()

    async def list_active(self, *, now: datetime) -> list[WatchListDTO]:
        result = await self.session.execute(
            select(WatchListModel)
            .where(WatchListModel.is_active.is_(True) & (WatchListModel.expires_at > now))
            .order_by(WatchListModel.added_at.asc())
        )
        return [WatchListDTO.from_model(m) for m in result.scalars().all()]

    async def cleanup_expired(self, *, now: datetime) -> list[str]:
        """Delete expired entries and return their mints."""
        result = await self.session.execute(
            select(WatchListModel.mint).where(WatchListModel.expires_at <= now)
        )
        mints = [str(m) for m in result.scalars().all()]
        if mints:
            await self.session.execute(delete(WatchListModel).where(WatchListModel.mint.in_(mints)))
            await self.session.flush()
        return mints


@dataclass
class BaselineDTO:
    """Data transfer object for stored feature baselines."""

    feature_name: str
    computed_at: datetime
    mean: float
    std: float
    sample_count: int
    percentiles: list[float]
    histogram: dict[str, Any]

    @classmethod
    def from_model(cls, model: FeatureBaselineModel) -> BaselineDTO:
        return cls(
            feature_name=model.feature_name,
            computed_at=_as_utc(model.computed_at) or model.computed_at,
            mean=model.mean,
            std=model.std,
            sample_count=model.sample_count,
            percentiles=json.loads(model.percentiles_json),
            histogram=json.loads(model.histogram_json),
        )


class BaselineRepository:
    """Repository for per-feature distribution baselines."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_all(self) -> list[BaselineDTO]:
        result = await self.session.execute(
            select(FeatureBaselineModel).order_by(FeatureBaselineModel.feature_name)
        )
        return [BaselineDTO.from_model(m) for m in result.scalars().all()]

    async def upsert_many(self, dtos: Sequence[BaselineDTO]) -> None:
        now = datetime.now(UTC)
        for dto in dtos:
            stmt = _insert_for(self.session, FeatureBaselineModel).values(
                feature_name=dto.feature_name,
                computed_at=dto.computed_at,
                mean=dto.mean,
                std=dto.std,
                sample_count=dto.sample_count,
                percentiles_json=json.dumps(dto.percentiles),
                histogram_json=json.dumps(dto.histogram),
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["feature_name"],
                set_={
                    "computed_at": stmt.excluded.computed_at,
                    "mean": stmt.excluded.mean,
                    "std": stmt.excluded.std,
                    "sample_count": stmt.excluded.sample_count,
                    "percentiles_json": stmt.excluded.percentiles_json,
                    "histogram_json": stmt.excluded.histogram_json,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await self.session.execute(stmt)
        await self.session.flush()


class ReportRepository:
    """Repository for the append-only quality and drift report logs."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_quality(self, **values: Any) -> None:
        self.session.add(DataQualityReportModel(**values))
        await self.session.flush()

    async def insert_drift(self, **values: Any) -> None:
        self.session.add(DriftReportModel(**values))
        await self.session.flush()

    async def latest_quality_payload(self) -> dict[str, Any] | None:
        result = await self.session.execute(
            select(DataQualityReportModel.payload_json)
            .order_by(DataQualityReportModel.generated_at.desc())
            .limit(1)
        )
        payload = result.scalar_one_or_none()
        return json.loads(payload) if payload else None

    async def latest_drift_payload(self) -> dict[str, Any] | None:
        result = await self.session.execute(
            select(DriftReportModel.payload_json).order_by(DriftReportModel.generated_at.desc()).limit(1)
        )
        payload = result.scalar_one_or_none()
        return json.loads(payload) if payload else None
