"""SQLAlchemy models for persistent storage.

This module defines the database schema for raw token snapshots,
versioned training rows, the collector's watch list, per-feature
distribution baselines, and the append-only quality/drift report logs.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TokenSnapshotModel(Base):
    """One observation of a token's market state plus its feature vector."""

    __tablename__ = "token_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mint: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    price_usd: Mapped[float] = mapped_column(Float, nullable=False)
    price_sol: Mapped[float | None] = mapped_column(Float, nullable=True)
    market_cap: Mapped[float | None] = mapped_column(Float, nullable=True)
    fdv: Mapped[float | None] = mapped_column(Float, nullable=True)

    volume_5m: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    volume_1h: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    volume_24h: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    liquidity_usd: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    lp_burned_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    holder_count: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    top10_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    mint_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    freeze_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_twitter: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_telegram: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_website: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    price_change_5m: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    price_change_1h: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    price_change_24h: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    buys_1h: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sells_1h: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    risk_score: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    pool_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pair_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    feature_version: Mapped[str] = mapped_column(String(16), nullable=False)
    features_json: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_json: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("mint", "recorded_at", name="uq_token_snapshots_mint_recorded"),
        Index("idx_token_snapshots_mint_recorded", "mint", "recorded_at"),
        Index("idx_token_snapshots_recorded", "recorded_at"),
    )


class TrainingRowModel(Base):
    """Versioned feature row with an outcome placeholder for labelers."""

    __tablename__ = "ml_training_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mint: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    feature_version: Mapped[str] = mapped_column(String(16), nullable=False)
    features_json: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_json: Mapped[str] = mapped_column(Text, nullable=False)

    outcome: Mapped[str | None] = mapped_column(String(16), nullable=True)
    outcome_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    labeled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    price_usd: Mapped[float] = mapped_column(Float, nullable=False)
    liquidity_usd: Mapped[float] = mapped_column(Float, nullable=False)
    risk_score: Mapped[float] = mapped_column(Float, nullable=False)

    # Observation time of the snapshot the row was derived from.
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    inserted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("mint", "feature_version", "created_at", name="uq_ml_training_data_row"),
        Index("idx_ml_training_data_version_created", "feature_version", "created_at"),
        Index("idx_ml_training_data_outcome", "outcome"),
    )


class WatchListModel(Base):
    """Persistent mirror of the collector's tracked tokens."""

    __tablename__ = "snapshot_watch_list"

    mint: Mapped[str] = mapped_column(String(64), primary_key=True)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    has_prediction: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    snapshot_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_snapshot_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_snapshot_watch_list_active_expires", "is_active", "expires_at"),)


class FeatureBaselineModel(Base):
    """Reference distribution of one feature, used for drift detection."""

    __tablename__ = "feature_distribution_baselines"

    feature_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    mean: Mapped[float] = mapped_column(Float, nullable=False)
    std: Mapped[float] = mapped_column(Float, nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False)
    percentiles_json: Mapped[str] = mapped_column(Text, nullable=False)
    histogram_json: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class DataQualityReportModel(Base):
    """Append-only log of data quality audits."""

    __tablename__ = "ml_data_quality_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_samples: Mapped[int] = mapped_column(Integer, nullable=False)
    valid_samples: Mapped[int] = mapped_column(Integer, nullable=False)
    quality_score: Mapped[float] = mapped_column(Float, nullable=False)
    is_imbalanced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    imbalance_ratio: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("idx_ml_data_quality_reports_generated", "generated_at"),)


class DriftReportModel(Base):
    """Append-only log of distribution drift checks."""

    __tablename__ = "ml_drift_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    comparison_period_days: Mapped[int] = mapped_column(Integer, nullable=False)
    overall_drift_score: Mapped[float] = mapped_column(Float, nullable=False)
    drifted_feature_count: Mapped[int] = mapped_column(Integer, nullable=False)
    urgency: Mapped[str] = mapped_column(String(16), nullable=False)
    retraining_recommended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("idx_ml_drift_reports_generated", "generated_at"),)
