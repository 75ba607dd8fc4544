"""Initial schema for snapshots, training rows, watch list, baselines and reports.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Raw token snapshots
    op.create_table(
        "token_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("mint", sa.String(64), nullable=False),
        sa.Column("symbol", sa.String(32), nullable=False),
        sa.Column("name", sa.String(128), nullable=True),
        sa.Column("price_usd", sa.Float(), nullable=False),
        sa.Column("price_sol", sa.Float(), nullable=True),
        sa.Column("market_cap", sa.Float(), nullable=True),
        sa.Column("fdv", sa.Float(), nullable=True),
        sa.Column("volume_5m", sa.Float(), nullable=False),
        sa.Column("volume_1h", sa.Float(), nullable=False),
        sa.Column("volume_24h", sa.Float(), nullable=False),
        sa.Column("liquidity_usd", sa.Float(), nullable=False),
        sa.Column("lp_burned_percent", sa.Float(), nullable=False),
        sa.Column("holder_count", sa.Float(), nullable=False),
        sa.Column("top10_percent", sa.Float(), nullable=False),
        sa.Column("mint_revoked", sa.Boolean(), nullable=False),
        sa.Column("freeze_revoked", sa.Boolean(), nullable=False),
        sa.Column("has_twitter", sa.Boolean(), nullable=False),
        sa.Column("has_telegram", sa.Boolean(), nullable=False),
        sa.Column("has_website", sa.Boolean(), nullable=False),
        sa.Column("price_change_5m", sa.Float(), nullable=False),
        sa.Column("price_change_1h", sa.Float(), nullable=False),
        sa.Column("price_change_24h", sa.Float(), nullable=False),
        sa.Column("buys_1h", sa.Float(), nullable=False),
        sa.Column("sells_1h", sa.Float(), nullable=False),
        sa.Column("risk_score", sa.Float(), nullable=False),
        sa.Column("source", sa.String(32), nullable=False),
        sa.Column("pool_address", sa.String(64), nullable=True),
        sa.Column("pair_created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("feature_version", sa.String(16), nullable=False),
        sa.Column("features_json", sa.Text(), nullable=False),
        sa.Column("normalized_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("mint", "recorded_at", name="uq_token_snapshots_mint_recorded"),
    )
    op.create_index("idx_token_snapshots_mint_recorded", "token_snapshots", ["mint", "recorded_at"])
    op.create_index("idx_token_snapshots_recorded", "token_snapshots", ["recorded_at"])

    # Versioned training rows
    op.create_table(
        "ml_training_data",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("mint", sa.String(64), nullable=False),
        sa.Column("symbol", sa.String(32), nullable=False),
        sa.Column("feature_version", sa.String(16), nullable=False),
        sa.Column("features_json", sa.Text(), nullable=False),
        sa.Column("normalized_json", sa.Text(), nullable=False),
        sa.Column("outcome", sa.String(16), nullable=True),
        sa.Column("outcome_confidence", sa.Float(), nullable=True),
        sa.Column("labeled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("price_usd", sa.Float(), nullable=False),
        sa.Column("liquidity_usd", sa.Float(), nullable=False),
        sa.Column("risk_score", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("inserted_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("mint", "feature_version", "created_at", name="uq_ml_training_data_row"),
    )
    op.create_index(
        "idx_ml_training_data_version_created",
        "ml_training_data",
        ["feature_version", "created_at"],
    )
    op.create_index("idx_ml_training_data_outcome", "ml_training_data", ["outcome"])

    # Collector watch list
    op.create_table(
        "snapshot_watch_list",
        sa.Column("mint", sa.String(64), nullable=False),
        sa.Column("symbol", sa.String(32), nullable=False),
        sa.Column("tier", sa.String(16), nullable=False),
        sa.Column("has_prediction", sa.Boolean(), nullable=False),
        sa.Column("snapshot_count", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_snapshot_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("mint"),
    )
    op.create_index(
        "idx_snapshot_watch_list_active_expires",
        "snapshot_watch_list",
        ["is_active", "expires_at"],
    )

    # Drift baselines
    op.create_table(
        "feature_distribution_baselines",
        sa.Column("feature_name", sa.String(64), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("mean", sa.Float(), nullable=False),
        sa.Column("std", sa.Float(), nullable=False),
        sa.Column("sample_count", sa.Integer(), nullable=False),
        sa.Column("percentiles_json", sa.Text(), nullable=False),
        sa.Column("histogram_json", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("feature_name"),
    )

    # Report logs
    op.create_table(
        "ml_data_quality_reports",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_samples", sa.Integer(), nullable=False),
        sa.Column("valid_samples", sa.Integer(), nullable=False),
        sa.Column("quality_score", sa.Float(), nullable=False),
        sa.Column("is_imbalanced", sa.Boolean(), nullable=False),
        sa.Column("imbalance_ratio", sa.Float(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_ml_data_quality_reports_generated", "ml_data_quality_reports", ["generated_at"])

    op.create_table(
        "ml_drift_reports",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("comparison_period_days", sa.Integer(), nullable=False),
        sa.Column("overall_drift_score", sa.Float(), nullable=False),
        sa.Column("drifted_feature_count", sa.Integer(), nullable=False),
        sa.Column("urgency", sa.String(16), nullable=False),
        sa.Column("retraining_recommended", sa.Boolean(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_ml_drift_reports_generated", "ml_drift_reports", ["generated_at"])


def downgrade() -> None:
    op.drop_index("idx_ml_drift_reports_generated", table_name="ml_drift_reports")
    op.drop_table("ml_drift_reports")
    op.drop_index("idx_ml_data_quality_reports_generated", table_name="ml_data_quality_reports")
    op.drop_table("ml_data_quality_reports")
    op.drop_table("feature_distribution_baselines")
    op.drop_index("idx_snapshot_watch_list_active_expires", table_name="snapshot_watch_list")
    op.drop_table("snapshot_watch_list")
    op.drop_index("idx_ml_training_data_outcome", table_name="ml_training_data")
    op.drop_index("idx_ml_training_data_version_created", table_name="ml_training_data")
    op.drop_table("ml_training_data")
    op.drop_index("idx_token_snapshots_recorded", table_name="token_snapshots")
    op.drop_index("idx_token_snapshots_mint_recorded", table_name="token_snapshots")
    op.drop_table("token_snapshots")
