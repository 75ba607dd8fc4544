"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
token snapshot pipeline, loading and validating environment variables
at startup. Every sampling, collection, quality and drift threshold is
exposed here so that policy can be tuned without code changes.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", populate_by_name=True)

    url: str = Field(
        default="sqlite+aiosqlite:///./token_snapshots.db",
        alias="DATABASE_URL",
        description="PostgreSQL (asyncpg) or SQLite (aiosqlite) connection string",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        ge=1,
        le=100,
        description="Connection pool size (PostgreSQL only)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", populate_by_name=True)

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )
    key_prefix: str = Field(
        default="tsp:",
        alias="REDIS_KEY_PREFIX",
        description="Prefix for every key written by the report cache",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ProviderSettings(BaseSettings):
    """Upstream market-data provider settings."""

    model_config = SettingsConfigDict(env_prefix="PROVIDER_", extra="ignore", populate_by_name=True)

    dexscreener_base_url: str = Field(
        default="https://api.dexscreener.com/latest/dex",
        alias="PROVIDER_DEXSCREENER_BASE_URL",
        description="DexScreener REST API base URL",
    )
    gmgn_base_url: str = Field(
        default="https://gmgn.ai/defi/quotation/v1",
        alias="PROVIDER_GMGN_BASE_URL",
        description="GMGN quotation API base URL",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        alias="PROVIDER_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="HTTP timeout per provider request",
    )
    max_retries: int = Field(
        default=3,
        alias="PROVIDER_MAX_RETRIES",
        ge=0,
        le=10,
        description="Retry attempts for transient provider failures",
    )
    requests_per_second: float = Field(
        default=5.0,
        alias="PROVIDER_REQUESTS_PER_SECOND",
        gt=0.0,
        le=100.0,
        description="Request spacing applied per provider client",
    )

    @field_validator("dexscreener_base_url", "gmgn_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Provider base URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class SamplerSettings(BaseSettings):
    """Adaptive sampling policy."""

    model_config = SettingsConfigDict(env_prefix="SAMPLER_", extra="ignore", populate_by_name=True)

    high_interval_seconds: int = Field(default=300, alias="SAMPLER_HIGH_INTERVAL_SECONDS", ge=60)
    high_max_snapshots: int = Field(default=1000, alias="SAMPLER_HIGH_MAX_SNAPSHOTS", ge=1)
    high_priority: int = Field(default=100, alias="SAMPLER_HIGH_PRIORITY", ge=0)
    medium_interval_seconds: int = Field(default=900, alias="SAMPLER_MEDIUM_INTERVAL_SECONDS", ge=60)
    medium_max_snapshots: int = Field(default=500, alias="SAMPLER_MEDIUM_MAX_SNAPSHOTS", ge=1)
    medium_priority: int = Field(default=50, alias="SAMPLER_MEDIUM_PRIORITY", ge=0)
    low_interval_seconds: int = Field(default=3600, alias="SAMPLER_LOW_INTERVAL_SECONDS", ge=60)
    low_max_snapshots: int = Field(default=200, alias="SAMPLER_LOW_MAX_SNAPSHOTS", ge=1)
    low_priority: int = Field(default=25, alias="SAMPLER_LOW_PRIORITY", ge=0)
    minimal_interval_seconds: int = Field(default=14400, alias="SAMPLER_MINIMAL_INTERVAL_SECONDS", ge=60)
    minimal_max_snapshots: int = Field(default=50, alias="SAMPLER_MINIMAL_MAX_SNAPSHOTS", ge=1)
    minimal_priority: int = Field(default=10, alias="SAMPLER_MINIMAL_PRIORITY", ge=0)

    high_liquidity_usd: float = Field(
        default=100_000.0,
        alias="SAMPLER_HIGH_LIQUIDITY_USD",
        ge=0.0,
        description="Liquidity at or above which a token is sampled at the high tier",
    )
    medium_liquidity_usd: float = Field(
        default=10_000.0,
        alias="SAMPLER_MEDIUM_LIQUIDITY_USD",
        ge=0.0,
        description="Liquidity at or above which a token is sampled at the medium tier",
    )
    low_liquidity_usd: float = Field(
        default=1_000.0,
        alias="SAMPLER_LOW_LIQUIDITY_USD",
        ge=0.0,
        description="Liquidity at or above which a token is sampled at the low tier",
    )
    min_interval_seconds: int = Field(
        default=60,
        alias="SAMPLER_MIN_INTERVAL_SECONDS",
        ge=1,
        description="Floor applied to dynamically shortened intervals",
    )
    immediate_cooldown_seconds: int = Field(
        default=30,
        alias="SAMPLER_IMMEDIATE_COOLDOWN_SECONDS",
        ge=0,
        description="Minimum gap between event-triggered snapshots",
    )
    spike_magnitude_threshold: float = Field(
        default=20.0,
        alias="SAMPLER_SPIKE_MAGNITUDE_THRESHOLD",
        ge=0.0,
        description="Percent magnitude above which a spike event triggers a snapshot",
    )
    event_bonus_decay_seconds: int = Field(
        default=3600,
        alias="SAMPLER_EVENT_BONUS_DECAY_SECONDS",
        ge=1,
        description="Window over which the interesting-event priority bonus decays to zero",
    )

    @model_validator(mode="after")
    def validate_liquidity_order(self) -> SamplerSettings:
        if not self.high_liquidity_usd >= self.medium_liquidity_usd >= self.low_liquidity_usd:
            raise ValueError("Liquidity thresholds must satisfy high >= medium >= low")
        return self


class CollectorSettings(BaseSettings):
    """Snapshot collection, buffering and rate-limit settings."""

    model_config = SettingsConfigDict(env_prefix="COLLECTOR_", extra="ignore", populate_by_name=True)

    buffer_size: int = Field(
        default=100,
        alias="COLLECTOR_BUFFER_SIZE",
        ge=1,
        le=100_000,
        description="Flush the snapshot buffer once it holds this many snapshots",
    )
    flush_interval_seconds: float = Field(
        default=30.0,
        alias="COLLECTOR_FLUSH_INTERVAL_SECONDS",
        gt=0.0,
        description="Timer-driven buffer flush cadence",
    )
    min_snapshot_interval_seconds: int = Field(
        default=60,
        alias="COLLECTOR_MIN_SNAPSHOT_INTERVAL_SECONDS",
        ge=0,
        description="Minimum gap between two accepted snapshots of the same token",
    )
    max_concurrent_fetches: int = Field(
        default=10,
        alias="COLLECTOR_MAX_CONCURRENT_FETCHES",
        ge=1,
        le=1000,
        description="Batch size and concurrency bound for per-token fetches",
    )
    fetch_timeout_seconds: float = Field(
        default=10.0,
        alias="COLLECTOR_FETCH_TIMEOUT_SECONDS",
        gt=0.0,
        description="Timeout for one token's combined provider fetch",
    )
    max_missing_feature_percent: float = Field(
        default=20.0,
        alias="COLLECTOR_MAX_MISSING_FEATURE_PERCENT",
        ge=0.0,
        le=100.0,
        description="Reject snapshots whose feature vector has more missing values than this",
    )
    min_liquidity_usd: float = Field(
        default=100.0,
        alias="COLLECTOR_MIN_LIQUIDITY_USD",
        ge=0.0,
        description="Reject snapshots below this liquidity",
    )
    max_tracked_tokens: int = Field(
        default=5000,
        alias="COLLECTOR_MAX_TRACKED_TOKENS",
        ge=1,
        description="Hard cap on simultaneously tracked tokens",
    )
    tracking_expiry_hours: float = Field(
        default=48.0,
        alias="COLLECTOR_TRACKING_EXPIRY_HOURS",
        gt=0.0,
        description="Default tracking lifetime for newly added tokens",
    )
    prediction_tracking_hours: float = Field(
        default=48.0,
        alias="COLLECTOR_PREDICTION_TRACKING_HOURS",
        gt=0.0,
        description="Tracking lifetime granted when a prediction is made for a token",
    )
    rate_limit_requests: int = Field(
        default=60,
        alias="COLLECTOR_RATE_LIMIT_REQUESTS",
        ge=1,
        description="Maximum token fetches per rate-limit window",
    )
    rate_limit_window_seconds: float = Field(
        default=60.0,
        alias="COLLECTOR_RATE_LIMIT_WINDOW_SECONDS",
        gt=0.0,
        description="Sliding rate-limit window length",
    )


class JobSettings(BaseSettings):
    """Background job cadence and liveness settings."""

    model_config = SettingsConfigDict(env_prefix="JOB_", extra="ignore", populate_by_name=True)

    collection_interval_seconds: float = Field(
        default=300.0,
        alias="JOB_COLLECTION_INTERVAL_SECONDS",
        gt=0.0,
        description="Cadence of the collection cycle",
    )
    initial_delay_seconds: float = Field(
        default=10.0,
        alias="JOB_INITIAL_DELAY_SECONDS",
        ge=0.0,
        description="Delay before the first collection cycle after startup",
    )
    max_cycle_seconds: float = Field(
        default=240.0,
        alias="JOB_MAX_CYCLE_SECONDS",
        gt=0.0,
        description="Hard wall-clock budget of one collection cycle",
    )
    cleanup_interval_seconds: float = Field(
        default=3600.0,
        alias="JOB_CLEANUP_INTERVAL_SECONDS",
        gt=0.0,
        description="Cadence of expired-watch and old-snapshot cleanup",
    )
    snapshot_retention_days: int = Field(
        default=30,
        alias="JOB_SNAPSHOT_RETENTION_DAYS",
        ge=1,
        description="Raw snapshots older than this are deleted by cleanup",
    )
    quality_check_interval_seconds: float = Field(
        default=6 * 3600.0,
        alias="JOB_QUALITY_CHECK_INTERVAL_SECONDS",
        gt=0.0,
        description="Cadence of the data quality audit",
    )
    drift_check_interval_seconds: float = Field(
        default=24 * 3600.0,
        alias="JOB_DRIFT_CHECK_INTERVAL_SECONDS",
        gt=0.0,
        description="Cadence of the distribution drift check",
    )
    liveness_tolerance_seconds: float = Field(
        default=600.0,
        alias="JOB_LIVENESS_TOLERANCE_SECONDS",
        gt=0.0,
        description="Report unhealthy when no cycle completed within this window",
    )
    degraded_failure_rate: float = Field(
        default=0.3,
        alias="JOB_DEGRADED_FAILURE_RATE",
        ge=0.0,
        le=1.0,
        description="Report degraded when the cycle failure rate exceeds this",
    )


class QualitySettings(BaseSettings):
    """Data quality audit thresholds and score weights."""

    model_config = SettingsConfigDict(env_prefix="QUALITY_", extra="ignore", populate_by_name=True)

    sample_limit: int = Field(default=10_000, alias="QUALITY_SAMPLE_LIMIT", ge=1)
    missing_warn_percent: float = Field(default=5.0, alias="QUALITY_MISSING_WARN_PERCENT", ge=0.0, le=100.0)
    missing_critical_percent: float = Field(
        default=10.0, alias="QUALITY_MISSING_CRITICAL_PERCENT", ge=0.0, le=100.0
    )
    zscore_threshold: float = Field(default=3.0, alias="QUALITY_ZSCORE_THRESHOLD", gt=0.0)
    outlier_warn_percent: float = Field(default=5.0, alias="QUALITY_OUTLIER_WARN_PERCENT", ge=0.0, le=100.0)
    outlier_critical_percent: float = Field(
        default=10.0, alias="QUALITY_OUTLIER_CRITICAL_PERCENT", ge=0.0, le=100.0
    )
    imbalance_warn_ratio: float = Field(default=5.0, alias="QUALITY_IMBALANCE_WARN_RATIO", ge=1.0)
    imbalance_critical_ratio: float = Field(default=10.0, alias="QUALITY_IMBALANCE_CRITICAL_RATIO", ge=1.0)
    weight_missing: float = Field(default=0.25, alias="QUALITY_WEIGHT_MISSING", ge=0.0, le=1.0)
    weight_outliers: float = Field(default=0.20, alias="QUALITY_WEIGHT_OUTLIERS", ge=0.0, le=1.0)
    weight_class_balance: float = Field(default=0.25, alias="QUALITY_WEIGHT_CLASS_BALANCE", ge=0.0, le=1.0)
    weight_feature_quality: float = Field(
        default=0.30, alias="QUALITY_WEIGHT_FEATURE_QUALITY", ge=0.0, le=1.0
    )
    warning_score: float = Field(default=70.0, alias="QUALITY_WARNING_SCORE", ge=0.0, le=100.0)
    critical_score: float = Field(default=50.0, alias="QUALITY_CRITICAL_SCORE", ge=0.0, le=100.0)
    history_size: int = Field(default=100, alias="QUALITY_HISTORY_SIZE", ge=1)

    @model_validator(mode="after")
    def validate_weights(self) -> QualitySettings:
        total = (
            self.weight_missing
            + self.weight_outliers
            + self.weight_class_balance
            + self.weight_feature_quality
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Quality score weights must sum to 1.0 (got {total:.4f})")
        return self


class DriftSettings(BaseSettings):
    """Distribution drift detection thresholds."""

    model_config = SettingsConfigDict(env_prefix="DRIFT_", extra="ignore", populate_by_name=True)

    threshold_low: float = Field(default=0.1, alias="DRIFT_THRESHOLD_LOW", ge=0.0, le=1.0)
    threshold_medium: float = Field(default=0.25, alias="DRIFT_THRESHOLD_MEDIUM", ge=0.0, le=1.0)
    threshold_high: float = Field(default=0.4, alias="DRIFT_THRESHOLD_HIGH", ge=0.0, le=1.0)
    threshold_critical: float = Field(default=0.6, alias="DRIFT_THRESHOLD_CRITICAL", ge=0.0, le=1.0)
    min_samples: int = Field(default=100, alias="DRIFT_MIN_SAMPLES", ge=2)
    comparison_period_days: int = Field(default=7, alias="DRIFT_COMPARISON_PERIOD_DAYS", ge=1)
    baseline_sample_size: int = Field(default=5000, alias="DRIFT_BASELINE_SAMPLE_SIZE", ge=2)
    recent_sample_size: int = Field(default=5000, alias="DRIFT_RECENT_SAMPLE_SIZE", ge=2)
    drifted_features_warn: int = Field(default=3, alias="DRIFT_DRIFTED_FEATURES_WARN", ge=1)
    history_size: int = Field(default=30, alias="DRIFT_HISTORY_SIZE", ge=1)
    histogram_bins: int = Field(default=10, alias="DRIFT_HISTOGRAM_BINS", ge=2, le=100)

    @model_validator(mode="after")
    def validate_threshold_order(self) -> DriftSettings:
        if not (
            self.threshold_low <= self.threshold_medium <= self.threshold_high <= self.threshold_critical
        ):
            raise ValueError("Drift thresholds must be ordered low <= medium <= high <= critical")
        return self


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from token_snapshot_pipeline.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.collector.buffer_size)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Nested configuration groups
    #
    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    provider: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    sampler: SamplerSettings = Field(
        default_factory=lambda: SamplerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    collector: CollectorSettings = Field(
        default_factory=lambda: CollectorSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    job: JobSettings = Field(
        default_factory=lambda: JobSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    quality: QualitySettings = Field(
        default_factory=lambda: QualitySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    drift: DriftSettings = Field(
        default_factory=lambda: DriftSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "providers": {
                "dexscreener": self.provider.dexscreener_base_url,
                "gmgn": self.provider.gmgn_base_url,
            },
            "collector": {
                "buffer_size": str(self.collector.buffer_size),
                "max_concurrent_fetches": str(self.collector.max_concurrent_fetches),
                "max_tracked_tokens": str(self.collector.max_tracked_tokens),
                "rate_limit": (
                    f"{self.collector.rate_limit_requests}/{self.collector.rate_limit_window_seconds:g}s"
                ),
            },
            "job": {
                "collection_interval_seconds": str(self.job.collection_interval_seconds),
                "max_cycle_seconds": str(self.job.max_cycle_seconds),
            },
            "drift": {
                "comparison_period_days": str(self.drift.comparison_period_days),
                "min_samples": str(self.drift.min_samples),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
