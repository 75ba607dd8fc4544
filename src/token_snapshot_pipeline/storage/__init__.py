"""Storage layer - Database schemas, repositories and the snapshot store."""

from token_snapshot_pipeline.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
)
from token_snapshot_pipeline.storage.errors import SnapshotStoreError, StoreUnavailableError
from token_snapshot_pipeline.storage.models import (
    Base,
    DataQualityReportModel,
    DriftReportModel,
    FeatureBaselineModel,
    TokenSnapshotModel,
    TrainingRowModel,
    WatchListModel,
)
from token_snapshot_pipeline.storage.repos import (
    BaselineDTO,
    BaselineRepository,
    ReportRepository,
    SnapshotRepository,
    SnapshotRowDTO,
    TrainingDataRepository,
    TrainingRowDTO,
    WatchListDTO,
    WatchListRepository,
)
from token_snapshot_pipeline.storage.store import (
    FeatureRow,
    SnapshotStore,
    SqlSnapshotStore,
)

__all__ = [
    "Base",
    "BaselineDTO",
    "BaselineRepository",
    "DataQualityReportModel",
    "DatabaseManager",
    "DriftReportModel",
    "FeatureBaselineModel",
    "FeatureRow",
    "ReportRepository",
    "SnapshotRepository",
    "SnapshotRowDTO",
    "SnapshotStore",
    "SnapshotStoreError",
    "SqlSnapshotStore",
    "StoreUnavailableError",
    "TokenSnapshotModel",
    "TrainingDataRepository",
    "TrainingRowDTO",
    "TrainingRowModel",
    "WatchListDTO",
    "WatchListModel",
    "WatchListRepository",
    "create_async_db_engine",
    "create_async_session_factory",
]
