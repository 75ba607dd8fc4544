"""Labelled training data for downstream model training."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
from joblib import dump, load
from sklearn.model_selection import train_test_split

from token_snapshot_pipeline.features.models import FEATURE_NAMES, FEATURE_VERSION
from token_snapshot_pipeline.monitoring.quality import build_feature_matrix

if TYPE_CHECKING:
    from token_snapshot_pipeline.storage.store import FeatureRow, SnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_LOAD_LIMIT = 50_000
DEFAULT_TEST_SIZE = 0.2
DEFAULT_RANDOM_STATE = 42


class DatasetError(RuntimeError):
    pass


@dataclass(frozen=True)
class DatasetSplit:
    X_train: np.ndarray
    X_test: np.ndarray
    y_train: np.ndarray
    y_test: np.ndarray


@dataclass(frozen=True)
class TrainingDataset:
    """Feature matrix and outcome labels for one feature version.

    Attributes:
        feature_version: Version of the feature vector the rows were built with.
        feature_names: Column order of ``X``.
        X: ``(n, 28)`` float matrix.
        y: Outcome label per row.
        mints: Token mint per row.
        created_at: Snapshot time per row.
    """

    feature_version: str
    feature_names: tuple[str, ...]
    X: np.ndarray
    y: np.ndarray
    mints: tuple[str, ...]
    created_at: tuple[datetime, ...]

    def __len__(self) -> int:
        return len(self.y)

    @classmethod
    def from_rows(
        cls,
        rows: Sequence[FeatureRow],
        *,
        feature_version: str = FEATURE_VERSION,
        fill_value: float | None = 0.0,
    ) -> TrainingDataset:
        """Build a dataset from labelled rows; unlabelled rows are dropped.

        Args:
            rows: Stored feature rows.
            feature_version: Version tag recorded on the dataset.
            fill_value: Replacement for missing feature values (None keeps NaN).
        """
        labelled = [r for r in rows if r.outcome]
        X = build_feature_matrix(labelled)
        if fill_value is not None:
            X = np.nan_to_num(X, nan=fill_value)
        y = np.asarray([r.outcome for r in labelled], dtype=object)
        return cls(
            feature_version=feature_version,
            feature_names=FEATURE_NAMES,
            X=X,
            y=y,
            mints=tuple(r.mint for r in labelled),
            created_at=tuple(r.created_at for r in labelled),
        )

    @classmethod
    async def from_store(
        cls,
        store: SnapshotStore,
        *,
        limit: int = DEFAULT_LOAD_LIMIT,
        since: datetime | None = None,
        feature_version: str = FEATURE_VERSION,
        fill_value: float | None = 0.0,
    ) -> TrainingDataset:
        rows = await store.load_recent_feature_rows(limit, since)
        dataset = cls.from_rows(rows, feature_version=feature_version, fill_value=fill_value)
        logger.info(
            "Loaded %d labelled rows (%d total) for feature version %s",
            len(dataset),
            len(rows),
            feature_version,
        )
        return dataset

    def class_counts(self) -> dict[str, int]:
        return dict(Counter(str(label) for label in self.y))

    def split(
        self,
        *,
        test_size: float = DEFAULT_TEST_SIZE,
        random_state: int = DEFAULT_RANDOM_STATE,
    ) -> DatasetSplit:
        """Stratified train/test split.

        Falls back to an unstratified split when some class has fewer than
        two rows.

        Raises:
            DatasetError: If the dataset is too small to split.
        """
        if len(self) < 2:
            raise DatasetError("Insufficient labelled rows for a train/test split")

        counts = self.class_counts()
        stratify = self.y if min(counts.values()) >= 2 else None
        if stratify is None:
            logger.warning("Some outcome classes have a single row; using an unstratified split")

        X_train, X_test, y_train, y_test = train_test_split(
            self.X, self.y, test_size=test_size, random_state=random_state, stratify=stratify
        )
        return DatasetSplit(X_train=X_train, X_test=X_test, y_train=y_train, y_test=y_test)

    def save(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        dump(
            {
                "feature_version": self.feature_version,
                "feature_names": list(self.feature_names),
                "X": self.X,
                "y": self.y,
                "mints": list(self.mints),
                "created_at": list(self.created_at),
            },
            path,
        )
        return path

    @classmethod
    def load(cls, path: Path, *, expected_version: str | None = FEATURE_VERSION) -> TrainingDataset:
        """Load a dataset saved with ``save``.

        Raises:
            DatasetError: If the file is unreadable or was built for another
                feature version.
        """
        try:
            payload: dict[str, Any] = load(path)
        except Exception as e:
            raise DatasetError(f"Failed to load dataset: {e}") from e

        version = payload.get("feature_version")
        if expected_version is not None and version != expected_version:
            raise DatasetError(f"Dataset feature version {version!r} does not match {expected_version!r}")

        return cls(
            feature_version=str(version),
            feature_names=tuple(payload["feature_names"]),
            X=np.asarray(payload["X"], dtype=np.float64),
            y=np.asarray(payload["y"], dtype=object),
            mints=tuple(payload["mints"]),
            created_at=tuple(payload["created_at"]),
        )
