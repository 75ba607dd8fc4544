"""Training data access - Versioned feature matrices for model training."""

from token_snapshot_pipeline.training.dataset import DatasetError, DatasetSplit, TrainingDataset

__all__ = [
    "DatasetError",
    "DatasetSplit",
    "TrainingDataset",
]
