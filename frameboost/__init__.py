"""FrameBoost: columnar frames to boosting-engine matrices, and a scored training loop."""

from .booster import BuildRequest, FrameBoost, TrainingResult, TrainingState, train_many
from .config import FrameBoostConfig
from .data import ColumnarFrame
from .errors import (
    CapacityExceededError,
    ConfigurationError,
    EngineError,
    FrameBoostError,
    InternalConsistencyError,
)
from .job import Job
from .model import DirectoryModelStore, FrameBoostModel, InMemoryModelStore, ModelStore, TrainingStatus
from .predictor import FrameBoostPredictor

__all__ = [
    "BuildRequest",
    "CapacityExceededError",
    "ColumnarFrame",
    "ConfigurationError",
    "DirectoryModelStore",
    "EngineError",
    "FrameBoost",
    "FrameBoostConfig",
    "FrameBoostError",
    "FrameBoostModel",
    "FrameBoostPredictor",
    "InMemoryModelStore",
    "InternalConsistencyError",
    "Job",
    "ModelStore",
    "TrainingResult",
    "TrainingState",
    "TrainingStatus",
    "train_many",
]
