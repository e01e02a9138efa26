"""CUDA availability probe for the GPU backend."""

from __future__ import annotations

import logging

import numpy as np
import torch
import xgboost as xgb
from xgboost.core import XGBoostError

_logger = logging.getLogger(__name__)


def has_cuda(gpu_id: int = 0) -> bool:
    """Return ``True`` if torch sees a CUDA device with index ``gpu_id``."""
    try:
        return torch.cuda.is_available() and torch.cuda.device_count() > gpu_id
    except RuntimeError:
        return False


def has_gpu(gpu_id: int = 0) -> bool:
    """Return ``True`` when the boosting engine can actually train on ``gpu_id``.

    One round is trained on a 2x2 matrix; a visible device alone is not enough.
    """
    if not has_cuda(gpu_id):
        return False
    dtrain = xgb.DMatrix(np.array([[1.0, 2.0], [1.0, 2.0]], dtype=np.float32), label=[1.0, 0.0])
    params = {"tree_method": "hist", "device": f"cuda:{gpu_id}", "verbosity": 0}
    try:
        xgb.train(params, dtrain, num_boost_round=1, evals=[(dtrain, "train")], verbose_eval=False)
    except XGBoostError as exc:
        _logger.warning("GPU %d is visible but not usable by the engine: %s", gpu_id, exc)
        return False
    return True


__all__ = ["has_cuda", "has_gpu"]
