"""Boosting engine seam and its xgboost implementation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping

import numpy as np
import xgboost as xgb
from xgboost.core import XGBoostError

from .config import FrameBoostConfig
from .errors import EngineError
from .matrix import TrainingData

_logger = logging.getLogger(__name__)

_REGRESSION_OBJECTIVES = {
    "AUTO": "reg:squarederror",
    "gaussian": "reg:squarederror",
    "poisson": "count:poisson",
    "gamma": "reg:gamma",
    "tweedie": "reg:tweedie",
    "laplace": "reg:absoluteerror",
    "huber": "reg:pseudohubererror",
    "quantile": "reg:quantileerror",
}


class BoostingEngine(ABC):
    """Opaque incremental booster driven by :class:`~frameboost.booster.FrameBoost`.

    A handle returned by :meth:`initial_train` is owned by one build and is
    never shared across threads.
    """

    @abstractmethod
    def initial_train(self, data: TrainingData, params: Mapping[str, Any]) -> Any:
        """Create a model with zero trees bound to ``data``."""

    @abstractmethod
    def update(self, handle: Any, data: TrainingData, round_index: int) -> None:
        """Add one boosting increment."""

    @abstractmethod
    def predict(self, handle: Any, data: TrainingData) -> np.ndarray:
        """Raw predictions (probabilities for classifiers)."""

    @abstractmethod
    def serialize(self, handle: Any) -> bytes:
        ...

    @abstractmethod
    def load(self, payload: bytes, params: Mapping[str, Any]) -> Any:
        ...

    @abstractmethod
    def feature_score(self, handle: Any, feature_map_path: str) -> dict[str, float]:
        """Per-feature importance keyed by the names listed in the feature map."""

    def set_param(self, handle: Any, name: str, value: Any) -> None:
        """Change a training parameter between increments (no-op by default)."""

    def release(self, data: TrainingData) -> None:
        """Drop anything cached for ``data`` (no-op by default)."""


class XGBoostEngine(BoostingEngine):
    """:class:`BoostingEngine` backed by the ``xgboost`` library."""

    def __init__(self, *, importance_type: str = "gain", nthread: int = -1) -> None:
        self.importance_type = importance_type
        self.nthread = nthread
        # keyed by id(); the TrainingData is kept alive next to its DMatrix
        self._dmatrices: dict[int, tuple[TrainingData, xgb.DMatrix]] = {}

    def dmatrix(self, data: TrainingData) -> xgb.DMatrix:
        cached = self._dmatrices.get(id(data))
        if cached is not None and cached[0] is data:
            return cached[1]
        matrix = data.matrix
        features = matrix.to_array() if matrix.kind == "dense" else matrix.to_scipy()
        try:
            dmat = xgb.DMatrix(
                features,
                label=data.labels,
                weight=data.weights,
                missing=np.nan,
                nthread=self.nthread,
            )
        except XGBoostError as exc:
            raise EngineError(f"cannot create DMatrix: {exc}") from exc
        self._dmatrices[id(data)] = (data, dmat)
        return dmat

    def initial_train(self, data: TrainingData, params: Mapping[str, Any]) -> xgb.Booster:
        try:
            return xgb.train(dict(params), self.dmatrix(data), num_boost_round=0)
        except XGBoostError as exc:
            raise EngineError(f"initial training failed: {exc}") from exc

    def update(self, handle: xgb.Booster, data: TrainingData, round_index: int) -> None:
        try:
            handle.update(self.dmatrix(data), iteration=round_index)
        except XGBoostError as exc:
            raise EngineError(f"boosting round {round_index} failed: {exc}") from exc

    def predict(self, handle: xgb.Booster, data: TrainingData) -> np.ndarray:
        try:
            return np.asarray(handle.predict(self.dmatrix(data)))
        except XGBoostError as exc:
            raise EngineError(f"prediction failed: {exc}") from exc

    def serialize(self, handle: xgb.Booster) -> bytes:
        try:
            return bytes(handle.save_raw())
        except XGBoostError as exc:
            raise EngineError(f"cannot serialize booster: {exc}") from exc

    def load(self, payload: bytes, params: Mapping[str, Any]) -> xgb.Booster:
        try:
            booster = xgb.Booster(params=dict(params))
            booster.load_model(bytearray(payload))
        except XGBoostError as exc:
            raise EngineError(f"cannot load booster: {exc}") from exc
        return booster

    def feature_score(self, handle: xgb.Booster, feature_map_path: str) -> dict[str, float]:
        try:
            scores = handle.get_score(fmap=feature_map_path, importance_type=self.importance_type)
        except XGBoostError as exc:
            raise EngineError(f"feature importance query failed: {exc}") from exc
        return {str(name): float(np.sum(value)) for name, value in scores.items()}

    def release(self, data: TrainingData) -> None:
        self._dmatrices.pop(id(data), None)

    def set_param(self, handle: xgb.Booster, name: str, value: Any) -> None:
        try:
            handle.set_param(name, value)
        except XGBoostError as exc:
            raise EngineError(f"cannot set {name}: {exc}") from exc


def build_params(config: FrameBoostConfig, nclass: int, *, use_gpu: bool = False) -> dict[str, Any]:
    """Translate ``config`` into xgboost training parameters."""
    params: dict[str, Any] = {
        "eta": config.learn_rate,
        "max_depth": config.max_depth,
        "subsample": config.sample_rate,
        "colsample_bytree": config.col_sample_rate,
        "min_child_weight": config.min_rows,
        "gamma": config.min_split_improvement,
        "lambda": config.reg_lambda,
        "alpha": config.reg_alpha,
        "max_bin": config.max_bins,
        "grow_policy": config.grow_policy,
        "device": f"cuda:{config.gpu_id}" if use_gpu else "cpu",
        "verbosity": 0,
    }
    if nclass == 2:
        params["objective"] = "binary:logistic"
    elif nclass > 2:
        params["objective"] = "multi:softprob"
        params["num_class"] = nclass
    else:
        params["objective"] = _REGRESSION_OBJECTIVES[config.distribution]
        if config.distribution == "tweedie":
            params["tweedie_variance_power"] = config.tweedie_power
        elif config.distribution == "quantile":
            params["quantile_alpha"] = config.quantile_alpha
        elif config.distribution == "huber":
            params["huber_slope"] = config.huber_slope
    if config.tree_method != "auto":
        params["tree_method"] = config.tree_method
    if config.seed is not None:
        params["seed"] = int(config.seed)
    if config.nthread > 0:
        params["nthread"] = config.nthread
    params.update(config.extra_params)
    _logger.debug("engine parameters: %s", params)
    return params
