"""scikit-learn wrappers for FrameBoost."""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, ClassifierMixin, RegressorMixin

from .booster import FrameBoost, TrainingResult
from .config import FrameBoostConfig
from .engine import BoostingEngine
from .predictor import FrameBoostPredictor

_RESPONSE = "__response__"
_WEIGHTS = "__weights__"


def _as_frame(X) -> pd.DataFrame:  # noqa: ANN001
    if isinstance(X, pd.DataFrame):
        return X.reset_index(drop=True)
    array = np.asarray(X)
    if array.ndim != 2:
        raise ValueError("X must be 2-D")
    return pd.DataFrame(array, columns=[f"f{i}" for i in range(array.shape[1])])


class _FrameBoostEstimator(BaseEstimator):
    def __init__(
        self,
        *,
        ntrees: int = 50,
        max_depth: int = 6,
        learn_rate: float = 0.3,
        sample_rate: float = 1.0,
        col_sample_rate: float = 1.0,
        min_rows: float = 1.0,
        reg_lambda: float = 1.0,
        reg_alpha: float = 0.0,
        distribution: str = "AUTO",
        dmatrix_type: str = "auto",
        stopping_rounds: int = 0,
        stopping_metric: str = "AUTO",
        stopping_tolerance: float = 1e-3,
        score_tree_interval: int = 0,
        max_runtime_secs: float = 0.0,
        backend: str = "cpu",
        seed: int | None = None,
        engine: BoostingEngine | None = None,
    ) -> None:
        self.ntrees = ntrees
        self.max_depth = max_depth
        self.learn_rate = learn_rate
        self.sample_rate = sample_rate
        self.col_sample_rate = col_sample_rate
        self.min_rows = min_rows
        self.reg_lambda = reg_lambda
        self.reg_alpha = reg_alpha
        self.distribution = distribution
        self.dmatrix_type = dmatrix_type
        self.stopping_rounds = stopping_rounds
        self.stopping_metric = stopping_metric
        self.stopping_tolerance = stopping_tolerance
        self.score_tree_interval = score_tree_interval
        self.max_runtime_secs = max_runtime_secs
        self.backend = backend
        self.seed = seed
        self.engine = engine
        self._predictor: Optional[FrameBoostPredictor] = None

    def _config(self, weighted: bool) -> FrameBoostConfig:
        return FrameBoostConfig(
            response_column=_RESPONSE,
            weights_column=_WEIGHTS if weighted else None,
            ntrees=self.ntrees,
            max_depth=self.max_depth,
            learn_rate=self.learn_rate,
            sample_rate=self.sample_rate,
            col_sample_rate=self.col_sample_rate,
            min_rows=self.min_rows,
            reg_lambda=self.reg_lambda,
            reg_alpha=self.reg_alpha,
            distribution=self.distribution,  # type: ignore[arg-type]
            dmatrix_type=self.dmatrix_type,  # type: ignore[arg-type]
            stopping_rounds=self.stopping_rounds,
            stopping_metric=self.stopping_metric,  # type: ignore[arg-type]
            stopping_tolerance=self.stopping_tolerance,
            score_tree_interval=self.score_tree_interval,
            max_runtime_secs=self.max_runtime_secs,
            backend=self.backend,  # type: ignore[arg-type]
            seed=self.seed,
        )

    def _fit(self, X, response: pd.Series, sample_weight) -> TrainingResult:  # noqa: ANN001
        frame = _as_frame(X)
        frame[_RESPONSE] = response.values
        if sample_weight is not None:
            frame[_WEIGHTS] = np.asarray(sample_weight, dtype=np.float64)
        booster = FrameBoost(self._config(sample_weight is not None), engine=self.engine)
        result = booster.train(frame)
        self._predictor = FrameBoostPredictor(result.model, booster.engine)
        self.model_ = result.model
        self.n_features_in_ = frame.shape[1] - 1 - int(sample_weight is not None)
        self.ntrees_ = result.ntrees
        self.variable_importances_ = result.model.variable_importances
        return result

    def _raw_predict(self, X) -> np.ndarray:  # noqa: ANN001
        if self._predictor is None:
            raise RuntimeError("Estimator has not been fitted")
        return np.asarray(self._predictor.predict(_as_frame(X)))


class FrameBoostRegressor(RegressorMixin, _FrameBoostEstimator):
    """scikit-learn compatible regressor wrapping :class:`FrameBoost`."""

    def fit(self, X, y, sample_weight=None) -> "FrameBoostRegressor":  # noqa: ANN001
        """Fit the estimator.

        Parameters
        ----------
        X: pd.DataFrame | np.ndarray
            Features; object and categorical columns are one-hot encoded.
        y: np.ndarray
            Numeric targets of shape (n_samples,).
        sample_weight: np.ndarray | None
            Optional weights; rows with weight ``0`` are ignored.
        """
        self._fit(X, pd.Series(np.asarray(y, dtype=np.float64)), sample_weight)
        return self

    def predict(self, X) -> np.ndarray:  # noqa: ANN001
        return self._raw_predict(X).reshape(-1)


class FrameBoostClassifier(ClassifierMixin, _FrameBoostEstimator):
    """scikit-learn compatible classifier wrapping :class:`FrameBoost`."""

    def fit(self, X, y, sample_weight=None) -> "FrameBoostClassifier":  # noqa: ANN001
        y_array = np.asarray(y)
        self.classes_ = np.unique(y_array)
        if self.classes_.shape[0] < 2:
            raise ValueError("y must contain at least two classes")
        self._fit(X, pd.Series(pd.Categorical(y_array, categories=self.classes_)), sample_weight)
        return self

    def predict_proba(self, X) -> np.ndarray:  # noqa: ANN001
        probs = self._raw_predict(X)
        if self.classes_.shape[0] == 2:
            p1 = probs.reshape(-1)
            return np.column_stack([1.0 - p1, p1])
        return probs.reshape(-1, self.classes_.shape[0])

    def predict(self, X) -> np.ndarray:  # noqa: ANN001
        return self.classes_[self.predict_proba(X).argmax(axis=1)]
