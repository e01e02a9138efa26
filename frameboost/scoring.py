"""Model metrics, early stopping and the report tables attached to a model."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Mapping, Sequence

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    balanced_accuracy_score,
    log_loss,
    mean_absolute_error,
    mean_gamma_deviance,
    mean_pinball_loss,
    mean_poisson_deviance,
    mean_squared_error,
    mean_squared_log_error,
    mean_tweedie_deviance,
    roc_auc_score,
)

MORE_IS_BETTER = frozenset({"AUC"})

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MetricSnapshot:
    """One slot of the scoring history; ``metrics`` is empty for unscored rounds."""

    timestamp_ms: float = 0.0
    duration_ms: float = 0.0
    ntrees: int = 0
    metrics: Mapping[str, float] = field(default_factory=dict)

    @property
    def scored(self) -> bool:
        return bool(self.metrics)

    def value(self, metric: str) -> float:
        return float(self.metrics.get(metric, math.nan))

    def to_dict(self) -> dict[str, object]:
        return {
            "timestamp_ms": self.timestamp_ms,
            "duration_ms": self.duration_ms,
            "ntrees": self.ntrees,
            "metrics": dict(self.metrics),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "MetricSnapshot":
        return cls(
            timestamp_ms=float(payload["timestamp_ms"]),  # type: ignore[arg-type]
            duration_ms=float(payload["duration_ms"]),  # type: ignore[arg-type]
            ntrees=int(payload["ntrees"]),  # type: ignore[arg-type]
            metrics={k: float(v) for k, v in dict(payload["metrics"]).items()},  # type: ignore[arg-type]
        )


def resolve_stopping_metric(metric: str, classification: bool) -> str:
    if metric == "AUTO":
        return "logloss" if classification else "deviance"
    return metric


def compute_metrics(
    predictions: np.ndarray,
    labels: np.ndarray,
    weights: np.ndarray | None,
    *,
    nclass: int,
    distribution: str = "gaussian",
    tweedie_power: float = 1.5,
    quantile_alpha: float = 0.5,
) -> dict[str, float]:
    """Score ``predictions`` against ``labels``.

    Regression predictions are 1-D; binomial predictions are the probability
    of class 1; multinomial predictions are ``(rows, nclass)`` probabilities.
    """
    y = np.asarray(labels, dtype=np.float64)
    p = np.asarray(predictions, dtype=np.float64)
    if y.shape[0] == 0:
        return {}
    if nclass == 1:
        return _regression_metrics(p.reshape(-1), y, weights, distribution, tweedie_power, quantile_alpha)
    if nclass == 2:
        return _binomial_metrics(p.reshape(-1), y.astype(np.int64), weights)
    return _multinomial_metrics(p.reshape(y.shape[0], nclass), y.astype(np.int64), weights, nclass)


def _guarded(name: str, fn, *args, **kwargs) -> float:  # noqa: ANN001
    """Evaluate a metric that is undefined for part of its domain (NaN there)."""
    try:
        return float(fn(*args, **kwargs))
    except ValueError as exc:
        _logger.debug("metric %s undefined: %s", name, exc)
        return math.nan


def _regression_metrics(
    p: np.ndarray,
    y: np.ndarray,
    w: np.ndarray | None,
    distribution: str,
    tweedie_power: float,
    quantile_alpha: float,
) -> dict[str, float]:
    mse = float(mean_squared_error(y, p, sample_weight=w))
    mae = float(mean_absolute_error(y, p, sample_weight=w))
    if (y >= 0).all() and (p >= 0).all():
        rmsle = math.sqrt(_guarded("RMSLE", mean_squared_log_error, y, p, sample_weight=w))
    else:
        rmsle = math.nan

    if distribution == "poisson":
        deviance = _guarded("deviance", mean_poisson_deviance, y, p, sample_weight=w)
    elif distribution == "gamma":
        deviance = _guarded("deviance", mean_gamma_deviance, y, p, sample_weight=w)
    elif distribution == "tweedie":
        deviance = _guarded("deviance", mean_tweedie_deviance, y, p, sample_weight=w, power=tweedie_power)
    elif distribution == "laplace":
        deviance = mae
    elif distribution == "quantile":
        deviance = float(mean_pinball_loss(y, p, sample_weight=w, alpha=quantile_alpha))
    else:
        deviance = mse
    return {
        "MSE": mse,
        "RMSE": math.sqrt(mse),
        "MAE": mae,
        "RMSLE": rmsle,
        "deviance": deviance,
    }


def _binomial_metrics(p1: np.ndarray, y: np.ndarray, w: np.ndarray | None) -> dict[str, float]:
    predicted = (p1 >= 0.5).astype(np.int64)
    mse = float(np.average((y - p1) ** 2, weights=w))
    if np.unique(y).shape[0] == 2:
        auc = float(roc_auc_score(y, p1, sample_weight=w))
    else:
        auc = math.nan
    logloss = float(log_loss(y, np.clip(p1, 1e-15, 1 - 1e-15), sample_weight=w, labels=[0, 1]))
    return {
        "MSE": mse,
        "RMSE": math.sqrt(mse),
        "logloss": logloss,
        "deviance": 2.0 * logloss,
        "AUC": auc,
        "misclassification": 1.0 - float(accuracy_score(y, predicted, sample_weight=w)),
        "mean_per_class_error": 1.0 - float(balanced_accuracy_score(y, predicted, sample_weight=w)),
    }


def _multinomial_metrics(
    probs: np.ndarray, y: np.ndarray, w: np.ndarray | None, nclass: int
) -> dict[str, float]:
    predicted = probs.argmax(axis=1)
    p_actual = probs[np.arange(y.shape[0]), y]
    mse = float(np.average((1.0 - p_actual) ** 2, weights=w))
    probs = np.clip(probs, 1e-15, 1.0)
    probs = probs / probs.sum(axis=1, keepdims=True)
    logloss = float(log_loss(y, probs, sample_weight=w, labels=list(range(nclass))))
    return {
        "MSE": mse,
        "RMSE": math.sqrt(mse),
        "logloss": logloss,
        "deviance": 2.0 * logloss,
        "AUC": math.nan,
        "misclassification": 1.0 - float(accuracy_score(y, predicted, sample_weight=w)),
        "mean_per_class_error": 1.0 - float(balanced_accuracy_score(y, predicted, sample_weight=w)),
    }


def stop_early(
    history: Sequence[MetricSnapshot],
    stopping_rounds: int,
    metric: str,
    tolerance: float,
    *,
    classification: bool,
) -> bool:
    """Return ``True`` when the moving average of ``metric`` stopped improving.

    Only scored snapshots count and the first one is skipped. With ``k =
    stopping_rounds`` the last ``2k`` values give ``k + 1`` moving averages of
    window ``k``; the first is the reference, and training stops unless the
    best of the remaining ``k`` beats it by more than ``tolerance`` (relative).
    """
    k = int(stopping_rounds)
    if k <= 0:
        return False
    metric = resolve_stopping_metric(metric, classification)
    values = [snap.value(metric) for snap in history if snap.scored]
    if len(values) - 1 < 2 * k:
        return False

    window = np.asarray(values[-2 * k :], dtype=np.float64)
    moving = np.array([window[i : i + k].mean() for i in range(k + 1)])
    if np.isnan(moving).any():
        return False

    more_is_better = metric in MORE_IS_BETTER
    reference = float(moving[0])
    best = float(moving[1:].max() if more_is_better else moving[1:].min())
    _logger.info(
        "Windowed averages (window size %d) of %d %s metrics: %s", k, k + 1, metric, moving.tolist()
    )
    if reference == 0.0 and not more_is_better:
        _logger.info("Checking convergence with %s metric: %s --> %s (converged)", metric, reference, best)
        return True

    ratio = best / reference
    if math.isnan(ratio):
        return False
    improved = ratio > 1.0 + tolerance if more_is_better else ratio < 1.0 - tolerance
    _logger.info(
        "Checking convergence with %s metric: %s --> %s (%s)",
        metric,
        reference,
        best,
        "still improving" if improved else "converged",
    )
    return not improved


def variable_importance_table(scores: Mapping[str, float]) -> pd.DataFrame:
    """Relative, scaled and percentage importance, most important first."""
    columns = ["variable", "relative_importance", "scaled_importance", "percentage"]
    if not scores:
        return pd.DataFrame(columns=columns)
    table = pd.DataFrame(
        {"variable": list(scores.keys()), "relative_importance": [float(v) for v in scores.values()]}
    )
    table = table.sort_values("relative_importance", ascending=False, kind="stable").reset_index(drop=True)
    top = table["relative_importance"].iloc[0]
    total = table["relative_importance"].sum()
    table["scaled_importance"] = table["relative_importance"] / top if top > 0 else 0.0
    table["percentage"] = table["relative_importance"] / total if total > 0 else 0.0
    return table[columns]


def model_summary_table(ntrees: int, model_size_in_bytes: int) -> pd.DataFrame:
    return pd.DataFrame(
        {"number_of_trees": [int(ntrees)], "model_size_in_bytes": [int(model_size_in_bytes)]}
    )


def scoring_history_table(
    train: Sequence[MetricSnapshot],
    valid: Sequence[MetricSnapshot] | None,
) -> pd.DataFrame:
    """One row per scored slot of the training history."""
    records: list[dict[str, object]] = []
    start = train[0].timestamp_ms if train else 0.0
    for i, snap in enumerate(train):
        if not snap.scored:
            continue
        record: dict[str, object] = {
            "timestamp": pd.to_datetime(snap.timestamp_ms, unit="ms"),
            "duration": pd.to_timedelta(snap.timestamp_ms - start, unit="ms"),
            "number_of_trees": snap.ntrees,
        }
        record.update({f"training_{name}": value for name, value in snap.metrics.items()})
        if valid is not None and i < len(valid) and valid[i].scored:
            record.update({f"validation_{name}": value for name, value in valid[i].metrics.items()})
        records.append(record)
    return pd.DataFrame.from_records(records)
