import math

import numpy as np
import pytest

from frameboost.scoring import (
    MetricSnapshot,
    compute_metrics,
    model_summary_table,
    resolve_stopping_metric,
    scoring_history_table,
    stop_early,
    variable_importance_table,
)


def history(values, metric="deviance"):
    return [MetricSnapshot(timestamp_ms=float(i), ntrees=i, metrics={metric: v}) for i, v in enumerate(values)]


def test_regression_metrics():
    y = np.array([1.0, 2.0, 3.0, 4.0])
    p = np.array([1.5, 2.0, 2.0, 4.0])
    metrics = compute_metrics(p, y, None, nclass=1)
    assert metrics["MSE"] == pytest.approx(0.3125)
    assert metrics["RMSE"] == pytest.approx(math.sqrt(0.3125))
    assert metrics["MAE"] == pytest.approx(0.375)
    assert metrics["deviance"] == pytest.approx(metrics["MSE"])
    assert not math.isnan(metrics["RMSLE"])


def test_regression_rmsle_undefined_for_negative_values():
    metrics = compute_metrics(np.array([-1.0, 1.0]), np.array([1.0, 1.0]), None, nclass=1)
    assert math.isnan(metrics["RMSLE"])


def test_weighted_regression_metrics_ignore_zero_weight_rows():
    y = np.array([1.0, 2.0, 100.0])
    p = np.array([1.0, 3.0, 0.0])
    metrics = compute_metrics(p, y, np.array([1.0, 1.0, 0.0]), nclass=1)
    assert metrics["MSE"] == pytest.approx(0.5)


def test_binomial_metrics():
    y = np.array([0, 0, 1, 1])
    p = np.array([0.1, 0.6, 0.4, 0.9])
    metrics = compute_metrics(p, y, None, nclass=2)
    assert metrics["AUC"] == pytest.approx(0.75)
    assert metrics["misclassification"] == pytest.approx(0.5)
    assert metrics["deviance"] == pytest.approx(2 * metrics["logloss"])
    assert metrics["MSE"] == pytest.approx(np.mean((y - p) ** 2))


def test_multinomial_metrics():
    y = np.array([0, 1, 2])
    probs = np.array([[0.8, 0.1, 0.1], [0.2, 0.7, 0.1], [0.5, 0.2, 0.3]])
    metrics = compute_metrics(probs, y, None, nclass=3)
    assert metrics["misclassification"] == pytest.approx(1 / 3)
    assert metrics["logloss"] == pytest.approx(-np.mean(np.log([0.8, 0.7, 0.3])))
    assert math.isnan(metrics["AUC"])


def test_auto_stopping_metric():
    assert resolve_stopping_metric("AUTO", True) == "logloss"
    assert resolve_stopping_metric("AUTO", False) == "deviance"
    assert resolve_stopping_metric("AUC", True) == "AUC"


def test_stop_early_on_worsening_metric():
    # first entry is skipped, six remain: 3 + 3
    values = [0.0, 1.0, 4.0, 9.0, 16.0, 25.0, 36.0]
    assert stop_early(history(values), 3, "AUTO", 0.0, classification=False)
    assert not stop_early(history(values[:-1]), 3, "AUTO", 0.0, classification=False)


def test_stop_early_keeps_going_while_improving():
    values = [10.0, 9.0, 8.0, 7.0, 6.0, 5.0, 4.0]
    assert not stop_early(history(values), 3, "deviance", 1e-3, classification=False)
    # a relative improvement below tolerance counts as converged
    assert stop_early(history(values), 3, "deviance", 0.9, classification=False)


def test_stop_early_more_is_better_metric():
    rising = [0.5, 0.6, 0.7, 0.8, 0.9, 0.95, 0.99]
    falling = list(reversed(rising))
    assert not stop_early(history(rising, "AUC"), 3, "AUC", 0.0, classification=True)
    assert stop_early(history(falling, "AUC"), 3, "AUC", 0.0, classification=True)


def test_stop_early_zero_reference_means_converged():
    values = [1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]
    assert stop_early(history(values), 3, "deviance", 0.0, classification=False)


def test_stop_early_ignores_unscored_slots_and_disabled_rounds():
    snaps = history([0.0, 1.0, 4.0, 9.0, 16.0, 25.0, 36.0])
    padded = []
    for snap in snaps:
        padded.extend([snap, MetricSnapshot(ntrees=snap.ntrees)])
    assert stop_early(padded, 3, "deviance", 0.0, classification=False)
    assert not stop_early(snaps, 0, "deviance", 0.0, classification=False)


def test_variable_importance_table():
    table = variable_importance_table({"a": 1.0, "b": 3.0, "c": 0.0})
    assert table["variable"].tolist() == ["b", "a", "c"]
    np.testing.assert_allclose(table["scaled_importance"], [1.0, 1 / 3, 0.0])
    np.testing.assert_allclose(table["percentage"], [0.75, 0.25, 0.0])
    assert variable_importance_table({}).empty


def test_summary_and_history_tables():
    summary = model_summary_table(7, 1024)
    assert summary.iloc[0].tolist() == [7, 1024]
    train = [MetricSnapshot(1000.0, 5.0, 0, {"MSE": 2.0}), MetricSnapshot(ntrees=1), MetricSnapshot(3000.0, 5.0, 2, {"MSE": 1.0})]
    valid = [MetricSnapshot(1000.0, 5.0, 0, {"MSE": 3.0}), MetricSnapshot(ntrees=1), MetricSnapshot(3000.0, 5.0, 2, {"MSE": 1.5})]
    table = scoring_history_table(train, valid)
    assert table["number_of_trees"].tolist() == [0, 2]
    assert table["training_MSE"].tolist() == [2.0, 1.0]
    assert table["validation_MSE"].tolist() == [3.0, 1.5]


def test_snapshot_dict_round_trip():
    snap = MetricSnapshot(12.0, 3.0, 4, {"MSE": 0.5})
    assert MetricSnapshot.from_dict(snap.to_dict()) == snap
    assert not MetricSnapshot().scored
    assert math.isnan(MetricSnapshot().value("MSE"))
