"""Compare FrameBoost dense/sparse builds with a plain xgboost fit on mixed-type data."""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List

import numpy as np
import pandas as pd
from sklearn.metrics import r2_score
from sklearn.model_selection import train_test_split
from xgboost import XGBRegressor

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from frameboost.booster import FrameBoost
from frameboost.config import FrameBoostConfig
from frameboost.predictor import FrameBoostPredictor


N_SAMPLES = 20000
N_NUMERIC = 10
N_CATEGORICAL = 3
N_LEVELS = 12
SPARSITY = 0.7
SEED = 123

N_TREES = 200
MAX_DEPTH = 5
LEARNING_RATE = 0.1


@dataclass
class BenchmarkResult:
    name: str
    fit_time: float
    predict_time: float
    r2: float


def generate_data() -> pd.DataFrame:
    """Mostly-zero numeric columns plus categoricals with a few missing values."""
    rng = np.random.default_rng(SEED)
    numeric = rng.normal(size=(N_SAMPLES, N_NUMERIC))
    numeric[rng.random(numeric.shape) < SPARSITY] = 0.0
    frame = pd.DataFrame(numeric, columns=[f"x{i}" for i in range(N_NUMERIC)])
    response = numeric @ rng.normal(size=N_NUMERIC)
    for c in range(N_CATEGORICAL):
        codes = rng.integers(0, N_LEVELS, size=N_SAMPLES)
        effects = rng.normal(0.0, 2.0, size=N_LEVELS)
        response = response + effects[codes]
        values = pd.Categorical.from_codes(codes, categories=[f"L{k}" for k in range(N_LEVELS)])
        frame[f"c{c}"] = pd.Series(values).where(rng.random(N_SAMPLES) > 0.02)
    frame["response"] = response + rng.normal(0.0, 0.5, size=N_SAMPLES)
    return frame


def benchmark(
    name: str,
    fit_fn: Callable[[], None],
    predict_fn: Callable[[], np.ndarray],
    y_true: np.ndarray,
) -> BenchmarkResult:
    """Measure fit/predict time and compute R^2."""
    t0 = time.perf_counter()
    fit_fn()
    fit_time = time.perf_counter() - t0

    t0 = time.perf_counter()
    preds = predict_fn()
    predict_time = time.perf_counter() - t0

    r2 = float(r2_score(y_true, preds))
    return BenchmarkResult(name=name, fit_time=fit_time, predict_time=predict_time, r2=r2)


def frameboost_case(dmatrix_type: str, train: pd.DataFrame, test: pd.DataFrame) -> BenchmarkResult:
    config = FrameBoostConfig(
        ntrees=N_TREES,
        max_depth=MAX_DEPTH,
        learn_rate=LEARNING_RATE,
        dmatrix_type=dmatrix_type,  # type: ignore[arg-type]
        score_tree_interval=50,
        backend="cpu",
        seed=SEED,
    )
    booster = FrameBoost(config)
    fitted: List[FrameBoostPredictor] = []

    def fit() -> None:
        result = booster.train(train)
        fitted.append(FrameBoostPredictor(result.model, booster.engine))

    def predict() -> np.ndarray:
        return fitted[0].predict(test)

    return benchmark(f"FrameBoost/{dmatrix_type}", fit, predict, test["response"].to_numpy())


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    frame = generate_data()
    train, test = train_test_split(frame, test_size=0.2, random_state=SEED)
    train = train.reset_index(drop=True)
    test = test.reset_index(drop=True)

    results: List[BenchmarkResult] = []
    results.append(frameboost_case("dense", train, test))
    results.append(frameboost_case("sparse", train, test))

    # xgboost on its own categorical support, as a baseline
    X_train, X_test = train.drop(columns=["response"]), test.drop(columns=["response"])
    xgb = XGBRegressor(
        n_estimators=N_TREES,
        max_depth=MAX_DEPTH,
        learning_rate=LEARNING_RATE,
        tree_method="hist",
        enable_categorical=True,
        n_jobs=-1,
        random_state=SEED,
        verbosity=0,
    )
    results.append(
        benchmark(
            "XGBoost",
            lambda: xgb.fit(X_train, train["response"]),
            lambda: xgb.predict(X_test),
            test["response"].to_numpy(),
        )
    )

    print("Model              Fit (s)   Predict (s)   R^2")
    print("-" * 49)
    for res in results:
        print(f"{res.name:<17} {res.fit_time:>8.3f} {res.predict_time:>12.3f} {res.r2:>7.4f}")
