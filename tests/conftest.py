from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Mapping

import numpy as np
import pandas as pd
import pytest

from frameboost.config import FrameBoostConfig
from frameboost.engine import BoostingEngine
from frameboost.errors import EngineError
from frameboost.matrix import TrainingData


class FakeClock:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHandle:
    def __init__(self, params: Mapping[str, Any], trees: int = 0) -> None:
        self.params = dict(params)
        self.trees = trees


class FakeEngine(BoostingEngine):
    """Deterministic stand-in for the native booster.

    Regression predictions are ``labels + offset(trees)`` so the error is a
    known function of the number of trees; classifiers predict uniform
    probabilities.
    """

    def __init__(
        self,
        *,
        fail_rounds: tuple[int, ...] = (),
        fail_initial: bool = False,
        offset: Callable[[int], float] = lambda trees: 1.0 / (trees + 1),
        clock: FakeClock | None = None,
        seconds_per_round: float = 0.0,
    ) -> None:
        self.fail_rounds = set(fail_rounds)
        self.fail_initial = fail_initial
        self.offset = offset
        self.clock = clock
        self.seconds_per_round = seconds_per_round
        self.initial_data: TrainingData | None = None
        self.updates: list[int] = []
        self.predict_calls: list[int] = []
        self.feature_maps: list[tuple[str, str]] = []
        self.set_params: list[tuple[str, Any]] = []
        self.released: list[TrainingData] = []

    def initial_train(self, data: TrainingData, params: Mapping[str, Any]) -> FakeHandle:
        if self.fail_initial:
            raise EngineError("initial training failed: out of memory")
        self.initial_data = data
        return FakeHandle(params)

    def update(self, handle: FakeHandle, data: TrainingData, round_index: int) -> None:
        if self.clock is not None:
            self.clock.advance(self.seconds_per_round)
        self.updates.append(round_index)
        if round_index in self.fail_rounds:
            raise EngineError(f"boosting round {round_index} failed")
        handle.trees += 1

    def predict(self, handle: FakeHandle, data: TrainingData) -> np.ndarray:
        self.predict_calls.append(handle.trees)
        n = data.rows
        objective = handle.params.get("objective", "")
        if objective == "binary:logistic":
            return np.full(n, 0.5, dtype=np.float32)
        if objective == "multi:softprob":
            k = int(handle.params["num_class"])
            return np.full((n, k), 1.0 / k, dtype=np.float32)
        labels = data.labels if data.labels is not None else np.zeros(n, dtype=np.float32)
        return labels + np.float32(self.offset(handle.trees))

    def serialize(self, handle: FakeHandle) -> bytes:
        return json.dumps({"trees": handle.trees}).encode()

    def load(self, payload: bytes, params: Mapping[str, Any]) -> FakeHandle:
        return FakeHandle(params, trees=int(json.loads(payload)["trees"]))

    def feature_score(self, handle: FakeHandle, feature_map_path: str) -> dict[str, float]:
        text = Path(feature_map_path).read_text()
        self.feature_maps.append((feature_map_path, text))
        names = [line.split()[1] for line in text.splitlines()]
        return {name: float(i + 1) for i, name in enumerate(names)}

    def set_param(self, handle: FakeHandle, name: str, value: Any) -> None:
        self.set_params.append((name, value))

    def release(self, data: TrainingData) -> None:
        self.released.append(data)


def make_frame(n_rows: int = 100, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    x1 = rng.uniform(1.0, 2.0, size=n_rows)
    x2 = rng.uniform(-2.0, -1.0, size=n_rows)
    color = np.where(np.arange(n_rows) % 2 == 0, "red", "blue")
    response = 2.0 * x1 - x2 + (color == "red") + 0.1 * rng.standard_normal(n_rows)
    return pd.DataFrame({"color": color, "x1": x1, "x2": x2, "response": response})


def make_config(**overrides: Any) -> FrameBoostConfig:
    params: dict[str, Any] = {"ntrees": 5, "backend": "cpu"}
    params.update(overrides)
    return FrameBoostConfig(**params)


@pytest.fixture
def frame() -> pd.DataFrame:
    return make_frame()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
