"""Standalone prediction utilities for FrameBoost models."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

import numpy as np
import pandas as pd

from .data import ColumnarFrame, RowSelection, ensure_frame
from .engine import BoostingEngine, XGBoostEngine
from .matrix import MatrixBuilder, TrainingData
from .model import FrameBoostModel


class FrameBoostPredictor:
    """Predictor that depends only on a persisted model record.

    New frames are converted with the stored feature layout, so levels unseen
    during training land on the missing id of their column. No rows are
    filtered: the output has one prediction per input row.
    """

    def __init__(self, model: FrameBoostModel, engine: BoostingEngine | None = None) -> None:
        if model.booster_bytes is None:
            raise ValueError(f"model {model.key!r} carries no engine state")
        self._model = model
        self._engine = engine if engine is not None else XGBoostEngine()
        self._handle = self._engine.load(model.booster_bytes, model.engine_params)
        self._builder = MatrixBuilder(model.layout)

    @classmethod
    def from_json(cls, path: str | Path, engine: BoostingEngine | None = None) -> "FrameBoostPredictor":
        payload = json.loads(Path(path).read_text())
        return cls(FrameBoostModel.from_dict(payload), engine)

    def to_json(self, path: str | Path) -> None:
        Path(path).write_text(json.dumps(self._model.to_dict()))

    def matrix(self, frame: ColumnarFrame | pd.DataFrame) -> TrainingData:
        frame = ensure_frame(frame)
        missing = [name for name in (*self._model.layout.cat_columns, *self._model.layout.num_columns)
                   if name not in frame]
        if missing:
            raise KeyError(f"frame lacks feature columns {missing}")
        selection = RowSelection.all_rows(frame)
        # CSC drops rows without entries, which would misalign predictions, so
        # CSC models predict from a dense matrix
        sparse = self._model.matrix_kind == "csr"
        matrix = self._builder.build(frame, selection, sparse=sparse)
        return TrainingData(matrix=matrix, labels=None)

    def predict(self, frame: ColumnarFrame | pd.DataFrame) -> np.ndarray:
        """Raw engine output: values, class-1 probabilities or class probabilities."""
        data = self.matrix(frame)
        try:
            return self._engine.predict(self._handle, data)
        finally:
            self._engine.release(data)

    def predict_labels(self, frame: ColumnarFrame | pd.DataFrame) -> np.ndarray:
        """Predicted response levels for classifiers."""
        if not self._model.classification:
            raise ValueError("predict_labels is only defined for classification models")
        probs = np.asarray(self.predict(frame))
        if self._model.nclass == 2:
            codes = (probs.reshape(-1) >= 0.5).astype(np.int64)
        else:
            codes = probs.reshape(-1, self._model.nclass).argmax(axis=1)
        return np.asarray(self._model.response_levels, dtype=object)[codes]

    @property
    def model(self) -> FrameBoostModel:
        return self._model


def load_predictor(payload: Mapping[str, Any], engine: BoostingEngine | None = None) -> FrameBoostPredictor:
    model = FrameBoostModel.from_dict(dict(payload))
    return FrameBoostPredictor(model, engine)
