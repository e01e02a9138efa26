"""Persisted model record and the checkpoint stores it is written to."""

from __future__ import annotations

import base64
import dataclasses
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .config import FrameBoostConfig
from .layout import FeatureLayout
from .scoring import MetricSnapshot, scoring_history_table

_logger = logging.getLogger(__name__)


class TrainingStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    STOPPED_EARLY = "stopped-early"
    TIMED_OUT = "timed-out"
    CANCELLED = "cancelled"


@dataclass
class FrameBoostModel:
    """Output record of one build: engine state plus its reports."""

    key: str
    config: FrameBoostConfig
    layout: FeatureLayout
    nclass: int
    sparse: bool
    matrix_kind: str
    response_levels: tuple[str, ...] = ()
    engine_params: Dict[str, object] = field(default_factory=dict)
    status: TrainingStatus = TrainingStatus.RUNNING
    ntrees: int = 0
    failed_rounds: int = 0
    booster_bytes: Optional[bytes] = None
    scored_train: List[MetricSnapshot] = field(default_factory=list)
    scored_valid: Optional[List[MetricSnapshot]] = None
    training_time_ms: List[float] = field(default_factory=list)
    variable_importances: Optional[pd.DataFrame] = None
    model_summary: Optional[pd.DataFrame] = None

    @property
    def classification(self) -> bool:
        return self.nclass > 1

    @property
    def scoring_history(self) -> pd.DataFrame:
        return scoring_history_table(self.scored_train, self.scored_valid)

    def last_scored(self, validation: bool = False) -> MetricSnapshot | None:
        history = self.scored_valid if validation else self.scored_train
        for snap in reversed(history or []):
            if snap.scored:
                return snap
        return None

    def to_dict(self) -> Dict[str, object]:
        """Serialise the model to a JSON-compatible dictionary."""
        return {
            "key": self.key,
            "config": dataclasses.asdict(self.config),
            "layout": self.layout.to_dict(),
            "nclass": self.nclass,
            "sparse": self.sparse,
            "matrix_kind": self.matrix_kind,
            "response_levels": list(self.response_levels),
            "engine_params": dict(self.engine_params),
            "status": self.status.value,
            "ntrees": self.ntrees,
            "failed_rounds": self.failed_rounds,
            "booster_bytes": (
                base64.b64encode(self.booster_bytes).decode("ascii") if self.booster_bytes is not None else None
            ),
            "scored_train": [snap.to_dict() for snap in self.scored_train],
            "scored_valid": (
                [snap.to_dict() for snap in self.scored_valid] if self.scored_valid is not None else None
            ),
            "training_time_ms": list(self.training_time_ms),
            "variable_importances": (
                self.variable_importances.to_dict(orient="list") if self.variable_importances is not None else None
            ),
            "model_summary": self.model_summary.to_dict(orient="list") if self.model_summary is not None else None,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, object]) -> "FrameBoostModel":
        """Create a model from ``payload`` produced by :meth:`to_dict`."""
        config_payload = dict(payload["config"])  # type: ignore[arg-type]
        config_payload["ignored_columns"] = tuple(config_payload.get("ignored_columns", ()))
        booster_payload = payload["booster_bytes"]
        valid_payload = payload["scored_valid"]
        varimp = payload["variable_importances"]
        summary = payload["model_summary"]
        return cls(
            key=str(payload["key"]),
            config=FrameBoostConfig(**config_payload),
            layout=FeatureLayout.from_dict(payload["layout"]),  # type: ignore[arg-type]
            nclass=int(payload["nclass"]),  # type: ignore[arg-type]
            sparse=bool(payload["sparse"]),
            matrix_kind=str(payload["matrix_kind"]),
            response_levels=tuple(payload["response_levels"]),  # type: ignore[arg-type]
            engine_params=dict(payload["engine_params"]),  # type: ignore[arg-type]
            status=TrainingStatus(payload["status"]),
            ntrees=int(payload["ntrees"]),  # type: ignore[arg-type]
            failed_rounds=int(payload["failed_rounds"]),  # type: ignore[arg-type]
            booster_bytes=base64.b64decode(booster_payload) if booster_payload is not None else None,  # type: ignore[arg-type]
            scored_train=[MetricSnapshot.from_dict(s) for s in payload["scored_train"]],  # type: ignore[union-attr]
            scored_valid=(
                [MetricSnapshot.from_dict(s) for s in valid_payload] if valid_payload is not None else None  # type: ignore[union-attr]
            ),
            training_time_ms=[float(t) for t in payload["training_time_ms"]],  # type: ignore[union-attr]
            variable_importances=pd.DataFrame(varimp) if varimp is not None else None,
            model_summary=pd.DataFrame(summary) if summary is not None else None,
        )

    def to_json(self, path: str | Path) -> None:
        Path(path).write_text(json.dumps(self.to_dict()))

    @classmethod
    def from_json(cls, path: str | Path) -> "FrameBoostModel":
        return cls.from_dict(json.loads(Path(path).read_text()))


class ModelStore(ABC):
    """Key-value store receiving model checkpoints."""

    @abstractmethod
    def put(self, model: FrameBoostModel) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> FrameBoostModel:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...

    def __contains__(self, key: object) -> bool:
        return key in self.keys()


class InMemoryModelStore(ModelStore):
    """Keeps serialised snapshots, so later mutations of a model never leak in."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, object]] = {}
        self._lock = threading.Lock()
        self.puts = 0

    def put(self, model: FrameBoostModel) -> None:
        payload = model.to_dict()
        with self._lock:
            self._records[model.key] = payload
            self.puts += 1

    def get(self, key: str) -> FrameBoostModel:
        with self._lock:
            payload = self._records[key]
        return FrameBoostModel.from_dict(payload)

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._records)


class DirectoryModelStore(ModelStore):
    """One JSON file per model key, replaced atomically on every checkpoint."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def put(self, model: FrameBoostModel) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=f".{model.key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as fh:
                json.dump(model.to_dict(), fh)
            os.replace(tmp, self._path(model.key))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        _logger.debug("Checkpoint of %s written to %s.", model.key, self._path(model.key))

    def get(self, key: str) -> FrameBoostModel:
        path = self._path(key)
        if not path.exists():
            raise KeyError(key)
        return FrameBoostModel.from_json(path)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> List[str]:
        return sorted(p.stem for p in self.root.glob("*.json"))
