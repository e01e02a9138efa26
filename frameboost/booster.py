"""FrameBoost training driver: matrix conversion plus the scored boosting loop."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Sequence

import numpy as np
import pandas as pd

from . import gpu
from .cadence import should_score
from .config import CLASSIFICATION_DISTRIBUTIONS, FrameBoostConfig
from .data import ColumnarFrame, RowSelection, ensure_frame, extract_labels_weights
from .engine import BoostingEngine, XGBoostEngine, build_params
from .errors import ConfigurationError, EngineError
from .job import Job
from .layout import FeatureLayout, build_feature_layout
from .matrix import MatrixBuilder, TrainingData, choose_sparse
from .model import FrameBoostModel, InMemoryModelStore, ModelStore, TrainingStatus
from .scoring import (
    MetricSnapshot,
    compute_metrics,
    model_summary_table,
    resolve_stopping_metric,
    stop_early,
    variable_importance_table,
)

FEATURE_MAP_FILENAME = "featureMap.txt"
DEFAULT_MAX_PARALLEL_BUILDS = 2

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TrainingState:
    """Everything the round loop carries from one round to the next.

    ``scored_train`` / ``scored_valid`` hold one slot per round plus the
    initial slot; unscored slots have empty metrics. ``ntrees`` counts the
    trees the engine actually holds, so failed rounds are not included.
    """

    round: int = 0
    ntrees: int = 0
    failed_rounds: int = 0
    first_score_ms: float | None = None
    last_score_start_ms: float = 0.0
    last_score_end_ms: float = 0.0
    scored_train: tuple[MetricSnapshot, ...] = ()
    scored_valid: tuple[MetricSnapshot, ...] | None = None
    training_time_ms: tuple[float, ...] = ()
    status: TrainingStatus = TrainingStatus.RUNNING

    def stopping_history(self) -> tuple[MetricSnapshot, ...]:
        return self.scored_valid if self.scored_valid is not None else self.scored_train


@dataclass(frozen=True, slots=True)
class TrainingResult:
    model: FrameBoostModel
    state: TrainingState

    @property
    def status(self) -> TrainingStatus:
        return self.state.status

    @property
    def ntrees(self) -> int:
        return self.state.ntrees


@dataclass(slots=True)
class _Build:
    """Per-build resources; never shared between builds."""

    key: str
    job: Job
    model: FrameBoostModel
    train: TrainingData
    valid: TrainingData | None
    feature_map_path: str
    distribution: str
    stopping_metric: str
    handle: Any = None


class FrameBoost:
    """Converts frames into engine matrices and drives the boosting engine.

    Parameters
    ----------
    config:
        Build parameters, validated on every :meth:`train` call.
    engine:
        Boosting engine; defaults to :class:`~frameboost.engine.XGBoostEngine`.
    store:
        Receives a checkpoint at every scoring pass and the final model.
    clock:
        Wall clock in seconds, ``time.time`` by default.
    """

    def __init__(
        self,
        config: FrameBoostConfig,
        engine: BoostingEngine | None = None,
        store: ModelStore | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config
        self.engine = engine if engine is not None else XGBoostEngine(nthread=config.nthread)
        self.store = store if store is not None else InMemoryModelStore()
        self._clock = clock if clock is not None else time.time
        self._logger = logging.getLogger(__name__)

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    # Public -------------------------------------------------------------

    def train(
        self,
        train: ColumnarFrame | pd.DataFrame,
        valid: ColumnarFrame | pd.DataFrame | None = None,
        *,
        job: Job | None = None,
        key: str | None = None,
    ) -> TrainingResult:
        """Build a model on ``train`` (scored against ``valid`` when given)."""
        cfg = self.config
        key = key or f"frameboost-{uuid.uuid4().hex[:12]}"
        if job is None:
            job = Job(cfg.ntrees, description=key, max_runtime_secs=cfg.max_runtime_secs, clock=self._clock)
        else:
            job.start(cfg.ntrees)

        train_frame = ensure_frame(train)
        valid_frame = ensure_frame(valid) if valid is not None else None
        layout, nclass, levels, dmatrix_type, use_gpu = self._validate(train_frame, valid_frame)
        distribution = _resolve_distribution(cfg.distribution, nclass)
        excluded = cfg.excluded_columns()

        sparse = choose_sparse(train_frame, layout, excluded, dmatrix_type)
        builder = MatrixBuilder(layout)
        train_data = self._training_data(builder, train_frame, sparse, levels)
        valid_data = self._training_data(builder, valid_frame, sparse, levels) if valid_frame is not None else None

        params = build_params(cfg, nclass, use_gpu=use_gpu)
        model = FrameBoostModel(
            key=key,
            config=cfg,
            layout=layout,
            nclass=nclass,
            sparse=sparse,
            matrix_kind=train_data.matrix.kind,
            response_levels=levels,
            engine_params=params,
        )

        with tempfile.TemporaryDirectory(prefix=f"frameboost-model-{key}-") as tmp:
            fmap = Path(tmp) / FEATURE_MAP_FILENAME
            fmap.write_text(layout.feature_map_text())
            build = _Build(
                key=key,
                job=job,
                model=model,
                train=train_data,
                valid=valid_data,
                feature_map_path=str(fmap),
                distribution=distribution,
                stopping_metric=resolve_stopping_metric(cfg.stopping_metric, nclass > 1),
            )
            try:
                # failure here is fatal
                build.handle = self.engine.initial_train(train_data, params)
                state = self._score_and_build_trees(build)
            finally:
                self.engine.release(train_data)
                if valid_data is not None:
                    self.engine.release(valid_data)

        model.status = state.status
        self._sync(model, state)
        if state.status is not TrainingStatus.CANCELLED:
            model.booster_bytes = self.engine.serialize(build.handle)
            self.store.put(model)
        self._logger.info(
            "Model %s finished with status %s after %d trees.", key, state.status.value, state.ntrees
        )
        return TrainingResult(model=model, state=state)

    # Validation ---------------------------------------------------------

    def _validate(
        self, train: ColumnarFrame, valid: ColumnarFrame | None
    ) -> tuple[FeatureLayout, int, tuple[str, ...], str, bool]:
        """Collect every problem with the build before any matrix is made."""
        cfg = self.config
        errors = list(cfg.validate())

        cloud_size = int(os.getenv("FRAMEBOOST_CLOUD_SIZE", "1"))
        if cloud_size > 1:
            errors.append(("cloud", "Boosting is only supported on a single node."))

        dmatrix_type = os.getenv("FRAMEBOOST_DMATRIX_TYPE") or cfg.dmatrix_type
        if dmatrix_type not in ("auto", "sparse", "dense"):
            errors.append(("dmatrix_type", f"unsupported value {dmatrix_type!r}"))

        nclass = 1
        levels: tuple[str, ...] = ()
        if cfg.response_column not in train:
            errors.append(("response_column", f"response column {cfg.response_column!r} not found"))
        else:
            response = train.column(cfg.response_column)
            if response.na_count() > 0:
                errors.append(("response_column", "Response contains missing values (NAs) - not supported."))
            if response.is_categorical:
                levels = response.levels
                nclass = len(levels)
                if nclass < 2:
                    errors.append(("response_column", "categorical response needs at least two levels"))
            errors.extend(_distribution_errors(cfg, response.is_categorical, nclass, response.read_float()))

        if cfg.weights_column is not None and cfg.weights_column not in train:
            errors.append(("weights_column", f"weights column {cfg.weights_column!r} not found"))
        elif RowSelection.from_frame(train, cfg.weights_column).count == 0:
            errors.append(("weights_column", "no rows with nonzero weight"))

        excluded = cfg.excluded_columns()
        features = [col for col in train.columns if col.name not in excluded]
        if not features:
            errors.append(("ignored_columns", "no feature columns left after exclusions"))
        if cfg.sparse_layout == "csc" and any(col.is_categorical for col in features):
            errors.append(("sparse_layout", "CSC matrices are only supported for numeric-only layouts"))

        if valid is not None:
            missing = [col.name for col in features if col.name not in valid]
            if cfg.response_column not in valid:
                missing.append(cfg.response_column)
            if cfg.weights_column is not None and cfg.weights_column not in valid:
                missing.append(cfg.weights_column)
            if missing:
                errors.append(("validation_frame", f"validation frame lacks columns {missing}"))
            elif valid.column(cfg.response_column).na_count() > 0:
                errors.append(("validation_frame", "Validation response contains missing values (NAs)."))
            elif levels:
                unknown = set(valid.column(cfg.response_column).levels) - set(levels)
                if unknown:
                    errors.append(("validation_frame", f"validation response has unknown levels {sorted(unknown)}"))

        use_gpu = False
        if cfg.backend == "gpu":
            use_gpu = gpu.has_gpu(cfg.gpu_id)
            if not use_gpu:
                errors.append(("backend", f"GPU {cfg.gpu_id} was requested but is not usable."))
        elif cfg.backend == "auto":
            use_gpu = gpu.has_gpu(cfg.gpu_id)

        layout_error: ConfigurationError | None = None
        try:
            layout = build_feature_layout(train, excluded)
        except ConfigurationError as exc:
            layout_error = exc
            errors.extend(exc.errors)

        if errors:
            for name, message in errors:
                self._logger.error("Invalid configuration for %s: %s", name, message)
            raise ConfigurationError(errors) from layout_error
        return layout, nclass, levels, dmatrix_type, use_gpu

    def _training_data(
        self,
        builder: MatrixBuilder,
        frame: ColumnarFrame,
        sparse: bool,
        levels: tuple[str, ...],
    ) -> TrainingData:
        cfg = self.config
        selection = RowSelection.from_frame(frame, cfg.weights_column)
        matrix = builder.build(frame, selection, sparse=sparse, sparse_layout=cfg.sparse_layout)
        labels, weights = extract_labels_weights(
            frame,
            selection,
            cfg.response_column,
            cfg.weights_column,
            expected_rows=matrix.rows,
            response_levels=levels or None,
        )
        return TrainingData(matrix=matrix, labels=labels, weights=weights)

    # Round loop ---------------------------------------------------------

    def _score_and_build_trees(self, build: _Build) -> TrainingState:
        cfg = self.config
        job = build.job
        start = self._now_ms()
        state = TrainingState(
            scored_train=(MetricSnapshot(),),
            scored_valid=(MetricSnapshot(),) if build.valid is not None else None,
            training_time_ms=(start,),
        )

        for tid in range(cfg.ntrees):
            # the model holds ``tid`` trees at this point
            state = replace(state, round=tid)
            state, scored = self._do_scoring(build, state, final=False)
            if scored and stop_early(
                state.stopping_history(),
                cfg.stopping_rounds,
                build.stopping_metric,
                cfg.stopping_tolerance,
                classification=build.model.classification,
            ):
                state, _ = self._do_scoring(build, state, final=True)
                job.finish("Stopped early.")
                return replace(state, status=TrainingStatus.STOPPED_EARLY)

            state = self._boost(build, state, tid)

            if job.stop_requested() and not job.timed_out():
                self._logger.info("Model %s cancelled after %d trees.", build.key, state.ntrees)
                return replace(state, status=TrainingStatus.CANCELLED)
            if job.timed_out():
                if not scored:
                    state, _ = self._do_scoring(build, state, final=True)
                job.finish("Timed out.")
                return replace(state, status=TrainingStatus.TIMED_OUT)

        state, _ = self._do_scoring(build, state, final=True)
        return replace(state, status=TrainingStatus.COMPLETE)

    def _boost(self, build: _Build, state: TrainingState, tid: int) -> TrainingState:
        cfg = self.config
        round_start = time.perf_counter()
        failed = False
        try:
            if cfg.learn_rate_annealing != 1.0:
                eta = cfg.learn_rate * cfg.learn_rate_annealing ** state.ntrees
                self.engine.set_param(build.handle, "eta", eta)
            self.engine.update(build.handle, build.train, tid)
        except EngineError:
            # the round is lost but earlier trees are kept
            self._logger.exception("Boosting round %d of model %s failed.", tid + 1, build.key)
            failed = True
        round_seconds = time.perf_counter() - round_start
        self._logger.info("%d. tree was built in %.3f s.", tid + 1, round_seconds)

        # a lost round keeps its history slot but adds no tree
        ntrees = state.ntrees + int(not failed)
        build.job.update(1)
        state = replace(
            state,
            ntrees=ntrees,
            failed_rounds=state.failed_rounds + int(failed),
            scored_train=state.scored_train + (MetricSnapshot(ntrees=ntrees),),
            scored_valid=(
                state.scored_valid + (MetricSnapshot(ntrees=ntrees),) if state.scored_valid is not None else None
            ),
            training_time_ms=state.training_time_ms + (self._now_ms(),),
        )
        if self._logger.isEnabledFor(logging.INFO):
            self._logger.info(json.dumps({
                "model": build.key,
                "round": tid + 1,
                "ntrees": ntrees,
                "round_seconds": round_seconds,
                "failed": failed,
                "failed_rounds": state.failed_rounds,
                "progress": build.job.progress,
            }))
        return state

    # Scoring ------------------------------------------------------------

    def _do_scoring(self, build: _Build, state: TrainingState, *, final: bool) -> tuple[TrainingState, bool]:
        cfg = self.config
        now = self._now_ms()
        if state.first_score_ms is None:
            state = replace(state, first_score_ms=now)
        build.job.update(0, f"Built {state.ntrees} trees so far (out of {cfg.ntrees}).")

        if not should_score(
            now=now,
            first_score_time=state.first_score_ms,
            last_score_start=state.last_score_start_ms,
            last_score_end=state.last_score_end_ms,
            score_interval=cfg.score_interval,
            initial_score_window=cfg.initial_score_interval,
            manual_tree_interval=cfg.score_tree_interval,
            trees_built=state.ntrees,
            score_each_iteration=cfg.score_each_iteration,
            is_final_round=final,
        ):
            return state, False

        train_metrics = self._metrics(build, build.train)
        valid_metrics = self._metrics(build, build.valid) if build.valid is not None else None
        end = self._now_ms()

        def snapshot(metrics: dict[str, float]) -> MetricSnapshot:
            return MetricSnapshot(timestamp_ms=now, duration_ms=end - now, ntrees=state.ntrees, metrics=metrics)

        state = replace(
            state,
            last_score_start_ms=now,
            last_score_end_ms=end,
            scored_train=state.scored_train[:-1] + (snapshot(train_metrics),),
            scored_valid=(
                state.scored_valid[:-1] + (snapshot(valid_metrics),)
                if state.scored_valid is not None and valid_metrics is not None
                else state.scored_valid
            ),
        )

        model = build.model
        scores = self.engine.feature_score(build.handle, build.feature_map_path)
        model.variable_importances = variable_importance_table(scores)
        model.booster_bytes = self.engine.serialize(build.handle)
        model.model_summary = model_summary_table(state.ntrees, len(model.booster_bytes))
        self._sync(model, state)
        self.store.put(model)

        if self._logger.isEnabledFor(logging.INFO):
            self._logger.info(json.dumps({
                "model": build.key,
                "ntrees": state.ntrees,
                "final": final,
                "scoring_ms": end - now,
                "training": train_metrics,
                "validation": valid_metrics,
            }))
        return state, True

    def _metrics(self, build: _Build, data: TrainingData) -> dict[str, float]:
        cfg = self.config
        predictions = self.engine.predict(build.handle, data)
        return compute_metrics(
            predictions,
            data.labels,
            data.weights,
            nclass=build.model.nclass,
            distribution=build.distribution,
            tweedie_power=cfg.tweedie_power,
            quantile_alpha=cfg.quantile_alpha,
        )

    @staticmethod
    def _sync(model: FrameBoostModel, state: TrainingState) -> None:
        model.ntrees = state.ntrees
        model.failed_rounds = state.failed_rounds
        model.scored_train = list(state.scored_train)
        model.scored_valid = list(state.scored_valid) if state.scored_valid is not None else None
        model.training_time_ms = list(state.training_time_ms)


def _resolve_distribution(distribution: str, nclass: int) -> str:
    if distribution != "AUTO":
        return distribution
    if nclass == 2:
        return "bernoulli"
    if nclass > 2:
        return "multinomial"
    return "gaussian"


def _distribution_errors(
    cfg: FrameBoostConfig, categorical: bool, nclass: int, response: np.ndarray
) -> list[tuple[str, str]]:
    dist = cfg.distribution
    if dist == "AUTO":
        return []
    if categorical:
        if dist not in CLASSIFICATION_DISTRIBUTIONS:
            return [("distribution", f"{dist} distribution is not allowed for a categorical response")]
        if dist == "bernoulli" and nclass != 2:
            return [("distribution", "bernoulli distribution requires a response with exactly two levels")]
        return []
    if dist in CLASSIFICATION_DISTRIBUTIONS:
        return [("distribution", f"{dist} distribution requires a categorical response")]
    present = response[~np.isnan(response)]
    if dist in ("poisson", "tweedie") and (present < 0).any():
        return [("distribution", f"{dist} distribution requires a non-negative response")]
    if dist == "gamma" and (present <= 0).any():
        return [("distribution", "gamma distribution requires a positive response")]
    return []


# Parallel builds ----------------------------------------------------------


@dataclass(slots=True)
class BuildRequest:
    """One independent build for :func:`train_many`; each owns its booster."""

    booster: FrameBoost
    train: ColumnarFrame | pd.DataFrame
    valid: ColumnarFrame | pd.DataFrame | None = None
    key: str | None = None
    job: Job | None = field(default=None, repr=False)


def max_parallel_builds() -> int:
    value = int(os.getenv("FRAMEBOOST_MAX_PARALLEL_BUILDS", str(DEFAULT_MAX_PARALLEL_BUILDS)))
    if value < 1:
        raise ValueError("FRAMEBOOST_MAX_PARALLEL_BUILDS must be positive")
    return value


def train_many(builds: Sequence[BuildRequest], max_parallel: int | None = None) -> list[TrainingResult]:
    """Run independent builds with at most ``max_parallel`` of them at once.

    Results come back in the order of ``builds``; the first failing build
    re-raises its exception.
    """
    limit = max_parallel if max_parallel is not None else max_parallel_builds()
    if limit < 1:
        raise ValueError("max_parallel must be positive")
    _logger.info("Running %d builds, at most %d at a time.", len(builds), limit)
    with ThreadPoolExecutor(max_workers=limit, thread_name_prefix="frameboost") as pool:
        futures = [
            pool.submit(req.booster.train, req.train, req.valid, job=req.job, key=req.key) for req in builds
        ]
        return [future.result() for future in futures]


__all__ = [
    "BuildRequest",
    "FEATURE_MAP_FILENAME",
    "FrameBoost",
    "TrainingResult",
    "TrainingState",
    "max_parallel_builds",
    "train_many",
]
