"""Configuration objects for FrameBoost."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, get_args

DMatrixType = Literal["auto", "sparse", "dense"]
SparseLayout = Literal["csr", "csc"]
Distribution = Literal[
    "AUTO",
    "bernoulli",
    "multinomial",
    "gaussian",
    "poisson",
    "gamma",
    "tweedie",
    "laplace",
    "huber",
    "quantile",
]
StoppingMetric = Literal[
    "AUTO",
    "deviance",
    "logloss",
    "MSE",
    "RMSE",
    "MAE",
    "RMSLE",
    "AUC",
    "misclassification",
    "mean_per_class_error",
]
TreeMethod = Literal["auto", "exact", "approx", "hist"]
GrowPolicy = Literal["depthwise", "lossguide"]
Backend = Literal["auto", "cpu", "gpu"]

CLASSIFICATION_DISTRIBUTIONS = frozenset({"bernoulli", "multinomial"})


@dataclass(frozen=True, slots=True)
class FrameBoostConfig:
    """Parameters steering a single FrameBoost model build.

    Parameters
    ----------
    response_column:
        Name of the column holding the label. Categorical responses make the
        build a classification problem.
    weights_column:
        Optional observation weights. Rows whose weight is exactly ``0`` are
        dropped from every matrix, label and weight array.
    fold_column, offset_column, ignored_columns:
        Columns excluded from the feature layout. Offsets are rejected during
        validation because the engine cannot consume them.
    dmatrix_type:
        ``"sparse"`` / ``"dense"`` force the matrix representation, ``"auto"``
        picks one from the fill ratio and the 32-bit element limit.
    sparse_layout:
        ``"csr"`` (default) or ``"csc"``; CSC is only valid for numeric-only
        layouts.
    ntrees:
        Number of boosting rounds.
    learn_rate, learn_rate_annealing:
        Shrinkage applied per tree; the effective rate for tree ``t`` is
        ``learn_rate * learn_rate_annealing ** t``.
    sample_rate, col_sample_rate:
        Row and column subsampling ratios in ``(0, 1]``.
    score_interval:
        Minimum milliseconds between two time-based scoring passes.
    initial_score_interval:
        Milliseconds after the first scoring pass during which every round is
        scored.
    score_tree_interval:
        Score every ``n`` trees; ``0`` enables the duty-cycle heuristic.
    score_each_iteration:
        Score after every tree regardless of cost.
    tweedie_power, quantile_alpha, huber_slope:
        Loss parameters of the tweedie, quantile and huber distributions.
    stopping_rounds, stopping_metric, stopping_tolerance:
        Early stopping on moving averages of the scoring history. ``0`` rounds
        disables it.
    max_runtime_secs:
        Wall-clock budget; ``0`` means unlimited.
    backend, gpu_id:
        ``"gpu"`` requests a CUDA device which is probed before training.
    """

    response_column: str = "response"
    weights_column: str | None = None
    fold_column: str | None = None
    offset_column: str | None = None
    ignored_columns: tuple[str, ...] = ()

    dmatrix_type: DMatrixType = "auto"
    sparse_layout: SparseLayout = "csr"

    ntrees: int = 50
    max_depth: int = 6
    learn_rate: float = 0.3
    learn_rate_annealing: float = 1.0
    sample_rate: float = 1.0
    col_sample_rate: float = 1.0
    min_rows: float = 1.0
    min_split_improvement: float = 0.0
    reg_lambda: float = 1.0
    reg_alpha: float = 0.0
    max_bins: int = 256
    distribution: Distribution = "AUTO"
    tweedie_power: float = 1.5
    quantile_alpha: float = 0.5
    huber_slope: float = 1.0
    tree_method: TreeMethod = "auto"
    grow_policy: GrowPolicy = "depthwise"
    backend: Backend = "auto"
    gpu_id: int = 0
    nthread: int = -1
    seed: int | None = None

    # --- scoring cadence (milliseconds) ---
    score_interval: int = 4000
    initial_score_interval: int = 4000
    score_tree_interval: int = 0
    score_each_iteration: bool = False
    # --------------------------------------

    stopping_rounds: int = 0
    stopping_metric: StoppingMetric = "AUTO"
    stopping_tolerance: float = 1e-3
    max_runtime_secs: float = 0.0

    extra_params: dict[str, object] = field(default_factory=dict, hash=False, compare=False)

    def excluded_columns(self) -> set[str]:
        """Columns that never become features."""
        special = {self.response_column, self.weights_column, self.fold_column, self.offset_column}
        return {name for name in special if name is not None} | set(self.ignored_columns)

    def validate(self) -> list[tuple[str, str]]:
        """Return every parameter-level problem as ``(field, message)`` pairs."""
        errors: list[tuple[str, str]] = []

        def check_choice(name: str, alias: object) -> None:
            value = getattr(self, name)
            if value not in get_args(alias):
                errors.append((name, f"unsupported value {value!r}"))

        check_choice("dmatrix_type", DMatrixType)
        check_choice("sparse_layout", SparseLayout)
        check_choice("distribution", Distribution)
        check_choice("stopping_metric", StoppingMetric)
        check_choice("tree_method", TreeMethod)
        check_choice("grow_policy", GrowPolicy)
        check_choice("backend", Backend)

        if self.ntrees < 1:
            errors.append(("ntrees", "ntrees must be at least 1"))
        if self.max_depth < 0:
            errors.append(("max_depth", "max_depth must be non-negative"))
        if not (0.0 < self.learn_rate <= 1.0):
            errors.append(("learn_rate", "learn_rate must be between 0 and 1"))
        if not (0.0 < self.learn_rate_annealing <= 1.0):
            errors.append(("learn_rate_annealing", "learn_rate_annealing must be between 0 and 1"))
        if not (0.0 < self.sample_rate <= 1.0):
            errors.append(("sample_rate", "sample_rate must be between 0 and 1"))
        if not (0.0 < self.col_sample_rate <= 1.0):
            errors.append(("col_sample_rate", "col_sample_rate must be between 0 and 1"))
        if self.grow_policy == "lossguide" and self.tree_method != "hist":
            errors.append(("grow_policy", "must use tree_method=hist for grow_policy=lossguide"))
        if self.score_interval < 0:
            errors.append(("score_interval", "score_interval must be non-negative"))
        if self.initial_score_interval < 0:
            errors.append(("initial_score_interval", "initial_score_interval must be non-negative"))
        if self.score_tree_interval < 0:
            errors.append(("score_tree_interval", "score_tree_interval must be non-negative"))
        if self.stopping_rounds < 0:
            errors.append(("stopping_rounds", "stopping_rounds must be non-negative"))
        if self.stopping_tolerance < 0:
            errors.append(("stopping_tolerance", "stopping_tolerance must be non-negative"))
        if self.max_runtime_secs < 0:
            errors.append(("max_runtime_secs", "max_runtime_secs must be non-negative"))
        if self.offset_column is not None:
            errors.append(("offset_column", "Offset is not supported by the boosting engine."))
        if self.weights_column is not None and self.weights_column == self.response_column:
            errors.append(("weights_column", "weights column cannot be the response column"))
        return errors
