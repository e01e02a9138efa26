"""Expanded one-hot / numeric feature layout derived from a frame schema."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from .data import ColumnarFrame, FrameColumn
from .errors import ConfigurationError
from .utils.buffers import DEFAULT_MAX_CAPACITY

MISSING_LEVEL_SUFFIX = "missing(NA)"

_WHITESPACE = re.compile(r"\s+")
_logger = logging.getLogger(__name__)


class FeatureType(str, Enum):
    """Type tags understood by the engine's feature-map parser."""

    INDICATOR = "i"
    INTEGER = "int"
    QUANTITATIVE = "q"


@dataclass(frozen=True, slots=True, eq=False)
class FeatureLayout:
    """Mapping from source columns to expanded matrix columns.

    Categorical columns come first. Column ``j`` owns the ids
    ``cat_offsets[j] .. cat_offsets[j + 1] - 1``; the last id of that range is
    reserved for missing values. Numeric column ``k`` lands at
    ``cat_offsets[-1] + k``.
    """

    cat_columns: tuple[str, ...]
    cat_levels: tuple[tuple[str, ...], ...]
    num_columns: tuple[str, ...]
    cat_offsets: np.ndarray
    feature_names: tuple[str, ...]
    feature_types: tuple[FeatureType, ...]
    _level_index: tuple[pd.Index, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.cat_offsets.setflags(write=False)
        object.__setattr__(self, "_level_index", tuple(pd.Index(levels) for levels in self.cat_levels))

    @property
    def cat_count(self) -> int:
        return len(self.cat_columns)

    @property
    def num_count(self) -> int:
        return len(self.num_columns)

    @property
    def cat_width(self) -> int:
        return int(self.cat_offsets[-1])

    @property
    def full_width(self) -> int:
        return self.cat_width + self.num_count

    def missing_id(self, j: int) -> int:
        return int(self.cat_offsets[j + 1]) - 1

    def categorical_ids(self, j: int, column: FrameColumn, codes: np.ndarray) -> np.ndarray:
        """Map level codes of ``column`` to absolute ids of categorical column ``j``.

        Codes are translated by level name so a frame whose levels differ from
        the training frame still lands on the right ids; unknown levels and
        missing values map to the reserved missing id.
        """
        missing_local = len(self.cat_levels[j])
        lookup = self._level_index[j].get_indexer(list(column.levels)).astype(np.int64)
        lookup[lookup < 0] = missing_local
        lookup = np.append(lookup, missing_local)
        local = lookup[np.where(codes >= 0, codes, lookup.shape[0] - 1)]
        return local + int(self.cat_offsets[j])

    def feature_map_text(self) -> str:
        lines = [
            f"{i} {_WHITESPACE.sub('', name)} {ftype.value}\n"
            for i, (name, ftype) in enumerate(zip(self.feature_names, self.feature_types))
        ]
        return "".join(lines)

    def to_dict(self) -> dict[str, object]:
        return {
            "cat_columns": list(self.cat_columns),
            "cat_levels": [list(levels) for levels in self.cat_levels],
            "num_columns": list(self.num_columns),
            "cat_offsets": self.cat_offsets.tolist(),
            "feature_names": list(self.feature_names),
            "feature_types": [ftype.value for ftype in self.feature_types],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> "FeatureLayout":
        return cls(
            cat_columns=tuple(payload["cat_columns"]),  # type: ignore[arg-type]
            cat_levels=tuple(tuple(levels) for levels in payload["cat_levels"]),  # type: ignore[union-attr]
            num_columns=tuple(payload["num_columns"]),  # type: ignore[arg-type]
            cat_offsets=np.asarray(payload["cat_offsets"], dtype=np.int64),
            feature_names=tuple(payload["feature_names"]),  # type: ignore[arg-type]
            feature_types=tuple(FeatureType(t) for t in payload["feature_types"]),  # type: ignore[union-attr]
        )


def build_feature_layout(
    frame: ColumnarFrame,
    excluded: Iterable[str],
    *,
    max_width: int = DEFAULT_MAX_CAPACITY,
) -> FeatureLayout:
    """Derive the expanded layout of ``frame`` skipping ``excluded`` columns."""
    skip = set(excluded)
    cats: list[FrameColumn] = []
    nums: list[FrameColumn] = []
    for col in frame.columns:
        if col.name in skip:
            continue
        (cats if col.is_categorical else nums).append(col)

    offsets = np.zeros(len(cats) + 1, dtype=np.int64)
    names: list[str] = []
    types: list[FeatureType] = []
    for j, col in enumerate(cats):
        offsets[j + 1] = offsets[j] + len(col.levels) + 1
        names.extend(f"{col.name}.{level}" for level in col.levels)
        names.append(f"{col.name}.{MISSING_LEVEL_SUFFIX}")
        types.extend([FeatureType.INDICATOR] * (len(col.levels) + 1))
    for col in nums:
        names.append(col.name)
        types.append(_numeric_type(col))

    full_width = int(offsets[-1]) + len(nums)
    if full_width > max_width:
        raise ConfigurationError.single(
            "columns",
            f"expanded feature width {full_width} exceeds the addressable limit {max_width}",
        )

    layout = FeatureLayout(
        cat_columns=tuple(col.name for col in cats),
        cat_levels=tuple(col.levels for col in cats),
        num_columns=tuple(col.name for col in nums),
        cat_offsets=offsets,
        feature_names=tuple(names),
        feature_types=tuple(types),
    )
    _logger.info(
        "Feature layout: %d categorical, %d numeric, full width %d.",
        layout.cat_count,
        layout.num_count,
        layout.full_width,
    )
    return layout


def _numeric_type(col: FrameColumn) -> FeatureType:
    if col.is_binary():
        return FeatureType.INDICATOR
    if col.is_int():
        return FeatureType.INTEGER
    return FeatureType.QUANTITATIVE


def feature_columns(names: Sequence[str], excluded: Iterable[str]) -> list[str]:
    """Frame columns that feed the layout, in frame order."""
    skip = set(excluded)
    return [name for name in names if name not in skip]
