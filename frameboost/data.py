"""Columnar frame adapter, shared row selection and label/weight extraction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Mapping, Sequence

import numpy as np
import pandas as pd

from .errors import InternalConsistencyError

DEFAULT_CHUNK_SIZE = 1 << 16

_logger = logging.getLogger(__name__)


class FrameColumn:
    """Read-only view over one named column of a :class:`ColumnarFrame`.

    Numeric columns are stored as ``float64`` with ``NaN`` marking missing
    values. Categorical columns keep integer codes into ``levels`` with ``-1``
    marking missing values.
    """

    def __init__(self, name: str, series: pd.Series) -> None:
        self.name = str(name)
        if _is_categorical_dtype(series):
            cat = series.astype("category")
            self.is_categorical = True
            self.levels: tuple[str, ...] = tuple(str(level) for level in cat.cat.categories)
            self._values = cat.cat.codes.to_numpy(dtype=np.int32, copy=True)
        else:
            self.is_categorical = False
            self.levels = ()
            self._values = pd.to_numeric(series, errors="coerce").to_numpy(dtype=np.float64, na_value=np.nan, copy=True)
        self._values.setflags(write=False)

    def __len__(self) -> int:
        return int(self._values.shape[0])

    def read(self, start: int = 0, stop: int | None = None) -> np.ndarray:
        """Return raw values (numeric) or level codes (categorical) for ``[start, stop)``."""
        return self._values[start:stop]

    def read_float(self, start: int = 0, stop: int | None = None) -> np.ndarray:
        """Return values as ``float64``; categorical codes become floats, missing becomes NaN."""
        values = self._values[start:stop]
        if not self.is_categorical:
            return values
        out = values.astype(np.float64)
        out[values < 0] = np.nan
        return out

    def na_count(self) -> int:
        if self.is_categorical:
            return int(np.count_nonzero(self._values < 0))
        return int(np.count_nonzero(np.isnan(self._values)))

    def nonzero_count(self) -> int:
        """Count of stored non-zero values; missing values count as non-zero."""
        if self.is_categorical:
            return int(np.count_nonzero(self._values != 0))
        return int(np.count_nonzero(self._values != 0.0))

    def is_int(self) -> bool:
        if self.is_categorical:
            return False
        present = self._values[~np.isnan(self._values)]
        return bool(np.all(present == np.floor(present)))

    def is_binary(self) -> bool:
        if self.is_categorical:
            return False
        present = self._values[~np.isnan(self._values)]
        return bool(np.all((present == 0.0) | (present == 1.0)))


def _is_categorical_dtype(series: pd.Series) -> bool:
    dtype = series.dtype
    if isinstance(dtype, pd.CategoricalDtype):
        return True
    return pd.api.types.is_object_dtype(dtype) or pd.api.types.is_string_dtype(dtype)


class ColumnarFrame:
    """Ordered set of named columns read in row chunks.

    The frame is never mutated after construction, so several builds can read
    the same instance concurrently.
    """

    def __init__(self, columns: Sequence[FrameColumn], *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        lengths = {len(col) for col in columns}
        if len(lengths) > 1:
            raise ValueError("all columns must have the same number of rows")
        self._columns = list(columns)
        self._by_name = {col.name: col for col in self._columns}
        if len(self._by_name) != len(self._columns):
            raise ValueError("column names must be unique")
        self._num_rows = lengths.pop() if lengths else 0
        self.chunk_size = int(chunk_size)

    @classmethod
    def from_pandas(cls, df: pd.DataFrame, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> "ColumnarFrame":
        return cls([FrameColumn(name, df[name]) for name in df.columns], chunk_size=chunk_size)

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> "ColumnarFrame":
        return cls.from_pandas(pd.DataFrame(dict(data)), chunk_size=chunk_size)

    @property
    def num_rows(self) -> int:
        return self._num_rows

    @property
    def names(self) -> list[str]:
        return [col.name for col in self._columns]

    @property
    def columns(self) -> Sequence[FrameColumn]:
        return tuple(self._columns)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def column(self, name: str) -> FrameColumn:
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"column {name!r} not found in frame") from None

    def chunks(self) -> Iterator[tuple[int, int]]:
        """Yield ``(start, stop)`` row ranges covering the frame in order."""
        for start in range(0, self._num_rows, self.chunk_size):
            yield start, min(start + self.chunk_size, self._num_rows)


def ensure_frame(data: ColumnarFrame | pd.DataFrame | Mapping[str, object]) -> ColumnarFrame:
    """Coerce ``data`` into a :class:`ColumnarFrame`."""
    if isinstance(data, ColumnarFrame):
        return data
    if isinstance(data, pd.DataFrame):
        return ColumnarFrame.from_pandas(data)
    return ColumnarFrame.from_dict(data)


@dataclass(frozen=True, slots=True)
class RowSelection:
    """Rows that take part in training: every row whose weight is not exactly zero.

    The same instance is handed to the matrix builder and to
    :func:`extract_labels_weights`, so all extracted arrays follow one filter
    and one order.
    """

    total_rows: int
    keep: np.ndarray | None  # bool mask, ``None`` when all rows are kept

    @classmethod
    def from_frame(cls, frame: ColumnarFrame, weights_column: str | None) -> "RowSelection":
        if weights_column is None:
            return cls(total_rows=frame.num_rows, keep=None)
        weights = frame.column(weights_column).read_float()
        keep = weights != 0.0
        keep.setflags(write=False)
        return cls(total_rows=frame.num_rows, keep=keep)

    @classmethod
    def all_rows(cls, frame: ColumnarFrame) -> "RowSelection":
        return cls(total_rows=frame.num_rows, keep=None)

    @property
    def count(self) -> int:
        if self.keep is None:
            return self.total_rows
        return int(np.count_nonzero(self.keep))

    def indices(self) -> np.ndarray:
        if self.keep is None:
            return np.arange(self.total_rows, dtype=np.int64)
        return np.flatnonzero(self.keep)

    def chunks(self, frame: ColumnarFrame) -> Iterator[tuple[int, int, np.ndarray | None]]:
        """Yield ``(start, stop, mask)`` per frame chunk; ``mask`` is ``None`` when all rows stay."""
        if frame.num_rows != self.total_rows:
            raise ValueError("row selection was computed for a different frame")
        for start, stop in frame.chunks():
            if self.keep is None:
                yield start, stop, None
                continue
            mask = self.keep[start:stop]
            if mask.all():
                yield start, stop, None
            elif mask.any():
                yield start, stop, mask
            # chunks without any selected row are skipped entirely


def select(values: np.ndarray, mask: np.ndarray | None) -> np.ndarray:
    return values if mask is None else values[mask]


def extract_labels_weights(
    frame: ColumnarFrame,
    selection: RowSelection,
    response_column: str,
    weights_column: str | None,
    *,
    expected_rows: int,
    response_levels: Sequence[str] | None = None,
) -> tuple[np.ndarray, np.ndarray | None]:
    """Return label and weight arrays aligned row-for-row with the matrix.

    Categorical responses are encoded as their level codes; with
    ``response_levels`` the codes index that level list instead of the
    column's own (levels not in the list become NaN). Raises
    :class:`InternalConsistencyError` when the number of selected rows differs
    from ``expected_rows``.
    """
    response = frame.column(response_column)
    weight_col = frame.column(weights_column) if weights_column is not None else None
    n = selection.count
    labels = np.empty(n, dtype=np.float32)
    weights = np.empty(n, dtype=np.float32) if weight_col is not None else None

    remap: np.ndarray | None = None
    if response.is_categorical and response_levels is not None:
        remap = pd.Index(list(response_levels)).get_indexer(list(response.levels)).astype(np.float64)
        remap[remap < 0] = np.nan
        remap = np.append(remap, np.nan)

    accepted = 0
    for start, stop, mask in selection.chunks(frame):
        if remap is None:
            chunk_labels = select(response.read_float(start, stop), mask)
        else:
            codes = select(response.read(start, stop), mask)
            chunk_labels = remap[np.where(codes >= 0, codes, remap.shape[0] - 1)]
        k = chunk_labels.shape[0]
        labels[accepted : accepted + k] = chunk_labels
        if weights is not None:
            weights[accepted : accepted + k] = select(weight_col.read_float(start, stop), mask)
        accepted += k

    if accepted != expected_rows:
        raise InternalConsistencyError(
            f"label/weight extraction accepted {accepted} rows but the matrix holds {expected_rows}"
        )
    _logger.debug("Extracted %d labels (weights=%s).", accepted, weights is not None)
    return labels, weights
