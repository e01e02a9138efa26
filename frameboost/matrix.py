"""Conversion of a :class:`ColumnarFrame` into engine-ready numeric matrices."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Literal, Union

import numpy as np
import scipy.sparse as sp

from .data import ColumnarFrame, RowSelection
from .errors import ConfigurationError
from .layout import FeatureLayout, feature_columns
from .utils.buffers import DEFAULT_INITIAL_CAPACITY, DEFAULT_MAX_CAPACITY, INT32_MAX, DynamicBuffer

SPARSE_FILL_THRESHOLD = 0.5
# Upper bound on temporary (rows x features) scratch space per block.
_BLOCK_ELEMENTS = 1 << 22

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True, eq=False)
class DenseMatrix:
    """Row-major ``float32`` matrix; ``NaN`` marks missing values."""

    rows: int
    cols: int
    values: np.ndarray

    kind = "dense"

    @property
    def nnz(self) -> int:
        return int(self.values.shape[0])

    def to_array(self) -> np.ndarray:
        return self.values.reshape(self.rows, self.cols)


@dataclass(frozen=True, slots=True, eq=False)
class CSRMatrix:
    """Compressed sparse rows: ``row_offsets[rows + 1]``, ``col_index[nnz]``, ``data[nnz]``."""

    rows: int
    cols: int
    row_offsets: np.ndarray
    col_index: np.ndarray
    data: np.ndarray

    kind = "csr"

    @property
    def nnz(self) -> int:
        return int(self.data.shape[0])

    def to_scipy(self) -> sp.csr_matrix:
        return sp.csr_matrix((self.data, self.col_index, self.row_offsets), shape=(self.rows, self.cols))


@dataclass(frozen=True, slots=True, eq=False)
class CSCMatrix:
    """Compressed sparse columns: ``col_offsets[cols + 1]``, ``row_index[nnz]``, ``data[nnz]``."""

    rows: int
    cols: int
    col_offsets: np.ndarray
    row_index: np.ndarray
    data: np.ndarray

    kind = "csc"

    @property
    def nnz(self) -> int:
        return int(self.data.shape[0])

    def to_scipy(self) -> sp.csc_matrix:
        return sp.csc_matrix((self.data, self.row_index, self.col_offsets), shape=(self.rows, self.cols))


TrainingMatrix = Union[DenseMatrix, CSRMatrix, CSCMatrix]


@dataclass(frozen=True, slots=True, eq=False)
class TrainingData:
    """A matrix together with the label and weight arrays aligned to its rows."""

    matrix: TrainingMatrix
    labels: np.ndarray | None
    weights: np.ndarray | None = None

    @property
    def rows(self) -> int:
        return self.matrix.rows


def fill_ratio(frame: ColumnarFrame, excluded: Iterable[str]) -> float:
    """Mean fraction of non-zero entries over the feature columns of ``frame``."""
    names = feature_columns(frame.names, excluded)
    if not names or frame.num_rows == 0:
        return 0.0
    total = sum(frame.column(name).nonzero_count() / frame.num_rows for name in names)
    return total / len(names)


def choose_sparse(
    frame: ColumnarFrame,
    layout: FeatureLayout,
    excluded: Iterable[str],
    dmatrix_type: Literal["auto", "sparse", "dense"] = "auto",
) -> bool:
    """Decide between a sparse and a dense matrix for ``frame``."""
    if dmatrix_type == "sparse":
        return True
    if dmatrix_type == "dense":
        return False
    ratio = fill_ratio(frame, excluded)
    too_wide = frame.num_rows * layout.full_width > INT32_MAX
    _logger.info("fill ratio: %.4f (dense element count overflows int32: %s)", ratio, too_wide)
    return ratio < SPARSE_FILL_THRESHOLD or too_wide


class MatrixBuilder:
    """Builds dense, CSR or CSC matrices from a frame following a fixed layout.

    Parameters
    ----------
    layout:
        Expanded feature layout; defines the column count of every matrix.
    initial_capacity:
        Starting element count of each growable buffer.
    max_capacity:
        Hard ceiling on buffer growth, defaults to the 32-bit element limit.
    """

    def __init__(
        self,
        layout: FeatureLayout,
        *,
        initial_capacity: int = DEFAULT_INITIAL_CAPACITY,
        max_capacity: int = DEFAULT_MAX_CAPACITY,
    ) -> None:
        self.layout = layout
        self.initial_capacity = int(initial_capacity)
        self.max_capacity = int(max_capacity)

    def build(
        self,
        frame: ColumnarFrame,
        selection: RowSelection,
        *,
        sparse: bool,
        sparse_layout: Literal["csr", "csc"] = "csr",
    ) -> TrainingMatrix:
        if sparse:
            _logger.info("Treating matrix as sparse.")
            if sparse_layout == "csc":
                matrix: TrainingMatrix = self.build_csc(frame, selection)
            else:
                matrix = self.build_csr(frame, selection)
        else:
            _logger.info("Treating matrix as dense.")
            matrix = self.build_dense(frame, selection)
        if _logger.isEnabledFor(logging.INFO):
            _logger.info(json.dumps({
                "matrix": matrix.kind,
                "rows": matrix.rows,
                "cols": matrix.cols,
                "stored": matrix.nnz,
                "source_rows": frame.num_rows,
            }))
        return matrix

    # Builders -----------------------------------------------------------

    def build_dense(self, frame: ColumnarFrame, selection: RowSelection) -> DenseMatrix:
        layout = self.layout
        cols = layout.full_width
        cat_cols = [frame.column(name) for name in layout.cat_columns]
        num_cols = [frame.column(name) for name in layout.num_columns]
        values = self._buffer(np.float32, "dense data")

        rows = 0
        for start, stop, idx in self._blocks(frame, selection, cols):
            n = int(idx.shape[0])
            block = values.claim(n * cols).reshape(n, cols)
            block.fill(0.0)
            row_ix = np.arange(n)
            for j, col in enumerate(cat_cols):
                # missing values land on the reserved id, so every row gets one indicator
                block[row_ix, layout.categorical_ids(j, col, col.read(start, stop)[idx])] = 1.0
            for k, col in enumerate(num_cols):
                block[:, layout.cat_width + k] = col.read_float(start, stop)[idx]
            rows += n

        return DenseMatrix(rows=rows, cols=cols, values=values.trim())

    def build_csr(self, frame: ColumnarFrame, selection: RowSelection) -> CSRMatrix:
        layout = self.layout
        cat_cols = [frame.column(name) for name in layout.cat_columns]
        num_cols = [frame.column(name) for name in layout.num_columns]
        width = 1 + len(cat_cols) + len(num_cols)
        col_index = self._buffer(np.int32, "sparse column index")
        data = self._buffer(np.float32, "sparse data")
        row_offsets = np.zeros(selection.count + 1, dtype=np.int64)

        rows = 0
        for start, stop, idx in self._blocks(frame, selection, width):
            n = int(idx.shape[0])
            ids = np.zeros((n, width), dtype=np.int32)
            vals = np.zeros((n, width), dtype=np.float32)
            keep = np.zeros((n, width), dtype=bool)
            for j, col in enumerate(cat_cols):
                cid = layout.categorical_ids(j, col, col.read(start, stop)[idx])
                ids[:, 1 + j] = cid
                vals[:, 1 + j] = 1.0
                keep[:, 1 + j] = cid != layout.missing_id(j)
            base = 1 + len(cat_cols)
            for k, col in enumerate(num_cols):
                v = col.read_float(start, stop)[idx].astype(np.float32)
                ids[:, base + k] = layout.cat_width + k
                vals[:, base + k] = v
                keep[:, base + k] = ~np.isnan(v) & (v != 0.0)
            # a row without stored entries would vanish from the engine's row count,
            # so it keeps one explicit zero at column 0
            keep[:, 0] = ~keep[:, 1:].any(axis=1)

            counts = keep.sum(axis=1, dtype=np.int64)
            nz = len(data)
            col_index.extend(ids[keep])
            data.extend(vals[keep])
            row_offsets[rows + 1 : rows + 1 + n] = nz + np.cumsum(counts)
            rows += n

        return CSRMatrix(
            rows=rows,
            cols=layout.full_width,
            row_offsets=row_offsets[: rows + 1],
            col_index=col_index.trim(),
            data=data.trim(),
        )

    def build_csc(self, frame: ColumnarFrame, selection: RowSelection) -> CSCMatrix:
        layout = self.layout
        if layout.cat_count:
            raise ConfigurationError.single(
                "sparse_layout", "CSC matrices are only supported for numeric-only layouts"
            )
        num_cols = [frame.column(name) for name in layout.num_columns]
        per_column: list[list[tuple[np.ndarray, np.ndarray]]] = [[] for _ in num_cols]

        row_base = 0
        for start, stop, idx in self._blocks(frame, selection, max(len(num_cols), 1)):
            positions = row_base + np.arange(idx.shape[0], dtype=np.int64)
            for k, col in enumerate(num_cols):
                v = col.read_float(start, stop)[idx].astype(np.float32)
                present = ~np.isnan(v) & (v != 0.0)
                if present.any():
                    per_column[k].append((positions[present], v[present]))
            row_base += int(idx.shape[0])

        row_index = self._buffer(np.int32, "sparse row index")
        data = self._buffer(np.float32, "sparse data")
        col_offsets = np.zeros(len(num_cols) + 1, dtype=np.int64)
        for k, pieces in enumerate(per_column):
            col_offsets[k] = len(data)
            for rows_k, vals_k in pieces:
                row_index.extend(rows_k)
                data.extend(vals_k)
        col_offsets[len(num_cols)] = len(data)

        row_index_arr = row_index.trim()
        actual_rows = int(np.unique(row_index_arr).shape[0])
        if actual_rows != row_base:
            # row positions are not renumbered, so an empty row would leave
            # indices past the matrix height
            raise ConfigurationError.single(
                "sparse_layout",
                f"{row_base - actual_rows} of {row_base} rows have no nonzero values and cannot be "
                "stored in a CSC matrix; use sparse_layout='csr' instead",
            )
        return CSCMatrix(
            rows=actual_rows,
            cols=layout.full_width,
            col_offsets=col_offsets,
            row_index=row_index_arr,
            data=data.trim(),
        )

    # Helpers ------------------------------------------------------------

    def _buffer(self, dtype: type, name: str) -> DynamicBuffer:
        return DynamicBuffer(
            dtype,
            initial_capacity=self.initial_capacity,
            max_capacity=self.max_capacity,
            name=name,
        )

    @staticmethod
    def _blocks(
        frame: ColumnarFrame, selection: RowSelection, width: int
    ) -> Iterator[tuple[int, int, np.ndarray]]:
        """Yield ``(start, stop, local_rows)`` with bounded ``len(local_rows) * width``."""
        rows_per_block = max(1, _BLOCK_ELEMENTS // max(width, 1))
        for start, stop, mask in selection.chunks(frame):
            local = np.arange(stop - start) if mask is None else np.flatnonzero(mask)
            for b in range(0, local.shape[0], rows_per_block):
                yield start, stop, local[b : b + rows_per_block]
