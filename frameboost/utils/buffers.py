"""Growable numeric buffers with a hard element ceiling."""

from __future__ import annotations

import logging

import numpy as np

from ..errors import CapacityExceededError

INT32_MAX = np.iinfo(np.int32).max
DEFAULT_INITIAL_CAPACITY = 1 << 20
DEFAULT_MAX_CAPACITY = INT32_MAX - 10

_logger = logging.getLogger(__name__)


class DynamicBuffer:
    """Append-only 1-D buffer that doubles its storage up to ``max_capacity``.

    Parameters
    ----------
    dtype:
        Element type of the backing ``np.ndarray``.
    initial_capacity:
        Number of elements allocated up front.
    max_capacity:
        Hard ceiling on the number of addressable elements. Growth that would
        need more raises :class:`~frameboost.errors.CapacityExceededError`.
    name:
        Label used in log records.
    """

    def __init__(
        self,
        dtype: np.dtype | type,
        *,
        initial_capacity: int = DEFAULT_INITIAL_CAPACITY,
        max_capacity: int = DEFAULT_MAX_CAPACITY,
        name: str = "buffer",
    ) -> None:
        if initial_capacity < 1:
            raise ValueError("initial_capacity must be positive")
        if max_capacity < 1:
            raise ValueError("max_capacity must be positive")
        self.name = name
        self.max_capacity = int(max_capacity)
        self._data = np.empty(min(int(initial_capacity), self.max_capacity), dtype=dtype)
        self._size = 0

    def __len__(self) -> int:
        return self._size

    @property
    def capacity(self) -> int:
        return int(self._data.shape[0])

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    def reserve(self, extra: int) -> None:
        """Make room for ``extra`` more elements, doubling as often as needed."""
        needed = self._size + int(extra)
        while self._data.shape[0] < needed:
            current = int(self._data.shape[0])
            new_len = min(current << 1, self.max_capacity)
            if new_len == current:
                raise CapacityExceededError(needed, self.max_capacity)
            _logger.info(
                "Enlarging %s from %d to %d elements.", self.name, current, new_len
            )
            grown = np.empty(new_len, dtype=self._data.dtype)
            grown[: self._size] = self._data[: self._size]
            self._data = grown

    def push(self, value: float | int) -> None:
        self.reserve(1)
        self._data[self._size] = value
        self._size += 1

    def extend(self, values: np.ndarray) -> None:
        values = np.asarray(values)
        n = int(values.shape[0])
        if n == 0:
            return
        self.reserve(n)
        self._data[self._size : self._size + n] = values
        self._size += n

    def claim(self, n: int) -> np.ndarray:
        """Reserve ``n`` elements and return a writable view over them."""
        self.reserve(n)
        start = self._size
        self._size += int(n)
        return self._data[start : self._size]

    def trim(self) -> np.ndarray:
        """Return a copy holding exactly the occupied elements."""
        return self._data[: self._size].copy()
