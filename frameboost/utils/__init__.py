"""Low-level helpers shared by the matrix builders."""

from .buffers import DEFAULT_INITIAL_CAPACITY, DEFAULT_MAX_CAPACITY, INT32_MAX, DynamicBuffer

__all__ = ["DEFAULT_INITIAL_CAPACITY", "DEFAULT_MAX_CAPACITY", "INT32_MAX", "DynamicBuffer"]
