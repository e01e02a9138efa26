"""Exception hierarchy for FrameBoost."""

from __future__ import annotations

from typing import Iterable, Sequence

GBM_FALLBACK_HINT = (
    "Data is too large to fit into the 32-bit float buffer handed to the boosting "
    "backend. Use a GBM implementation without this limit instead."
)


class FrameBoostError(Exception):
    """Base class for every error raised by FrameBoost."""


class ConfigurationError(FrameBoostError, ValueError):
    """One or more problems found while validating a build before training.

    ``errors`` keeps every ``(field, message)`` pair so callers can report them
    together instead of fixing one problem per run.
    """

    def __init__(self, errors: Iterable[tuple[str, str]]) -> None:
        self.errors: list[tuple[str, str]] = list(errors)
        lines = "; ".join(f"{field}: {message}" for field, message in self.errors)
        super().__init__(f"Illegal configuration ({len(self.errors)} error(s)): {lines}")

    @classmethod
    def single(cls, field: str, message: str) -> "ConfigurationError":
        return cls([(field, message)])

    @property
    def fields(self) -> Sequence[str]:
        return [field for field, _ in self.errors]


class CapacityExceededError(FrameBoostError):
    """A growable buffer cannot be enlarged past its addressable ceiling."""

    def __init__(self, requested: int, capacity: int) -> None:
        self.requested = int(requested)
        self.capacity = int(capacity)
        super().__init__(
            f"{GBM_FALLBACK_HINT} (needed {self.requested} elements, ceiling {self.capacity})"
        )


class InternalConsistencyError(FrameBoostError, AssertionError):
    """Invariant violated inside FrameBoost itself (never a user error)."""


class EngineError(FrameBoostError):
    """Failure reported by the native boosting engine."""
