"""Unit-based progress tracking with cooperative cancellation and timeout."""

from __future__ import annotations

import logging
import threading
from time import monotonic
from typing import Callable

_logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, "str | None"], None]


class Job:
    """Progress counter shared between a build and whoever tracks it.

    ``work`` is the total number of units; :meth:`update` is called once per
    completed round. :meth:`cancel` may be called from any thread, the build
    polls :meth:`stop_requested` between rounds.
    """

    def __init__(
        self,
        work: int = 0,
        *,
        description: str = "",
        max_runtime_secs: float = 0.0,
        on_progress: ProgressCallback | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self.description = description
        self.max_runtime_secs = float(max_runtime_secs)
        self._work = int(work)
        self._worked = 0
        self._message: str | None = None
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._on_progress = on_progress
        self._clock = clock
        self._started = clock()

    def start(self, work: int) -> None:
        with self._lock:
            self._work = int(work)
            self._worked = 0
            self._started = self._clock()

    @property
    def work(self) -> int:
        return self._work

    @property
    def worked(self) -> int:
        return self._worked

    @property
    def message(self) -> str | None:
        return self._message

    @property
    def progress(self) -> float:
        if self._work <= 0:
            return 0.0
        return min(1.0, self._worked / self._work)

    def update(self, units: int, message: str | None = None) -> None:
        """Advance by ``units`` (never backwards) and optionally set a status message."""
        if units < 0:
            raise ValueError("progress is monotonic")
        with self._lock:
            self._worked += int(units)
            if message is not None:
                self._message = message
            worked, work, msg = self._worked, self._work, self._message
        if self._on_progress is not None:
            self._on_progress(worked, work, msg)

    def finish(self, message: str | None = None) -> None:
        """Jump to completion."""
        self.update(max(self._work - self._worked, 0), message)

    def cancel(self) -> None:
        _logger.info("Cancellation requested for job %r.", self.description)
        self._cancel.set()

    def stop_requested(self) -> bool:
        return self._cancel.is_set() or self.timed_out()

    def timed_out(self) -> bool:
        if self.max_runtime_secs <= 0:
            return False
        return self._clock() - self._started > self.max_runtime_secs
