"""Interval scheduling used by the countdown timer and session auto-save.

``every(interval, callback)`` returns a job handle whose ``cancel`` stops
further calls. :class:`ThreadScheduler` runs jobs on daemon threads;
:class:`ManualScheduler` only fires jobs when its owner advances time, which
suits UI event loops and tests.
"""

from __future__ import annotations
import logging
import threading
from typing import Callable, List

logger = logging.getLogger(__name__)


class ScheduledJob:
    """Handle for a callback registered with a scheduler."""

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.callback = callback
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class Scheduler:
    """Base class for interval schedulers."""

    def every(self, interval: float, callback: Callable[[], None]) -> ScheduledJob:
        raise NotImplementedError()


class _ThreadJob(ScheduledJob):
    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        super().__init__(interval, callback)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception("scheduled callback failed")

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        super().cancel()
        self._stop.set()


class ThreadScheduler(Scheduler):
    """Runs every job on its own background daemon thread."""

    def every(self, interval: float, callback: Callable[[], None]) -> ScheduledJob:
        job = _ThreadJob(interval, callback)
        job.start()
        return job


class _ManualJob(ScheduledJob):
    def __init__(self, interval: float, callback: Callable[[], None], due: float) -> None:
        super().__init__(interval, callback)
        self.due = due


class ManualScheduler(Scheduler):
    """Deterministic scheduler driven by :meth:`advance`."""

    def __init__(self) -> None:
        self.now = 0.0
        self._jobs: List[_ManualJob] = []

    def every(self, interval: float, callback: Callable[[], None]) -> ScheduledJob:
        job = _ManualJob(interval, callback, self.now + interval)
        self._jobs.append(job)
        return job

    @property
    def active_jobs(self) -> int:
        return sum(1 for job in self._jobs if job.active)

    def advance(self, seconds: float) -> None:
        """Move time forward by ``seconds``, firing due jobs in order."""
        target = self.now + seconds
        while True:
            self._jobs = [job for job in self._jobs if job.active]
            due = [job for job in self._jobs if job.due <= target]
            if not due:
                break
            job = min(due, key=lambda j: j.due)
            self.now = job.due
            job.due += job.interval
            job.callback()
        self.now = target
