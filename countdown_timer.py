from __future__ import annotations
import enum
import logging
import threading
from typing import Callable, Optional

from models import TimerType
from notification_service import Notifier
from scheduler import ScheduledJob, Scheduler, ThreadScheduler

logger = logging.getLogger(__name__)


class TimerState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class CountdownTimer:
    """Whole-second countdown with a one-shot completion callback.

    The timer moves Idle -> Running -> (Paused -> Running)* -> Completed.
    While running it ticks once per second; ticks inside the warning window
    play a short tick sound. Reaching zero plays the sound for the timer's
    type, posts a notification and then calls ``on_complete`` exactly once.
    Sound and notification failures are logged and ignored.
    """

    TICK_INTERVAL = 1.0

    def __init__(
        self,
        duration: int,
        timer_type: TimerType = TimerType.REST,
        on_complete: Optional[Callable[[], None]] = None,
        scheduler: Optional[Scheduler] = None,
        notifier: Optional[Notifier] = None,
        warning_seconds: int = 10,
    ) -> None:
        if duration < 0:
            raise ValueError("duration must be non-negative")
        self.duration = int(duration)
        self.timer_type = TimerType(timer_type)
        self.on_complete = on_complete
        self.scheduler = scheduler or ThreadScheduler()
        self.notifier = notifier or Notifier()
        self.warning_seconds = warning_seconds
        self._remaining = self.duration
        self._state = TimerState.IDLE
        self._job: Optional[ScheduledJob] = None
        self._lock = threading.RLock()

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is TimerState.RUNNING

    @property
    def paused(self) -> bool:
        return self._state is TimerState.PAUSED

    @property
    def completed(self) -> bool:
        return self._state is TimerState.COMPLETED

    @property
    def progress(self) -> float:
        """Percentage of the configured duration already elapsed."""
        if self.duration == 0:
            return 100.0
        return (self.duration - self._remaining) / self.duration * 100

    @staticmethod
    def format_time(seconds: int) -> str:
        minutes, secs = divmod(max(0, int(seconds)), 60)
        return f"{minutes}:{secs:02d}"

    def start(self) -> None:
        """Start or resume the countdown."""
        with self._lock:
            if self._state in (TimerState.RUNNING, TimerState.COMPLETED):
                return
            self._state = TimerState.RUNNING
            finished = self._remaining <= 0
            if finished:
                self._mark_completed()
            else:
                self._job = self.scheduler.every(self.TICK_INTERVAL, self._tick)
        if finished:
            self._finish()

    def pause(self) -> None:
        with self._lock:
            if self._state is not TimerState.RUNNING:
                return
            self._cancel_job()
            self._state = TimerState.PAUSED

    def reset(self) -> None:
        """Stop ticking and return to Idle with the original duration."""
        with self._lock:
            self._cancel_job()
            self._remaining = self.duration
            self._state = TimerState.IDLE

    def adjust(self, delta_seconds: int) -> None:
        """Add ``delta_seconds`` to the remaining time, never below zero."""
        with self._lock:
            self._remaining = max(0, self._remaining + int(delta_seconds))

    def set_duration(self, seconds: int) -> None:
        with self._lock:
            if self._state is TimerState.RUNNING:
                raise RuntimeError("cannot change duration while running")
            if seconds < 0:
                raise ValueError("duration must be non-negative")
            self.duration = int(seconds)
            self._remaining = self.duration
            self._state = TimerState.IDLE

    def _cancel_job(self) -> None:
        if self._job is not None:
            self._job.cancel()
            self._job = None

    def _tick(self) -> None:
        with self._lock:
            if self._state is not TimerState.RUNNING:
                return
            if self._remaining > 0:
                self._remaining -= 1
            finished = self._remaining <= 0
            if finished:
                self._mark_completed()
            warn = not finished and self._remaining <= self.warning_seconds
        if warn:
            self._best_effort(self.notifier.play_sound, Notifier.TICK_SOUND)
        elif finished:
            self._finish()

    def _mark_completed(self) -> None:
        self._cancel_job()
        self._remaining = 0
        self._state = TimerState.COMPLETED

    def _finish(self) -> None:
        # runs outside the lock so on_complete may call back into its owner
        self._best_effort(self.notifier.play_sound, Notifier.SOUNDS[self.timer_type])
        self._best_effort(
            self.notifier.notify,
            Notifier.TITLE,
            Notifier.MESSAGES[self.timer_type],
        )
        if self.on_complete is not None:
            self.on_complete()

    @staticmethod
    def _best_effort(func: Callable, *args) -> None:
        try:
            func(*args)
        except Exception:
            logger.warning("timer feedback %s failed", getattr(func, "__name__", func), exc_info=True)
