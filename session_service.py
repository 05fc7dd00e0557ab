from __future__ import annotations
import datetime
import enum
import functools
import logging
import math
import threading
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from algorithms import MathTools
from countdown_timer import CountdownTimer
from db import SessionSnapshotRepository, WorkoutRepository
from models import (
    Exercise,
    Workout,
    WorkoutSet,
    TimerType,
    new_id,
    update_exercise,
    update_set,
    update_workout,
)
from notification_service import Notifier
from scheduler import ScheduledJob, Scheduler, ThreadScheduler
from settings_schema import SettingsSchema

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Base class for session engine errors."""


class SessionValidationError(SessionError, ValueError):
    """Rejected input; the session state is unchanged."""


class NothingToDoError(SessionError):
    """The requested step has already happened."""


class SessionStateError(SessionError):
    """Operation not allowed in the current state."""


class SessionState(str, enum.Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    RESTING = "resting"
    COMPLETED = "completed"


class WorkoutSession(BaseModel):
    """Snapshot of an in-progress workout execution."""

    id: str = Field(default_factory=new_id)
    workout_id: str
    start_time: datetime.datetime
    current_exercise_index: int = Field(0, ge=0)
    current_set_index: int = Field(0, ge=0)
    current_set_started_at: Optional[datetime.datetime] = None
    is_paused: bool = False
    is_resting: bool = False
    rest_remaining: Optional[int] = Field(None, ge=0)
    total_rest_time: int = Field(0, ge=0)
    completed_sets: List[WorkoutSet] = Field(default_factory=list)
    notes: str = ""


def snapshot_key(workout_id: str) -> str:
    return f"workout_session_{workout_id}"


def merge_completed_sets(workout: Workout, completed_sets: List[WorkoutSet]) -> Workout:
    """Return ``workout`` with recorded sets replacing their planned versions."""
    by_id: Dict[str, WorkoutSet] = {s.id: s for s in completed_sets}
    exercises: list[Exercise] = []
    for ex in workout.exercises:
        sets = [by_id.get(s.id, s) for s in ex.sets]
        exercises.append(update_exercise(ex, sets=sets))
    return update_workout(workout, exercises=exercises)


class WorkoutSessionEngine:
    """Drive one workout instance from its first set to completion.

    The engine tracks a cursor of (exercise index, set index), runs at most
    one rest timer, and writes a recoverable snapshot plus the merged
    workout record after every change and on a fixed auto-save interval.
    Persistence failures are logged and never undo an in-memory step.
    """

    def __init__(
        self,
        workouts: WorkoutRepository,
        snapshots: SessionSnapshotRepository,
        scheduler: Optional[Scheduler] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
        settings: Optional[SettingsSchema] = None,
    ) -> None:
        self.workouts = workouts
        self.snapshots = snapshots
        self.scheduler = scheduler or ThreadScheduler()
        self.notifier = notifier or Notifier()
        self.clock = clock
        self.settings = settings or SettingsSchema()
        self.workout: Optional[Workout] = None
        self.session: Optional[WorkoutSession] = None
        self.timer: Optional[CountdownTimer] = None
        self._state = SessionState.NOT_STARTED
        self._autosave_job: Optional[ScheduledJob] = None
        self._finalized = False
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def paused(self) -> bool:
        return self.session is not None and self.session.is_paused

    @property
    def current_exercise(self) -> Optional[Exercise]:
        if self.workout is None or self.session is None:
            return None
        idx = self.session.current_exercise_index
        if idx < len(self.workout.exercises):
            return self.workout.exercises[idx]
        return None

    @property
    def current_set(self) -> Optional[WorkoutSet]:
        exercise = self.current_exercise
        if exercise is None:
            return None
        idx = self.session.current_set_index
        return exercise.sets[idx] if idx < len(exercise.sets) else None

    @property
    def rest_remaining(self) -> int:
        return self.timer.remaining if self.timer is not None else 0

    def progress(self) -> dict[str, int]:
        """Return completed/total sets and current/total exercises."""
        if self.workout is None or self.session is None:
            return {"completed_sets": 0, "total_sets": 0, "current_exercise": 0, "total_exercises": 0}
        total_ex = len(self.workout.exercises)
        return {
            "completed_sets": sum(1 for s in self.session.completed_sets if s.completed),
            "total_sets": self.workout.total_sets,
            "current_exercise": min(self.session.current_exercise_index + 1, total_ex),
            "total_exercises": total_ex,
        }

    def elapsed_minutes(self) -> int:
        if self.session is None:
            return 0
        seconds = (self.clock() - self.session.start_time).total_seconds()
        return MathTools.round_half_up(max(0.0, seconds) / 60)

    def has_snapshot(self, workout_id: str) -> bool:
        try:
            return self.snapshots.get_item(snapshot_key(workout_id)) is not None
        except Exception:
            logger.warning("could not read snapshot for %s", workout_id, exc_info=True)
            return False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, workout: Workout) -> SessionState:
        """Begin or resume executing ``workout``."""
        with self._lock:
            if self._state in (SessionState.ACTIVE, SessionState.RESTING):
                raise SessionStateError("a session is already running")
            if workout.is_template:
                raise SessionStateError("templates must be cloned before execution")
            if workout.completed_at is not None:
                raise SessionStateError("workout is already completed")
            self._stop_timer()
            self.workout = workout
            self._finalized = False
            session = self._restore(workout)
            if session is None:
                now = self.clock()
                session = WorkoutSession(
                    workout_id=workout.id,
                    start_time=now,
                    current_set_started_at=now,
                )
                ex, st = self._normalize(0, 0)
                session.current_exercise_index = ex
                session.current_set_index = st
                logger.debug("new session %s for workout %s", session.id, workout.id)
            else:
                logger.info(
                    "resumed session %s for workout %s at (%d, %d)",
                    session.id,
                    workout.id,
                    session.current_exercise_index,
                    session.current_set_index,
                )
            self.session = session
            if self._at_end():
                self._state = SessionState.COMPLETED
            elif session.is_resting:
                # full rest length keeps pre-restart rest in total_rest_time
                self._begin_rest(self.current_set.rest_time, session.rest_remaining or 0)
            else:
                self._state = SessionState.ACTIVE
            if self._state is not SessionState.COMPLETED:
                self._start_autosave()
            self._persist()
            return self._state

    def start_by_id(self, workout_id: str) -> Optional[SessionState]:
        """Load ``workout_id`` from the store and start it.

        A missing workout discards any leftover snapshot and returns ``None``.
        """
        workout = self.workouts.get(workout_id)
        if workout is None:
            logger.warning("workout %s not found, discarding its snapshot", workout_id)
            self._discard_snapshot(workout_id)
            return None
        return self.start(workout)

    def complete_set(self, actual_reps: int, actual_weight: float) -> WorkoutSet:
        """Record the current set and move to rest, the next exercise or the end."""
        with self._lock:
            self._require_started()
            if self._state is SessionState.COMPLETED:
                raise NothingToDoError("all sets are already completed")
            if self._state is SessionState.RESTING:
                raise SessionStateError("finish or skip the rest period first")
            if self.session.is_paused:
                raise SessionStateError("session is paused")
            if isinstance(actual_reps, bool) or not isinstance(actual_reps, int) or actual_reps <= 0:
                raise SessionValidationError("actual_reps must be a positive whole number")
            if (
                isinstance(actual_weight, bool)
                or not isinstance(actual_weight, (int, float))
                or not math.isfinite(actual_weight)
                or actual_weight < 0
            ):
                raise SessionValidationError("actual_weight must be a finite, non-negative number")

            current = self.current_set
            now = self.clock()
            recorded = update_set(
                current,
                actual_reps=actual_reps,
                actual_weight=float(actual_weight),
                completed=True,
                start_time=current.start_time or self.session.current_set_started_at,
                end_time=now,
            )
            self.session.completed_sets = [
                s for s in self.session.completed_sets if s.id != current.id
            ] + [recorded]

            exercise = self.current_exercise
            if self.session.current_set_index < len(exercise.sets) - 1:
                self._begin_rest(current.rest_time)
            else:
                self._move_to(self.session.current_exercise_index + 1, 0)
            self._persist()
            return recorded

    def advance_after_rest(self) -> SessionState:
        """Leave the rest period after the timer ran out."""
        with self._lock:
            self._finish_rest()
            return self._state

    def skip_rest(self) -> SessionState:
        """Cut the rest period short and go to the next set."""
        with self._lock:
            self._finish_rest()
            return self._state

    def adjust_rest(self, delta_seconds: int) -> int:
        with self._lock:
            if self._state is not SessionState.RESTING or self.timer is None:
                raise SessionStateError("no rest period in progress")
            self.timer.adjust(delta_seconds)
            self._persist()
            return self.timer.remaining

    def pause(self) -> None:
        with self._lock:
            if self._state not in (SessionState.ACTIVE, SessionState.RESTING):
                raise SessionStateError("nothing to pause")
            if self.session.is_paused:
                return
            self.session.is_paused = True
            if self.timer is not None:
                self.timer.pause()
            self._persist()

    def resume(self) -> None:
        with self._lock:
            if self._state not in (SessionState.ACTIVE, SessionState.RESTING):
                raise SessionStateError("nothing to resume")
            if not self.session.is_paused:
                return
            self.session.is_paused = False
            self._persist()
            if self._state is SessionState.RESTING and self.timer is not None:
                self.timer.start()

    def update_notes(self, notes: str) -> None:
        with self._lock:
            self._require_started()
            self.session.notes = notes
            self._persist()

    def complete(self) -> Workout:
        """Finalize the workout once every set has been performed."""
        with self._lock:
            if self._finalized:
                raise NothingToDoError("workout already finalized")
            self._require_started()
            if self._state is not SessionState.COMPLETED or not self._at_end():
                raise SessionStateError("workout still has sets remaining")
            end = self.clock()
            duration = self.elapsed_minutes()
            final = update_workout(
                merge_completed_sets(self.workout, self.session.completed_sets),
                duration=duration,
                completed_at=end,
                notes=self.session.notes,
                updated_at=end,
            )
            try:
                self.workouts.put(final)
            except Exception:
                logger.error("failed to save completed workout %s", final.id, exc_info=True)
                raise
            self._finalized = True
            self._cancel_autosave()
            self._stop_timer()
            self._discard_snapshot(final.id)
            try:
                self.notifier.play_sound(Notifier.SOUNDS[TimerType.WORKOUT])
                self.notifier.notify(Notifier.TITLE, Notifier.MESSAGES[TimerType.WORKOUT])
            except Exception:
                logger.warning("workout completion feedback failed", exc_info=True)
            logger.info("workout %s completed in %d min", final.id, duration)
            self.workout = final
            return final

    def exit(self, discard: bool = False) -> None:
        """Stop executing without completing.

        The snapshot stays in place for a later resume unless ``discard``.
        """
        with self._lock:
            if self._state is SessionState.NOT_STARTED:
                return
            self._cancel_autosave()
            if self.timer is not None and self.session is not None:
                self.timer.pause()
            if discard:
                if self.workout is not None:
                    self._discard_snapshot(self.workout.id)
            elif not self._finalized:
                self._persist()
            self._stop_timer()
            self._state = SessionState.NOT_STARTED
            self.workout = None
            self.session = None
            self._finalized = False

    # ------------------------------------------------------------------
    # Cursor helpers
    # ------------------------------------------------------------------

    def _require_started(self) -> None:
        if self._state is SessionState.NOT_STARTED or self.session is None:
            raise SessionStateError("session has not been started")

    def _normalize(self, exercise_index: int, set_index: int) -> tuple[int, int]:
        """Skip exercises without sets so the cursor lands on a real set or the end."""
        exercises = self.workout.exercises
        while exercise_index < len(exercises) and set_index >= len(exercises[exercise_index].sets):
            exercise_index += 1
            set_index = 0
        return exercise_index, set_index

    def _at_end(self) -> bool:
        return (
            self.session.current_exercise_index >= len(self.workout.exercises)
            and self.session.current_set_index == 0
        )

    def _cursor_valid(self, exercise_index: int, set_index: int) -> bool:
        exercises = self.workout.exercises
        if exercise_index == len(exercises):
            return set_index == 0
        return 0 <= exercise_index < len(exercises) and 0 <= set_index < len(
            exercises[exercise_index].sets
        )

    def _move_to(self, exercise_index: int, set_index: int) -> None:
        ex, st = self._normalize(exercise_index, set_index)
        self.session.current_exercise_index = ex
        self.session.current_set_index = st
        self.session.current_set_started_at = self.clock()
        if self._at_end():
            self._state = SessionState.COMPLETED
            self._cancel_autosave()
            logger.debug("all sets of workout %s done", self.workout.id)
        else:
            self._state = SessionState.ACTIVE

    # ------------------------------------------------------------------
    # Rest timer
    # ------------------------------------------------------------------

    def _begin_rest(self, seconds: int, remaining: Optional[int] = None) -> None:
        self._stop_timer()
        timer = CountdownTimer(
            seconds,
            TimerType.REST,
            scheduler=self.scheduler,
            notifier=self.notifier,
            warning_seconds=self.settings.timer_warning_seconds,
        )
        if remaining is not None:
            timer.adjust(remaining - seconds)
        timer.on_complete = functools.partial(self._on_rest_timer_done, timer)
        self.timer = timer
        self.session.is_resting = True
        self.session.rest_remaining = timer.remaining
        self._state = SessionState.RESTING
        if not self.session.is_paused:
            timer.start()

    def _on_rest_timer_done(self, timer: CountdownTimer) -> None:
        with self._lock:
            if self.timer is not timer or self._state is not SessionState.RESTING:
                return
            self.advance_after_rest()

    def _finish_rest(self) -> None:
        self._require_started()
        if self._state is not SessionState.RESTING:
            raise NothingToDoError("no rest period in progress")
        if self.timer is not None:
            self.session.total_rest_time += max(0, self.timer.duration - self.timer.remaining)
        self._stop_timer()
        self.session.is_resting = False
        self.session.rest_remaining = None
        self._move_to(self.session.current_exercise_index, self.session.current_set_index + 1)
        self._persist()

    def _stop_timer(self) -> None:
        if self.timer is not None:
            self.timer.reset()
            self.timer = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _start_autosave(self) -> None:
        self._cancel_autosave()
        self._autosave_job = self.scheduler.every(
            self.settings.autosave_interval, self._autosave
        )

    def _cancel_autosave(self) -> None:
        if self._autosave_job is not None:
            self._autosave_job.cancel()
            self._autosave_job = None

    def _autosave(self) -> None:
        with self._lock:
            if self.session is not None and not self._finalized:
                self._persist()

    def _persist(self) -> None:
        """Write the snapshot and push merged sets into the stored workout."""
        if self.session is None or self.workout is None or self._finalized:
            return
        if self.timer is not None and self.session.is_resting:
            self.session.rest_remaining = self.timer.remaining
        try:
            self.snapshots.set_item(
                snapshot_key(self.workout.id), self.session.model_dump_json()
            )
        except Exception:
            logger.warning("snapshot write failed for %s", self.workout.id, exc_info=True)
        try:
            merged = update_workout(
                merge_completed_sets(self.workout, self.session.completed_sets),
                notes=self.session.notes,
                updated_at=self.clock(),
            )
            self.workouts.put(merged)
        except Exception:
            logger.warning("auto-save failed for %s", self.workout.id, exc_info=True)

    def _discard_snapshot(self, workout_id: str) -> None:
        try:
            self.snapshots.remove_item(snapshot_key(workout_id))
        except Exception:
            logger.warning("could not remove snapshot for %s", workout_id, exc_info=True)

    def _restore(self, workout: Workout) -> Optional[WorkoutSession]:
        """Return the stored session for ``workout`` if it is usable."""
        try:
            raw = self.snapshots.get_item(snapshot_key(workout.id))
        except Exception:
            logger.warning("could not read snapshot for %s", workout.id, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            session = WorkoutSession.model_validate_json(raw)
        except ValueError:
            logger.warning("discarding unreadable snapshot for %s", workout.id)
            self._discard_snapshot(workout.id)
            return None
        set_ids = {s.id for ex in workout.exercises for s in ex.sets}
        problem = None
        if session.workout_id != workout.id:
            problem = "belongs to another workout"
        elif not self._cursor_valid(session.current_exercise_index, session.current_set_index):
            problem = "cursor out of range"
        elif any(s.id not in set_ids for s in session.completed_sets):
            problem = "references unknown sets"
        elif session.is_resting and session.current_exercise_index >= len(workout.exercises):
            problem = "resting past the last set"
        if problem:
            logger.warning("discarding snapshot for %s: %s", workout.id, problem)
            self._discard_snapshot(workout.id)
            return None
        return session
