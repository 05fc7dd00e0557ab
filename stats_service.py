from __future__ import annotations
import datetime
import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from algorithms import MathTools
from db import ExerciseTypeRepository, WorkoutRepository
from models import (
    DashboardStats,
    ExerciseType,
    PersonalRecord,
    RecordType,
    WeeklyStats,
    Workout,
)
from settings_schema import SettingsSchema

logger = logging.getLogger(__name__)

TIME_RANGES: Dict[str, Optional[int]] = {"7d": 7, "30d": 30, "90d": 90, "all": None}
PLATEAU_METRICS = ("total_volume", "workout_count", "average_duration")


def workout_volume(workout: Workout) -> float:
    return MathTools.volume(
        (s.effective_reps, s.effective_weight)
        for ex in workout.exercises
        for s in ex.sets
    )


def total_volume(workouts: Iterable[Workout]) -> float:
    """Sum of weight times reps over every set, actual values preferred."""
    return sum(workout_volume(w) for w in workouts)


def average_duration(workouts: Sequence[Workout]) -> float:
    if not workouts:
        return 0.0
    return sum(w.duration for w in workouts) / len(workouts)


def _workout_days(workouts: Iterable[Workout]) -> set[datetime.date]:
    return {w.date.date() for w in workouts}


def current_streak(
    workouts: Iterable[Workout], today: Optional[datetime.date] = None
) -> int:
    """Return consecutive workout days ending today or yesterday."""
    days = _workout_days(workouts)
    if not days:
        return 0
    today = today or datetime.date.today()
    if (today - max(days)).days > 1:
        return 0
    day = today if today in days else today - datetime.timedelta(days=1)
    streak = 0
    while day in days:
        streak += 1
        day -= datetime.timedelta(days=1)
    return streak


def best_streak(workouts: Iterable[Workout]) -> int:
    """Return the longest run of consecutive workout days."""
    days = sorted(_workout_days(workouts))
    if not days:
        return 0
    record = current = 1
    for prev, nxt in zip(days, days[1:]):
        if (nxt - prev).days == 1:
            current += 1
        else:
            record = max(record, current)
            current = 1
    return max(record, current)


def personal_records(
    workouts: Iterable[Workout],
    exercise_types: Iterable[ExerciseType],
    limit: Optional[int] = 10,
) -> List[PersonalRecord]:
    """Return the best weight, reps and single-set volume per exercise type.

    Workouts are scanned oldest first and a record only moves on a strictly
    greater value, so ties keep the earliest occurrence. Exercises missing
    from the catalog are ignored. The combined list is sorted by value and
    cut to ``limit`` entries.
    """
    catalog = {et.id: et for et in exercise_types}
    best: Dict[tuple[str, RecordType], PersonalRecord] = {}
    for workout in sorted(workouts, key=lambda w: w.date):
        for exercise in workout.exercises:
            et = catalog.get(exercise.exercise_type)
            if et is None:
                continue
            for s in exercise.sets:
                values = {
                    RecordType.MAX_WEIGHT: s.effective_weight,
                    RecordType.MAX_REPS: s.effective_reps,
                    RecordType.MAX_VOLUME: s.volume,
                }
                for kind, value in values.items():
                    current = best.get((et.id, kind))
                    if current is None or value > current.value:
                        best[(et.id, kind)] = PersonalRecord(
                            exercise_id=et.id,
                            exercise_name=et.name,
                            type=kind,
                            value=value,
                            date=workout.date,
                            workout_id=workout.id,
                        )
    records = sorted(best.values(), key=lambda r: r.value, reverse=True)
    return records if limit is None else records[:limit]


def week_start(day: datetime.date, first_weekday: int = 0) -> datetime.date:
    """Return the first day of the week containing ``day``.

    ``first_weekday`` uses :meth:`datetime.date.weekday` numbering.
    """
    offset = (day.weekday() - first_weekday) % 7
    return day - datetime.timedelta(days=offset)


def _short_date(day: datetime.date) -> str:
    return f"{day.strftime('%b')} {day.day}"


def week_label(start: datetime.date) -> str:
    end = start + datetime.timedelta(days=6)
    return f"{_short_date(start)} - {_short_date(end)}"


def weekly_progress(
    workouts: Iterable[Workout], first_weekday: int = 0
) -> List[WeeklyStats]:
    """Bucket workouts into weeks, oldest week first."""
    buckets: Dict[datetime.date, dict] = {}
    for w in workouts:
        start = week_start(w.date.date(), first_weekday)
        bucket = buckets.setdefault(start, {"volume": 0.0, "count": 0, "duration": 0})
        bucket["volume"] += workout_volume(w)
        bucket["count"] += 1
        bucket["duration"] += w.duration
    return [
        WeeklyStats(
            week=week_label(start),
            total_volume=data["volume"],
            workout_count=data["count"],
            average_duration=data["duration"] / data["count"] if data["count"] else 0.0,
            date=start,
        )
        for start, data in sorted(buckets.items())
    ]


def one_rep_max(weight: float, reps: int) -> int | float:
    """Brzycki estimate rounded to whole units; a single rep is returned as is."""
    if reps == 1:
        return weight
    return MathTools.round_half_up(MathTools.brzycki_1rm(weight, reps))


def find_plateaus(
    weekly_stats: Sequence[WeeklyStats],
    metric: str,
    window: int = 4,
    threshold: float = 0.05,
) -> bool:
    """Return ``True`` when the last ``window`` weeks of ``metric`` barely move."""
    if metric not in PLATEAU_METRICS:
        raise ValueError(f"unknown metric: {metric}")
    if len(weekly_stats) < window:
        return False
    values = [float(getattr(w, metric)) for w in weekly_stats[-window:]]
    return MathTools.coefficient_of_variation(values) < threshold


def filter_workouts(
    workouts: Iterable[Workout],
    time_range: str = "all",
    now: Optional[datetime.datetime] = None,
) -> List[Workout]:
    """Return completed, non-template workouts inside ``time_range``."""
    if time_range not in TIME_RANGES:
        raise ValueError(f"unknown time range: {time_range}")
    days = TIME_RANGES[time_range]
    cutoff = None
    if days is not None:
        cutoff = (now or datetime.datetime.now()) - datetime.timedelta(days=days)
    return [
        w
        for w in workouts
        if not w.is_template
        and w.completed_at is not None
        and (cutoff is None or w.date >= cutoff)
    ]


def calculate_dashboard_stats(
    workouts: Sequence[Workout],
    exercise_types: Iterable[ExerciseType],
    today: Optional[datetime.date] = None,
    settings: Optional[SettingsSchema] = None,
) -> DashboardStats:
    settings = settings or SettingsSchema()
    recent = sorted(workouts, key=lambda w: w.date, reverse=True)
    return DashboardStats(
        total_workouts=len(workouts),
        total_volume=total_volume(workouts),
        average_workout_duration=average_duration(workouts),
        current_streak=current_streak(workouts, today),
        personal_records=personal_records(
            workouts, exercise_types, settings.personal_record_limit
        ),
        recent_workouts=recent[: settings.recent_workout_limit],
        weekly_progress=weekly_progress(workouts, settings.week_start),
    )


class StatisticsService:
    """Compute workout statistics for a user from stored workouts."""

    def __init__(
        self,
        workout_repo: WorkoutRepository,
        type_repo: ExerciseTypeRepository,
        settings: Optional[SettingsSchema] = None,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
    ) -> None:
        self.workouts = workout_repo
        self.exercise_types = type_repo
        self.settings = settings or SettingsSchema()
        self.clock = clock

    def _history(self, user_id: str, time_range: str = "all") -> List[Workout]:
        now = self.clock()
        rows = self.workouts.fetch_completed(user_id)
        result = filter_workouts(rows, time_range, now)
        logger.debug("%d of %d workouts in range %s", len(result), len(rows), time_range)
        return result

    def dashboard(self, user_id: str, time_range: str = "all") -> DashboardStats:
        """Return the dashboard bundle for ``time_range``."""
        return calculate_dashboard_stats(
            self._history(user_id, time_range),
            self.exercise_types.fetch_all_types(),
            today=self.clock().date(),
            settings=self.settings,
        )

    def overview(self, user_id: str, time_range: str = "all") -> Dict[str, float]:
        history = self._history(user_id, time_range)
        return {
            "workouts": len(history),
            "volume": round(total_volume(history), 2),
            "avg_duration": round(average_duration(history), 2),
        }

    def streaks(self, user_id: str) -> Dict[str, int]:
        """Return current and record workout streak lengths."""
        history = self._history(user_id)
        return {
            "current": current_streak(history, self.clock().date()),
            "record": best_streak(history),
        }

    def personal_records(
        self, user_id: str, time_range: str = "all", limit: Optional[int] = None
    ) -> List[PersonalRecord]:
        return personal_records(
            self._history(user_id, time_range),
            self.exercise_types.fetch_all_types(),
            limit or self.settings.personal_record_limit,
        )

    def weekly_progress(self, user_id: str, time_range: str = "all") -> List[WeeklyStats]:
        return weekly_progress(self._history(user_id, time_range), self.settings.week_start)

    def plateaus(self, user_id: str, time_range: str = "all") -> Dict[str, bool]:
        """Return a plateau flag for every weekly metric."""
        weeks = self.weekly_progress(user_id, time_range)
        return {
            metric: find_plateaus(
                weeks,
                metric,
                window=self.settings.plateau_window,
                threshold=self.settings.plateau_threshold,
            )
            for metric in PLATEAU_METRICS
        }

    def estimated_maxes(self, user_id: str, time_range: str = "all") -> Dict[str, int | float]:
        """Return the best Brzycki estimate per exercise type id."""
        best: Dict[str, int | float] = {}
        for w in self._history(user_id, time_range):
            for ex in w.exercises:
                for s in ex.sets:
                    if s.effective_reps <= 0:
                        continue
                    est = one_rep_max(s.effective_weight, s.effective_reps)
                    if est > best.get(ex.exercise_type, 0):
                        best[ex.exercise_type] = est
        return best
