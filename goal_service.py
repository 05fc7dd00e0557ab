from __future__ import annotations
import datetime
import logging
from typing import Iterable, List, Optional

from algorithms import MathTools
from db import GoalRepository
from models import Goal, GoalType, Workout, update_goal
from settings_schema import SettingsSchema
from stats_service import week_start

logger = logging.getLogger(__name__)

_UNITS = {
    GoalType.WEIGHT: "kg",
    GoalType.REPS: "reps",
    GoalType.FREQUENCY: "per week",
    GoalType.DURATION: "min",
}


def goal_progress(goal: Goal) -> int:
    """Percentage of the target reached, capped at 100."""
    return min(100, MathTools.round_half_up(goal.current_value / goal.target_value * 100))


def format_goal_value(goal: Goal, weight_unit: str = "kg") -> str:
    unit = weight_unit if goal.type is GoalType.WEIGHT else _UNITS[goal.type]
    return f"{goal.current_value:g}/{goal.target_value:g} {unit}"


def measure_goal(
    goal: Goal,
    workouts: Iterable[Workout],
    today: Optional[datetime.date] = None,
    first_weekday: int = 0,
) -> float:
    """Derive the current value of ``goal`` from completed workouts.

    Weight and reps goals take the best single set of the goal's exercise,
    frequency counts workouts in the current week and duration is the
    longest workout.
    """
    workouts = list(workouts)
    if goal.type is GoalType.FREQUENCY:
        start = week_start(today or datetime.date.today(), first_weekday)
        return float(sum(1 for w in workouts if w.date.date() >= start))
    if goal.type is GoalType.DURATION:
        return float(max((w.duration for w in workouts), default=0))
    sets = [
        s
        for w in workouts
        for ex in w.exercises
        if goal.exercise_id is None or ex.exercise_type == goal.exercise_id
        for s in ex.sets
        if s.completed
    ]
    if goal.type is GoalType.WEIGHT:
        return float(max((s.effective_weight for s in sets), default=0.0))
    return float(max((s.effective_reps for s in sets), default=0))


class GoalService:
    """Create goals and keep their progress up to date."""

    def __init__(
        self, repo: GoalRepository, settings: Optional[SettingsSchema] = None
    ) -> None:
        self.repo = repo
        self.settings = settings or SettingsSchema()

    def create(
        self,
        user_id: str,
        goal_type: GoalType | str,
        title: str,
        target_value: float,
        target_date: datetime.date,
        exercise_id: Optional[str] = None,
        description: str = "",
    ) -> Goal:
        goal = Goal(
            user_id=user_id,
            type=goal_type,
            title=title,
            target_value=target_value,
            target_date=target_date,
            exercise_id=exercise_id,
            description=description,
        )
        self.repo.put(goal)
        return goal

    def list(self, user_id: str, completed: Optional[bool] = None) -> List[Goal]:
        return self.repo.fetch_by_owner(user_id, completed)

    def update_progress(self, goal_id: str, value: float) -> Goal:
        """Store ``value`` as the goal's current value and re-check completion."""
        goal = self.repo.get(goal_id)
        if goal is None:
            raise ValueError("goal not found")
        if value < 0:
            raise ValueError("progress value must not be negative")
        updated = update_goal(
            goal, current_value=value, is_completed=value >= goal.target_value
        )
        self.repo.put(updated)
        if updated.is_completed and not goal.is_completed:
            logger.info("goal %s reached", goal_id)
        return updated

    def refresh(
        self,
        user_id: str,
        workouts: Iterable[Workout],
        today: Optional[datetime.date] = None,
    ) -> List[Goal]:
        """Recompute every open goal of ``user_id`` from ``workouts``."""
        workouts = list(workouts)
        return [
            self.update_progress(
                goal.id,
                measure_goal(goal, workouts, today, self.settings.week_start),
            )
            for goal in self.list(user_id, completed=False)
        ]

    def delete(self, goal_id: str) -> None:
        self.repo.delete(goal_id)
