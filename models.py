from __future__ import annotations
import datetime
import enum
import uuid
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime.datetime:
    return datetime.datetime.now()


class ExerciseCategory(str, enum.Enum):
    SWING = "swing"
    PRESS = "press"
    SQUAT = "squat"
    DEADLIFT = "deadlift"
    CARRY = "carry"
    OTHER = "other"


class TimerType(str, enum.Enum):
    REST = "rest"
    EXERCISE = "exercise"
    WORKOUT = "workout"


class RecordType(str, enum.Enum):
    MAX_WEIGHT = "maxWeight"
    MAX_REPS = "maxReps"
    MAX_VOLUME = "maxVolume"


class GoalType(str, enum.Enum):
    WEIGHT = "weight"
    REPS = "reps"
    FREQUENCY = "frequency"
    DURATION = "duration"


class ExerciseType(BaseModel):
    """Catalog entry shared read-only by the session and analytics code."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    name: str
    category: ExerciseCategory = ExerciseCategory.OTHER
    description: str = ""
    instructions: List[str] = Field(default_factory=list)
    muscles: List[str] = Field(default_factory=list)
    is_custom: bool = False
    created_by: Optional[str] = None


class WorkoutSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    exercise_id: str = ""
    target_reps: int = Field(0, ge=0)
    target_weight: float = Field(0.0, ge=0)
    actual_reps: Optional[int] = None
    actual_weight: Optional[float] = None
    rest_time: int = Field(60, ge=0)
    completed: bool = False
    order: int = 0
    start_time: Optional[datetime.datetime] = None
    end_time: Optional[datetime.datetime] = None

    @property
    def effective_reps(self) -> int:
        return self.actual_reps if self.actual_reps is not None else self.target_reps

    @property
    def effective_weight(self) -> float:
        if self.actual_weight is not None:
            return self.actual_weight
        return self.target_weight

    @property
    def volume(self) -> float:
        return self.effective_weight * self.effective_reps


class Exercise(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    workout_id: str = ""
    exercise_type: str
    sets: List[WorkoutSet] = Field(default_factory=list)
    notes: str = ""
    order: int = 0


class Workout(BaseModel):
    """Aggregate root persisted by :class:`db.WorkoutRepository`."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    date: datetime.datetime = Field(default_factory=_now)
    duration: int = Field(0, ge=0)
    notes: str = ""
    exercises: List[Exercise] = Field(default_factory=list)
    is_template: bool = False
    template_name: Optional[str] = None
    completed_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime = Field(default_factory=_now)
    updated_at: datetime.datetime = Field(default_factory=_now)

    @model_validator(mode="after")
    def _templates_never_complete(self) -> "Workout":
        if self.is_template and self.completed_at is not None:
            raise ValueError("template workouts cannot be completed")
        return self

    @property
    def total_sets(self) -> int:
        return sum(len(ex.sets) for ex in self.exercises)


class Goal(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    type: GoalType
    exercise_id: Optional[str] = None
    target_value: float = Field(gt=0)
    current_value: float = 0.0
    target_date: datetime.date
    is_completed: bool = False
    title: str
    description: str = ""
    created_at: datetime.datetime = Field(default_factory=_now)


def _update(model: BaseModel, changes: dict) -> BaseModel:
    cls = type(model)
    unknown = set(changes) - set(cls.model_fields)
    if unknown:
        raise ValueError(
            f"unknown {cls.__name__} field(s): {', '.join(sorted(unknown))}"
        )
    return cls.model_validate({**model.model_dump(), **changes})


def update_set(workout_set: WorkoutSet, **changes) -> WorkoutSet:
    """Return a copy of ``workout_set`` with ``changes`` applied."""
    return _update(workout_set, changes)


def update_exercise(exercise: Exercise, **changes) -> Exercise:
    """Return a copy of ``exercise`` with ``changes`` applied."""
    return _update(exercise, changes)


def update_workout(workout: Workout, **changes) -> Workout:
    """Return a copy of ``workout`` with ``changes`` applied."""
    return _update(workout, changes)


def update_goal(goal: Goal, **changes) -> Goal:
    return _update(goal, changes)


def clone_from_template(
    template: Workout,
    user_id: str | None = None,
    date: datetime.datetime | None = None,
) -> Workout:
    """Build a fresh, not yet started workout instance from ``template``."""
    if not template.is_template:
        raise ValueError("workout is not a template")
    now = _now()
    workout_id = new_id()
    exercises: list[Exercise] = []
    for ex in template.exercises:
        exercise_id = new_id()
        sets = [
            WorkoutSet(
                exercise_id=exercise_id,
                target_reps=s.target_reps,
                target_weight=s.target_weight,
                rest_time=s.rest_time,
                order=s.order,
            )
            for s in ex.sets
        ]
        exercises.append(
            Exercise(
                id=exercise_id,
                workout_id=workout_id,
                exercise_type=ex.exercise_type,
                sets=sets,
                notes=ex.notes,
                order=ex.order,
            )
        )
    return Workout(
        id=workout_id,
        user_id=user_id or template.user_id,
        date=date or now,
        notes=template.notes,
        exercises=exercises,
        is_template=False,
        template_name=template.template_name,
        created_at=now,
        updated_at=now,
    )


class PersonalRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    exercise_id: str
    exercise_name: str
    type: RecordType
    value: float
    date: datetime.datetime
    workout_id: str


class WeeklyStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    week: str
    total_volume: float
    workout_count: int
    average_duration: float
    date: datetime.date


class DashboardStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_workouts: int
    total_volume: float
    average_workout_duration: float
    current_streak: int
    personal_records: List[PersonalRecord]
    recent_workouts: List[Workout]
    weekly_progress: List[WeeklyStats]
