import datetime
import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import GoalRepository
from goal_service import GoalService, format_goal_value, goal_progress, measure_goal
from models import Exercise, Goal, GoalType, Workout, WorkoutSet, update_goal
from settings_schema import SettingsSchema


def finished(day: datetime.date, reps: int, weight: float, duration: int = 30) -> Workout:
    return Workout(
        user_id="user1",
        date=datetime.datetime.combine(day, datetime.time(7, 0)),
        duration=duration,
        completed_at=datetime.datetime.combine(day, datetime.time(8, 0)),
        exercises=[
            Exercise(
                exercise_type="military-press",
                sets=[
                    WorkoutSet(
                        target_reps=reps,
                        target_weight=weight,
                        actual_reps=reps,
                        actual_weight=weight,
                        completed=True,
                    )
                ],
            )
        ],
    )


class GoalServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_goal_service.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        self.service = GoalService(GoalRepository(self.db_path))
        self.deadline = datetime.date(2024, 12, 31)

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def test_progress_percentage(self) -> None:
        goal = self.service.create("user1", GoalType.REPS, "100 swings", 100, self.deadline)
        self.assertEqual(goal_progress(goal), 0)
        self.assertEqual(goal_progress(update_goal(goal, current_value=33.6)), 34)
        self.assertEqual(goal_progress(update_goal(goal, current_value=250)), 100)

    def test_update_progress_completes(self) -> None:
        goal = self.service.create("user1", "weight", "Press the 24", 24, self.deadline, "military-press")
        updated = self.service.update_progress(goal.id, 20)
        self.assertFalse(updated.is_completed)
        updated = self.service.update_progress(goal.id, 24)
        self.assertTrue(updated.is_completed)
        self.assertEqual(self.service.list("user1", completed=True), [updated])

    def test_update_progress_errors(self) -> None:
        with self.assertRaises(ValueError):
            self.service.update_progress("missing", 1)
        goal = self.service.create("user1", "reps", "Reps", 10, self.deadline)
        with self.assertRaises(ValueError):
            self.service.update_progress(goal.id, -1)

    def test_format(self) -> None:
        goal = Goal(
            user_id="user1",
            type="frequency",
            target_value=4,
            current_value=2,
            target_date=self.deadline,
            title="Train often",
        )
        self.assertEqual(format_goal_value(goal), "2/4 per week")
        weight = update_goal(goal, type="weight", current_value=20, target_value=24)
        self.assertEqual(format_goal_value(weight, "lb"), "20/24 lb")

    def test_measure_goal(self) -> None:
        today = datetime.date(2024, 5, 15)
        history = [
            finished(datetime.date(2024, 5, 14), 5, 20, duration=40),
            finished(datetime.date(2024, 5, 15), 8, 16, duration=25),
            finished(datetime.date(2024, 5, 6), 3, 24, duration=50),
        ]
        base = dict(user_id="user1", target_value=1, target_date=self.deadline, title="g")
        weight = Goal(type="weight", exercise_id="military-press", **base)
        reps = Goal(type="reps", exercise_id="military-press", **base)
        other = Goal(type="weight", exercise_id="kb-swing", **base)
        freq = Goal(type="frequency", **base)
        duration = Goal(type="duration", **base)
        self.assertEqual(measure_goal(weight, history, today), 24)
        self.assertEqual(measure_goal(reps, history, today), 8)
        self.assertEqual(measure_goal(other, history, today), 0)
        self.assertEqual(measure_goal(freq, history, today), 2)
        self.assertEqual(measure_goal(duration, history, today), 50)

    def test_refresh_uses_configured_week_start(self) -> None:
        history = [
            finished(datetime.date(2024, 5, 12), 5, 20),
            finished(datetime.date(2024, 5, 13), 5, 20),
        ]
        today = datetime.date(2024, 5, 15)
        monday = self.service.create("user1", "frequency", "Twice a week", 2, self.deadline)
        self.assertEqual(self.service.refresh("user1", history, today)[0].current_value, 1)
        sunday_service = GoalService(self.service.repo, SettingsSchema(week_start=6))
        refreshed = sunday_service.refresh("user1", history, today)
        self.assertEqual(refreshed[0].id, monday.id)
        self.assertEqual(refreshed[0].current_value, 2)
        self.assertTrue(refreshed[0].is_completed)

    def test_refresh(self) -> None:
        goal = self.service.create("user1", "weight", "Press 20", 20, self.deadline, "military-press")
        refreshed = self.service.refresh(
            "user1", [finished(datetime.date(2024, 5, 14), 5, 20)], datetime.date(2024, 5, 15)
        )
        self.assertEqual(len(refreshed), 1)
        self.assertTrue(refreshed[0].is_completed)
        self.assertEqual(self.service.list("user1", completed=False), [])
        self.service.delete(goal.id)
        self.assertEqual(self.service.list("user1"), [])


if __name__ == "__main__":
    unittest.main()
