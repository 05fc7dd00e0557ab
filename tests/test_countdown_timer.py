import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from countdown_timer import CountdownTimer, TimerState
from models import TimerType
from notification_service import Notifier
from scheduler import ManualScheduler


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        super().__init__()
        self.sounds: list[str] = []
        self.notes: list[tuple[str, str]] = []

    def play_sound(self, name: str) -> None:
        self.sounds.append(name)

    def notify(self, title: str, body: str) -> None:
        self.notes.append((title, body))


class BrokenNotifier(Notifier):
    def play_sound(self, name: str) -> None:
        raise OSError("no audio device")

    def notify(self, title: str, body: str) -> None:
        raise RuntimeError("notifications blocked")


class CountdownTimerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.sched = ManualScheduler()
        self.notifier = RecordingNotifier()
        self.completions: list[int] = []

    def _timer(self, seconds: int, **kwargs) -> CountdownTimer:
        kwargs.setdefault("notifier", self.notifier)
        return CountdownTimer(
            seconds,
            on_complete=lambda: self.completions.append(1),
            scheduler=self.sched,
            **kwargs,
        )

    def test_completes_once_after_duration(self) -> None:
        timer = self._timer(12)
        timer.start()
        self.assertTrue(timer.running)
        self.sched.advance(11)
        self.assertEqual(timer.remaining, 1)
        self.assertEqual(self.completions, [])
        self.sched.advance(1)
        self.assertEqual(timer.remaining, 0)
        self.assertTrue(timer.completed)
        self.sched.advance(10)
        self.assertEqual(self.completions, [1])
        self.assertEqual(self.sched.active_jobs, 0)

    def test_completion_feedback_by_type(self) -> None:
        timer = self._timer(1, timer_type=TimerType.WORKOUT)
        timer.start()
        self.sched.advance(1)
        self.assertEqual(self.notifier.sounds, ["workout-complete"])
        self.assertEqual(
            self.notifier.notes,
            [(Notifier.TITLE, Notifier.MESSAGES[TimerType.WORKOUT])],
        )

    def test_tick_sound_in_warning_window(self) -> None:
        timer = self._timer(12)
        timer.start()
        self.sched.advance(1)
        self.assertEqual(self.notifier.sounds, [])
        self.sched.advance(1)
        self.assertEqual(self.notifier.sounds, [Notifier.TICK_SOUND])
        self.sched.advance(10)
        self.assertEqual(self.notifier.sounds.count(Notifier.TICK_SOUND), 10)
        self.assertEqual(self.notifier.sounds[-1], "rest-complete")

    def test_adjust_clamps_to_zero(self) -> None:
        timer = self._timer(12)
        timer.start()
        self.sched.advance(9)
        self.assertEqual(timer.remaining, 3)
        timer.pause()
        timer.adjust(-5)
        self.assertEqual(timer.remaining, 0)
        timer.adjust(30)
        self.assertEqual(timer.remaining, 30)

    def test_adjust_while_running_shows_on_next_tick(self) -> None:
        timer = self._timer(10)
        timer.start()
        self.sched.advance(2)
        timer.adjust(5)
        self.sched.advance(1)
        self.assertEqual(timer.remaining, 12)

    def test_pause_stops_ticking(self) -> None:
        timer = self._timer(10)
        timer.start()
        self.sched.advance(3)
        timer.pause()
        self.assertTrue(timer.paused)
        self.sched.advance(30)
        self.assertEqual(timer.remaining, 7)
        timer.start()
        self.sched.advance(7)
        self.assertEqual(self.completions, [1])

    def test_reset_restores_duration(self) -> None:
        timer = self._timer(10)
        timer.start()
        self.sched.advance(4)
        timer.reset()
        self.assertEqual(timer.state, TimerState.IDLE)
        self.assertEqual(timer.remaining, 10)
        self.sched.advance(20)
        self.assertEqual(timer.remaining, 10)
        self.assertEqual(self.completions, [])

    def test_start_at_zero_completes_immediately(self) -> None:
        timer = self._timer(5)
        timer.adjust(-10)
        timer.start()
        self.assertTrue(timer.completed)
        self.assertEqual(self.completions, [1])
        timer.start()
        self.assertEqual(self.completions, [1])

    def test_failing_feedback_still_completes(self) -> None:
        timer = self._timer(2, notifier=BrokenNotifier())
        timer.start()
        with self.assertLogs("countdown_timer", level="WARNING"):
            self.sched.advance(2)
        self.assertEqual(self.completions, [1])

    def test_set_duration(self) -> None:
        timer = self._timer(10)
        timer.set_duration(90)
        self.assertEqual(timer.remaining, 90)
        timer.start()
        with self.assertRaises(RuntimeError):
            timer.set_duration(30)
        with self.assertRaises(ValueError):
            CountdownTimer(-1, scheduler=self.sched)

    def test_progress_and_format(self) -> None:
        timer = self._timer(60)
        timer.start()
        self.sched.advance(15)
        self.assertAlmostEqual(timer.progress, 25.0)
        self.assertEqual(CountdownTimer.format_time(95), "1:35")
        self.assertEqual(CountdownTimer.format_time(0), "0:00")


if __name__ == "__main__":
    unittest.main()
