from __future__ import annotations
import logging
from typing import Callable, Optional

from db import NotificationRepository
from models import TimerType

logger = logging.getLogger(__name__)


class Notifier:
    """Sound and notification surface used by timers and sessions.

    Both channels are best-effort: callers wrap them and keep going when
    they fail.
    """

    TITLE = "Kettlebell Workout Timer"
    TICK_SOUND = "tick"
    SOUNDS = {
        TimerType.REST: "rest-complete",
        TimerType.EXERCISE: "exercise-transition",
        TimerType.WORKOUT: "workout-complete",
    }
    MESSAGES = {
        TimerType.REST: "Rest period complete! Ready for your next set.",
        TimerType.EXERCISE: "Exercise complete! Time for your next exercise.",
        TimerType.WORKOUT: "Workout complete! Great job!",
    }

    def __init__(
        self,
        repo: Optional[NotificationRepository] = None,
        sound_player: Optional[Callable[[str], None]] = None,
        enabled: bool = True,
    ) -> None:
        self.repo = repo
        self.sound_player = sound_player
        self.enabled = enabled

    def play_sound(self, name: str) -> None:
        if not self.enabled:
            return
        if self.sound_player is None:
            logger.debug("sound %s (no player configured)", name)
            return
        self.sound_player(name)

    def notify(self, title: str, body: str) -> None:
        if not self.enabled:
            return
        logger.info("%s: %s", title, body)
        if self.repo is not None:
            self.repo.add(title, body)
