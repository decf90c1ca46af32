from __future__ import annotations

import math
from typing import Callable

from services.timers import RepeatingTimer, Scheduler, ms_to_seconds


def format_countdown(seconds: int) -> str:
    seconds = max(int(seconds), 0)
    return f"{seconds // 60}:{seconds % 60:02d}"


class Countdown:
    """Dialog countdown measured against a deadline on the scheduler clock.

    The one-second ticker only refreshes and detects the deadline, so a late
    or skipped tick never makes the displayed value lag the real time left.
    Closing stops and resets it. ``on_elapsed`` runs once at the deadline.
    """

    def __init__(
        self,
        *,
        duration_ms: int,
        scheduler: Scheduler,
        on_elapsed: Callable[[], None] | None = None,
        tick_ms: int = 1000,
        name: str = "countdown",
    ) -> None:
        self._scheduler = scheduler
        self._on_elapsed = on_elapsed
        self._ticker = RepeatingTimer(scheduler, tick_ms, self._tick, name=name)
        self._deadline: float | None = None
        self.duration_ms = duration_ms
        self.is_open = False

    @property
    def full_seconds(self) -> int:
        return self.duration_ms // 1000

    @property
    def remaining_seconds(self) -> int:
        if self._deadline is None:
            return self.full_seconds
        left = self._deadline - self._scheduler.time()
        # Round first so float drift on the clock does not add a second.
        return max(0, math.ceil(round(left, 3)))

    @property
    def display(self) -> str:
        return format_countdown(self.remaining_seconds)

    def open(self, duration_ms: int | None = None, deadline: float | None = None) -> None:
        """Start counting down.

        ``deadline`` pins the end to an absolute scheduler time, for callers
        whose countdown began before they were notified.
        """
        if self.is_open:
            return
        if duration_ms is not None:
            self.duration_ms = duration_ms
        if deadline is None:
            deadline = self._scheduler.time() + ms_to_seconds(self.duration_ms)
        self._deadline = deadline
        self.is_open = True
        self._ticker.start()

    def close(self) -> None:
        self._ticker.stop()
        self._deadline = None
        self.is_open = False

    def _tick(self) -> None:
        if self.remaining_seconds > 0:
            return
        self._ticker.stop()
        if self._on_elapsed is not None:
            self._on_elapsed()
