from __future__ import annotations

from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """The subset of ``asyncio.AbstractEventLoop`` the monitors rely on."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...

    def time(self) -> float: ...


def ms_to_seconds(value_ms: int) -> float:
    return max(int(value_ms), 0) / 1000.0


class TimerSlot:
    """Holds at most one pending single-shot timer.

    Arming always cancels the previous handle first, so two live timers for
    the same purpose can never coexist.
    """

    def __init__(self, scheduler: Scheduler, name: str = "timer") -> None:
        self._scheduler = scheduler
        self._handle: TimerHandle | None = None
        self._generation = 0
        self.name = name

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, delay_ms: int, callback: Callable[[], None]) -> None:
        self.cancel()
        generation = self._generation

        def _fire() -> None:
            # A handle cancelled after dispatch was queued must stay silent.
            if generation != self._generation:
                return
            self._handle = None
            callback()

        self._handle = self._scheduler.call_later(ms_to_seconds(delay_ms), _fire)

    def cancel(self) -> None:
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class RepeatingTimer:
    """Fires ``callback`` every ``interval_ms`` until stopped."""

    def __init__(self, scheduler: Scheduler, interval_ms: int, callback: Callable[[], None], name: str = "interval") -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive.")
        self._slot = TimerSlot(scheduler, name=name)
        self._interval_ms = interval_ms
        self._callback = callback
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True
        self._slot.arm(self._interval_ms, self._tick)

    def stop(self) -> None:
        self._running = False
        self._slot.cancel()

    def _tick(self) -> None:
        if not self._running:
            return
        self._slot.arm(self._interval_ms, self._tick)
        self._callback()
