from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Callable

from schemas.security import DEFAULT_SECURITY_CONFIG, SecurityConfig
from services.activity_source import ActivitySource
from services.business_clock import now_in_business_tz
from services.timeout_policy import TimeoutPolicy, resolve_policy
from services.timers import Scheduler, TimerSlot


LOGGER = logging.getLogger("session_guard.idle")


class IdlePhase(str, Enum):
    ACTIVE = "active"
    WARNING_SHOWN = "warning_shown"
    EXPIRED = "expired"


class IdleTimerEngine:
    """Warning/idle timer pair that restarts on every activity signal.

    Expiry is measured from the last arm, not from the moment the warning was
    shown: both timers run independently once armed.
    """

    def __init__(
        self,
        *,
        on_warning: Callable[[], None],
        on_idle: Callable[[], None],
        scheduler: Scheduler,
        clock: Callable[[], datetime] = now_in_business_tz,
        activity_source: ActivitySource | None = None,
        on_active: Callable[[], None] | None = None,
        config: SecurityConfig = DEFAULT_SECURITY_CONFIG,
        enabled: bool = True,
    ) -> None:
        self._on_warning = on_warning
        self._on_idle = on_idle
        self._on_active = on_active
        self._scheduler = scheduler
        self._clock = clock
        self._activity_source = activity_source
        self._config = config
        self._warning_timer = TimerSlot(scheduler, name="idle-warning")
        self._idle_timer = TimerSlot(scheduler, name="idle-expiry")
        self._unsubscribe: Callable[[], None] | None = None
        self._enabled = False
        self._disposed = False
        self.phase = IdlePhase.ACTIVE
        self.policy: TimeoutPolicy | None = None
        self.armed_at: float | None = None
        if enabled:
            self.set_enabled(True)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def disposed(self) -> bool:
        return self._disposed

    def set_enabled(self, enabled: bool) -> None:
        if self._disposed or enabled == self._enabled:
            return
        self._enabled = enabled
        if enabled:
            if self._activity_source is not None:
                self._unsubscribe = self._activity_source.subscribe(self._handle_activity)
            self._arm()
            return
        self._release()
        self.phase = IdlePhase.ACTIVE

    def record_activity(self) -> None:
        if self._disposed or not self._enabled:
            return
        was_warning = self.phase is IdlePhase.WARNING_SHOWN
        self.phase = IdlePhase.ACTIVE
        self._arm()
        if was_warning and self._on_active is not None:
            self._on_active()

    def remaining_ms(self) -> int | None:
        """Milliseconds left before expiry in the current arm cycle."""
        if self.armed_at is None or self.policy is None or not self._enabled:
            return None
        elapsed_ms = (self._scheduler.time() - self.armed_at) * 1000.0
        return max(0, int(round(self.policy.idle_delay_ms - elapsed_ms)))

    def dispose(self) -> None:
        if self._disposed:
            return
        self._release()
        self._enabled = False
        self._disposed = True

    def __enter__(self) -> "IdleTimerEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    def _handle_activity(self, kind: str) -> None:
        self.record_activity()

    def _arm(self) -> None:
        self._warning_timer.cancel()
        self._idle_timer.cancel()
        self.policy = resolve_policy(self._clock(), self._config)
        self.armed_at = self._scheduler.time()
        self._warning_timer.arm(self.policy.warning_delay_ms, self._fire_warning)
        self._idle_timer.arm(self.policy.idle_delay_ms, self._fire_idle)

    def _release(self) -> None:
        self._warning_timer.cancel()
        self._idle_timer.cancel()
        self.armed_at = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _fire_warning(self) -> None:
        if self.phase is not IdlePhase.ACTIVE:
            return
        self.phase = IdlePhase.WARNING_SHOWN
        LOGGER.info("Idle warning shown after_hours=%s", bool(self.policy and self.policy.is_after_hours))
        self._on_warning()

    def _fire_idle(self) -> None:
        if self.phase is IdlePhase.EXPIRED:
            return
        self.phase = IdlePhase.EXPIRED
        self._warning_timer.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._enabled = False
        self._disposed = True
        LOGGER.info("Idle timeout reached; session expired")
        self._on_idle()
