from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from schemas.security import DEFAULT_SECURITY_CONFIG, SecurityConfig
from services.activity_source import ActivitySource
from services.business_clock import now_in_business_tz
from services.countdown import Countdown
from services.idle_timer import IdlePhase, IdleTimerEngine
from services.session_health import Probe, SessionHealthMonitor, Spawner
from services.timers import Scheduler, ms_to_seconds
from services.version_store import VersionMarkerStore
from services.version_watch import VersionWatch


LOGGER = logging.getLogger("session_guard.lifecycle")


class SignOutReason(str, Enum):
    IDLE_TIMEOUT = "idle_timeout"
    SESSION_UNHEALTHY = "session_unhealthy"
    UPDATE_REQUIRED = "update_required"
    USER_LOGOUT = "user_logout"


class SessionLifecycleController:
    """Owns the idle timer, version watch and health monitor of one session.

    The UI layer reads ``show_idle_warning``/``show_update_dialog`` and the
    countdowns, and forwards activity via ``record_activity``. The controller
    decides when the session is signed out or reloaded; both external actions
    run at most once, after every monitor has been torn down.
    """

    def __init__(
        self,
        *,
        sign_out: Callable[[SignOutReason], None],
        reload: Callable[[], None],
        probe: Probe,
        current_version: str,
        version_store: VersionMarkerStore,
        scheduler: Scheduler,
        clock: Callable[[], datetime] = now_in_business_tz,
        activity_source: ActivitySource | None = None,
        config: SecurityConfig = DEFAULT_SECURITY_CONFIG,
        spawn: Spawner = asyncio.ensure_future,
        authenticated: bool = True,
    ) -> None:
        self._sign_out = sign_out
        self._reload = reload
        self._scheduler = scheduler
        self._config = config
        self.activity_source = activity_source or ActivitySource()
        self.ended_reason: SignOutReason | None = None
        self.authenticated = False
        self.show_idle_warning = False
        self.show_update_dialog = False
        self.last_activity_at: float | None = None

        self.idle = IdleTimerEngine(
            on_warning=self._handle_idle_warning,
            on_idle=self._handle_idle_expired,
            on_active=self._handle_idle_cleared,
            scheduler=scheduler,
            clock=clock,
            activity_source=self.activity_source,
            config=config,
            enabled=False,
        )
        self.version = VersionWatch(
            current_version=current_version,
            store=version_store,
            on_update_detected=self._handle_update_detected,
            scheduler=scheduler,
            config=config,
            enabled=False,
        )
        self.health = SessionHealthMonitor(
            probe=probe,
            scheduler=scheduler,
            config=config,
            on_unhealthy=self._handle_unhealthy,
            spawn=spawn,
            enabled=False,
        )
        self.idle_countdown = Countdown(
            duration_ms=config.IDLE_TIMEOUT_MS - config.IDLE_WARNING_MS,
            scheduler=scheduler,
            name="idle-warning-countdown",
        )
        self.update_countdown = Countdown(
            duration_ms=config.UPDATE_GRACE_PERIOD_MS,
            scheduler=scheduler,
            on_elapsed=self.force_reload_for_update,
            name="update-countdown",
        )
        if authenticated:
            self.set_authenticated(True)

    @property
    def ended(self) -> bool:
        return self.ended_reason is not None

    @property
    def is_healthy(self) -> bool:
        return self.health.is_healthy

    def set_authenticated(self, authenticated: bool) -> None:
        if self.ended or authenticated == self.authenticated:
            return
        self.authenticated = authenticated
        if authenticated:
            self.last_activity_at = self._scheduler.time()
            self.idle.set_enabled(True)
            self.version.set_enabled(True)
            self.health.set_enabled(True)
            return
        self._stop_monitors()

    def record_activity(self, kind: str = "activity") -> None:
        if self.ended or not self.authenticated:
            return
        self.last_activity_at = self._scheduler.time()
        self.activity_source.emit(kind)

    def continue_session(self) -> None:
        """Explicit "stay signed in" from the idle warning dialog."""
        self.record_activity("continue")

    def close_update_dialog(self) -> None:
        self.show_update_dialog = False
        self.update_countdown.close()

    def force_sign_out(self, reason: SignOutReason = SignOutReason.USER_LOGOUT) -> None:
        if self.ended:
            return
        self.ended_reason = reason
        self._teardown()
        LOGGER.info("Signing session out reason=%s", reason.value)
        self._sign_out(reason)

    def force_reload_for_update(self) -> None:
        if self.ended:
            return
        self.ended_reason = SignOutReason.UPDATE_REQUIRED
        self._teardown()
        LOGGER.info(
            "Reloading session for new version running=%s published=%s",
            self.version.state.current_version,
            self.version.state.last_observed_version,
        )
        self._reload()

    def dispose(self) -> None:
        self._teardown()

    def __enter__(self) -> "SessionLifecycleController":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    def snapshot(self) -> dict[str, Any]:
        policy = self.idle.policy
        return {
            "authenticated": self.authenticated,
            "endedReason": self.ended_reason.value if self.ended_reason else None,
            "idlePhase": self.idle.phase.value,
            "isAfterHours": bool(policy and policy.is_after_hours),
            "showIdleWarning": self.show_idle_warning,
            "idleCountdown": self.idle_countdown.display,
            "idleCountdownSeconds": self.idle_countdown.remaining_seconds,
            "showUpdateDialog": self.show_update_dialog,
            "updateCountdownSeconds": self.update_countdown.remaining_seconds,
            "updateAvailable": self.version.update_available,
            "currentVersion": self.version.state.current_version,
            "publishedVersion": self.version.state.last_observed_version,
            "isHealthy": self.health.is_healthy,
            "consecutiveFailures": self.health.consecutive_failures,
        }

    def _stop_monitors(self) -> None:
        self.idle.set_enabled(False)
        self.version.set_enabled(False)
        self.health.set_enabled(False)
        self.idle_countdown.close()
        self.update_countdown.close()
        self.show_idle_warning = False
        self.show_update_dialog = False

    def _teardown(self) -> None:
        self.idle.dispose()
        self.version.dispose()
        self.health.dispose()
        self.idle_countdown.close()
        self.update_countdown.close()
        self.show_idle_warning = False
        self.show_update_dialog = False
        self.authenticated = False

    def _handle_idle_warning(self) -> None:
        policy = self.idle.policy
        self.show_idle_warning = True
        if policy is None or self.idle.armed_at is None:
            self.idle_countdown.open()
            return
        # Count towards the idle timer itself, even if this callback ran late.
        self.idle_countdown.open(
            policy.warning_window_ms,
            deadline=self.idle.armed_at + ms_to_seconds(policy.idle_delay_ms),
        )

    def _handle_idle_cleared(self) -> None:
        self.show_idle_warning = False
        self.idle_countdown.close()

    def _handle_idle_expired(self) -> None:
        self.force_sign_out(SignOutReason.IDLE_TIMEOUT)

    def _handle_unhealthy(self) -> None:
        LOGGER.warning("Session reported unhealthy; forcing sign-out")
        self.force_sign_out(SignOutReason.SESSION_UNHEALTHY)

    def _handle_update_detected(self) -> None:
        if self.show_update_dialog:
            return
        self.show_update_dialog = True
        self.update_countdown.open()
