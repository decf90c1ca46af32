from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine

from schemas.security import DEFAULT_SECURITY_CONFIG, SecurityConfig
from services.timers import RepeatingTimer, Scheduler


LOGGER = logging.getLogger("session_guard.health")

Probe = Callable[[], Awaitable[Any]]
Spawner = Callable[[Coroutine[Any, Any, Any]], "asyncio.Future[Any]"]


class SessionProbeError(RuntimeError):
    pass


class SessionHealthMonitor:
    """Periodic liveness probe for the authenticated session.

    A probe fails by raising. After ``MAX_HEALTH_FAILURES`` consecutive
    failures the session is flagged unhealthy until a probe succeeds again.
    Nothing is ever raised to the caller.
    """

    def __init__(
        self,
        *,
        probe: Probe,
        scheduler: Scheduler,
        config: SecurityConfig = DEFAULT_SECURITY_CONFIG,
        interval_ms: int | None = None,
        on_unhealthy: Callable[[], None] | None = None,
        spawn: Spawner = asyncio.ensure_future,
        enabled: bool = True,
    ) -> None:
        self._probe = probe
        self._on_unhealthy = on_unhealthy
        self._spawn = spawn
        self._max_failures = config.MAX_HEALTH_FAILURES
        self._interval = RepeatingTimer(
            scheduler,
            interval_ms or config.HEALTH_CHECK_INTERVAL_MS,
            self._schedule_check,
            name="session-health",
        )
        self._inflight: asyncio.Future[Any] | None = None
        self._enabled = False
        self._disposed = False
        self.consecutive_failures = 0
        self.is_healthy = True
        if enabled:
            self.set_enabled(True)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        if self._disposed or enabled == self._enabled:
            return
        self._enabled = enabled
        if not enabled:
            self._interval.stop()
            self._cancel_inflight()
            self.consecutive_failures = 0
            self.is_healthy = True
            return
        self._interval.start()
        self._schedule_check()

    async def check_now(self) -> bool:
        if not self._enabled:
            return self.is_healthy
        try:
            await self._probe()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._enabled:
                self._record_failure(exc)
        else:
            if self._enabled:
                self._record_success()
        return self.is_healthy

    def dispose(self) -> None:
        self._interval.stop()
        self._cancel_inflight()
        self._enabled = False
        self._disposed = True

    def __enter__(self) -> "SessionHealthMonitor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    def _schedule_check(self) -> None:
        if not self._enabled:
            return
        if self._inflight is not None and not self._inflight.done():
            LOGGER.debug("Session health probe still running; skipping this tick")
            return
        self._inflight = self._spawn(self.check_now())

    def _cancel_inflight(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None

    def _record_failure(self, exc: Exception) -> None:
        self.consecutive_failures += 1
        LOGGER.warning(
            "Session health probe failed: %s (%s/%s)",
            exc,
            self.consecutive_failures,
            self._max_failures,
        )
        if self.consecutive_failures >= self._max_failures and self.is_healthy:
            self.is_healthy = False
            LOGGER.error("Session health degraded after %s consecutive failures", self.consecutive_failures)
            if self._on_unhealthy is not None:
                self._on_unhealthy()

    def _record_success(self) -> None:
        if self.consecutive_failures > 0:
            LOGGER.info("Session health recovered after %s failure(s)", self.consecutive_failures)
        self.consecutive_failures = 0
        self.is_healthy = True
