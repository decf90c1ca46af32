from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from schemas.security import DEFAULT_SECURITY_CONFIG, SecurityConfig
from services.app_version import is_version_outdated
from services.timers import RepeatingTimer, Scheduler
from services.version_store import VersionMarkerStore


LOGGER = logging.getLogger("session_guard.version")


@dataclass
class VersionState:
    current_version: str
    last_observed_version: str | None = None
    update_available: bool = False


class VersionWatch:
    """Polls the published version marker and reports when it moves away
    from the version this session was started with.

    ``update_available`` is sticky: only a reload (a new watch) clears it.
    """

    def __init__(
        self,
        *,
        current_version: str,
        store: VersionMarkerStore,
        on_update_detected: Callable[[], None],
        scheduler: Scheduler,
        config: SecurityConfig = DEFAULT_SECURITY_CONFIG,
        poll_interval_ms: int | None = None,
        enabled: bool = True,
    ) -> None:
        self.state = VersionState(current_version=current_version)
        self._store = store
        self._on_update_detected = on_update_detected
        self._poller = RepeatingTimer(
            scheduler,
            poll_interval_ms or config.VERSION_CHECK_INTERVAL_MS,
            self.check_now,
            name="version-check",
        )
        self._enabled = False
        self._disposed = False
        if enabled:
            self.set_enabled(True)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def update_available(self) -> bool:
        return self.state.update_available

    def set_enabled(self, enabled: bool) -> None:
        if self._disposed or enabled == self._enabled:
            return
        self._enabled = enabled
        if not enabled:
            self._poller.stop()
            return
        self._poller.start()
        self.check_now()

    def check_now(self) -> bool:
        if not self._enabled:
            return False
        stored = self._store.read()
        self.state.last_observed_version = stored
        if not is_version_outdated(stored, self.state.current_version):
            return False
        if not self.state.update_available:
            LOGGER.info(
                "New version published running=%s published=%s",
                self.state.current_version,
                stored,
            )
        self.state.update_available = True
        self._on_update_detected()
        return True

    def dispose(self) -> None:
        self._poller.stop()
        self._enabled = False
        self._disposed = True

    def __enter__(self) -> "VersionWatch":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()
