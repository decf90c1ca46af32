from __future__ import annotations

import logging
from typing import Callable


# Browser events the dashboard forwards as activity; all are treated alike.
ACTIVITY_EVENTS = (
    "mousedown",
    "mousemove",
    "keypress",
    "scroll",
    "touchstart",
    "click",
)

LOGGER = logging.getLogger("session_guard.idle")

ActivityListener = Callable[[str], None]


class ActivitySource:
    """Fan-out of opaque user-activity signals to subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: list[ActivityListener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: ActivityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    def emit(self, kind: str = "activity") -> int:
        if kind not in ACTIVITY_EVENTS and kind != "activity":
            LOGGER.debug("Unrecognised activity kind=%s treated as activity", kind)
        listeners = list(self._listeners)
        for listener in listeners:
            listener(kind)
        return len(listeners)
