from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from schemas.security import DEFAULT_SECURITY_CONFIG, SecurityConfig


@dataclass(frozen=True)
class TimeoutPolicy:
    warning_delay_ms: int
    idle_delay_ms: int
    is_after_hours: bool

    @property
    def warning_window_ms(self) -> int:
        return self.idle_delay_ms - self.warning_delay_ms


def resolve_policy(now: datetime, config: SecurityConfig = DEFAULT_SECURITY_CONFIG) -> TimeoutPolicy:
    """Pick the idle thresholds in effect at ``now`` (already in business time).

    Sessions armed at or after ``AFTER_HOURS_START`` get the longer after-hours
    thresholds. The result is frozen into the timers at arm time.
    """
    if now.hour >= config.AFTER_HOURS_START:
        return TimeoutPolicy(
            warning_delay_ms=config.AFTER_HOURS_IDLE_WARNING_MS,
            idle_delay_ms=config.AFTER_HOURS_IDLE_TIMEOUT_MS,
            is_after_hours=True,
        )
    return TimeoutPolicy(
        warning_delay_ms=config.IDLE_WARNING_MS,
        idle_delay_ms=config.IDLE_TIMEOUT_MS,
        is_after_hours=False,
    )
