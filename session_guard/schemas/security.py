from __future__ import annotations

import os
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, model_validator


ENV_PREFIX = "SESSION_GUARD_"


class SecurityConfig(BaseModel):
    """Timing constants for the session lifecycle, all durations in milliseconds."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    IDLE_WARNING_MS: int = Field(18 * 60 * 1000, gt=0)
    IDLE_TIMEOUT_MS: int = Field(20 * 60 * 1000, gt=0)
    AFTER_HOURS_IDLE_WARNING_MS: int = Field(43 * 60 * 1000, gt=0)
    AFTER_HOURS_IDLE_TIMEOUT_MS: int = Field(45 * 60 * 1000, gt=0)
    AFTER_HOURS_START: int = Field(17, ge=0, le=23)
    VERSION_CHECK_INTERVAL_MS: int = Field(5 * 60 * 1000, gt=0)
    UPDATE_GRACE_PERIOD_MS: int = Field(30 * 1000, ge=1000)
    MAX_HEALTH_FAILURES: int = Field(3, ge=1)
    HEALTH_CHECK_INTERVAL_MS: int = Field(2 * 60 * 1000, gt=0)

    @model_validator(mode="after")
    def _check_warning_precedes_timeout(self) -> "SecurityConfig":
        if self.IDLE_WARNING_MS >= self.IDLE_TIMEOUT_MS:
            raise ValueError("IDLE_WARNING_MS must be lower than IDLE_TIMEOUT_MS.")
        if self.AFTER_HOURS_IDLE_WARNING_MS >= self.AFTER_HOURS_IDLE_TIMEOUT_MS:
            raise ValueError("AFTER_HOURS_IDLE_WARNING_MS must be lower than AFTER_HOURS_IDLE_TIMEOUT_MS.")
        return self

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "SecurityConfig":
        source = os.environ if environ is None else environ
        overrides: dict[str, int] = {}
        for name in cls.model_fields:
            raw = (source.get(f"{ENV_PREFIX}{name}") or "").strip()
            if raw:
                overrides[name] = int(raw)
        return cls(**overrides)


DEFAULT_SECURITY_CONFIG = SecurityConfig()
