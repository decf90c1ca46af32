from __future__ import annotations

import os


# Bump on every deploy; sessions opened by an older build are asked to reload.
#
# 1.1.0 - deploy reliability: manual data-fix tooling, deploy checklist,
#         version marker published at startup.
DEFAULT_APP_VERSION = "1.1.0"

APP_VERSION = (os.environ.get("APP_VERSION") or DEFAULT_APP_VERSION).strip()


def is_version_outdated(stored_version: str | None, current_version: str) -> bool:
    if stored_version is None:
        return False
    return stored_version != current_version


def _version_key(version: str) -> tuple[int, ...] | None:
    parts = version.strip().split(".")
    if not all(part.isdigit() for part in parts):
        return None
    return tuple(int(part) for part in parts)


def is_version_newer(candidate: str | None, reference: str | None) -> bool:
    """True only when both are dotted numbers and ``candidate`` sorts above ``reference``."""
    if not candidate or not reference:
        return False
    candidate_key = _version_key(candidate)
    reference_key = _version_key(reference)
    if candidate_key is None or reference_key is None:
        return False
    return candidate_key > reference_key
