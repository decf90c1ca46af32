from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from sqlalchemy import text
from sqlalchemy.orm import Session

from services.session_health import SessionProbeError
from services.user_access_service import get_session


def ping_database(session_factory: Callable[[], Session]) -> None:
    db = session_factory()
    try:
        db.execute(text("SELECT 1"))
    finally:
        db.close()


def check_session(token: str, session_factory: Callable[[], Session]) -> None:
    """Blocking: the token must still be valid and the database reachable."""
    if get_session(token) is None:
        raise SessionProbeError("Session token expired or revoked.")
    try:
        ping_database(session_factory)
    except Exception as exc:
        raise SessionProbeError(f"db_unavailable: {exc}") from exc


def build_session_probe(token: str, session_factory: Callable[[], Session]) -> Callable[[], Awaitable[None]]:
    async def _probe() -> None:
        await asyncio.to_thread(check_session, token, session_factory)

    return _probe
