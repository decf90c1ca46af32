from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.audit_models import SessionAuditLog
from services.user_access_service import token_fingerprint


LOGGER = logging.getLogger("session_guard.audit")


def log_session_event(
    db: Session,
    *,
    event_type: str,
    reason: str | None = None,
    employee_id: int | None = None,
    token: str | None = None,
    client_version: str | None = None,
    details: str | None = None,
) -> None:
    db.add(
        SessionAuditLog(
            EventType=event_type,
            Reason=reason,
            EmployeeID=employee_id,
            TokenFingerprint=token_fingerprint(token),
            ClientVersion=client_version,
            Details=(details or "")[:500] or None,
            CreatedAt=datetime.now(),
        )
    )


def record_session_event(session_factory: Callable[[], Session], **fields) -> bool:
    """Write one audit row in its own transaction; failures are logged only."""
    db = session_factory()
    try:
        log_session_event(db, **fields)
        db.commit()
        return True
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.warning("Could not record session event %s: %s", fields.get("event_type"), exc)
        return False
    finally:
        db.close()
