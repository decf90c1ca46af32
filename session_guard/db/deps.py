from collections.abc import Generator

from db.session import SessionLocalGuard


def get_guard_db() -> Generator:
    db = SessionLocalGuard()
    try:
        yield db
    finally:
        db.close()
