import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite") and ":memory:" in url:
        # Audit writes run on worker threads; they must see the same in-memory database.
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_pre_ping": True}


SESSION_GUARD_DB_URL = _require_env("SESSION_GUARD_DB_URL")

engine_guard = create_engine(
    SESSION_GUARD_DB_URL,
    future=True,
    **_engine_options(SESSION_GUARD_DB_URL),
)

SessionLocalGuard = sessionmaker(
    bind=engine_guard,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)
