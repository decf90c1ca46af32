import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

from dotenv import load_dotenv

load_dotenv()

from db.base import Base
from db.deps import get_guard_db
from db.session import SessionLocalGuard, engine_guard
from schemas.security import SecurityConfig
from schemas.session import ActivityRequest, AuthLoginRequest
from services.app_version import APP_VERSION, is_version_newer
from services.audit_service import record_session_event
from services.business_clock import get_timezone_info
from services.lifecycle_controller import SessionLifecycleController, SignOutReason
from services.session_probe import build_session_probe
from services.session_registry import SessionRegistry
from services.user_access_service import create_session, get_session, remove_session, token_fingerprint
from services.version_store import JsonVersionMarkerStore


AUTH_LOGGER = logging.getLogger("session_guard.auth")

LOCAL_ADMIN_USERNAME = "admin"
LOCAL_ADMIN_PASSWORD = (os.environ.get("LOCAL_ADMIN_PASSWORD") or "").strip()
LOCAL_ADMIN_EMPLOYEE_ID = 999999

SECURITY_CONFIG = SecurityConfig.from_env()
version_store = JsonVersionMarkerStore()


def _audit(**fields) -> None:
    record_session_event(SessionLocalGuard, **fields)


def _run_in_executor(write):
    return asyncio.get_running_loop().run_in_executor(None, write)


registry = SessionRegistry(
    version_store=version_store,
    probe_factory=lambda token: build_session_probe(token, SessionLocalGuard),
    config=SECURITY_CONFIG,
    audit=_audit,
    run_blocking=_run_in_executor,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(engine_guard)
    # This build is now the deployed one; older open sessions will be asked to reload.
    version_store.write(APP_VERSION)
    AUTH_LOGGER.info("Published running version=%s", APP_VERSION)
    try:
        yield
    finally:
        registry.dispose_all()


app = FastAPI(lifespan=lifespan)


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5001,http://localhost:5001",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(
    SessionMiddleware,
    secret_key=(os.environ.get("SESSION_SIGNING_SECRET") or "").strip(),
    session_cookie="session_guard_session",
    same_site="lax",
    https_only=False,
)


def _resolve_token(request: Request, x_session_token: str | None) -> str | None:
    return x_session_token or request.session.get("token")


async def _require_session_or_401(request: Request, x_session_token: str | None) -> tuple[str, dict]:
    token = _resolve_token(request, x_session_token)
    session = await asyncio.to_thread(get_session, token)
    if not token or not session:
        raise HTTPException(status_code=401, detail="Not authenticated.")
    return token, session


async def _require_controller_or_401(request: Request, x_session_token: str | None) -> SessionLifecycleController:
    token, _ = await _require_session_or_401(request, x_session_token)
    controller = registry.get(token)
    if controller is None:
        raise HTTPException(status_code=401, detail="Session is not active.")
    return controller


async def _require_admin_session_or_403(request: Request, x_session_token: str | None) -> dict:
    _, session = await _require_session_or_401(request, x_session_token)
    if session.get("role") != "Admin":
        raise HTTPException(status_code=403, detail="Admin rights required.")
    return session


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_guard_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/api/version")
def get_version():
    return {
        "version": APP_VERSION,
        "publishedVersion": version_store.read(),
        "timezone": get_timezone_info(),
    }


@app.post("/api/auth/login")
async def auth_login(request: Request, payload: dict = Body(...)):
    try:
        parsed = AuthLoginRequest.model_validate(payload)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid login request.")

    username = parsed.username.strip().lower()
    if username != LOCAL_ADMIN_USERNAME or not LOCAL_ADMIN_PASSWORD or parsed.password != LOCAL_ADMIN_PASSWORD:
        AUTH_LOGGER.warning("Login failed username=%s", username)
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    client_version = (parsed.clientVersion or APP_VERSION).strip()
    published_version = await asyncio.to_thread(version_store.read)
    if is_version_newer(client_version, published_version or APP_VERSION):
        # Such a client could never match the marker and would reload forever.
        AUTH_LOGGER.warning("Login refused client_version=%s published=%s", client_version, published_version)
        raise HTTPException(status_code=409, detail="Client build is newer than the deployed version.")
    session_payload = {
        "employeeID": LOCAL_ADMIN_EMPLOYEE_ID,
        "displayName": "Administrator",
        "role": "Admin",
        "clientVersion": client_version,
    }
    token = create_session(session_payload)
    request.session["token"] = token
    request.session["user"] = dict(session_payload)
    controller = registry.open_session(
        token,
        session_payload,
        client_version=client_version,
        scheduler=asyncio.get_running_loop(),
    )
    await asyncio.to_thread(
        _audit,
        event_type="LoginSuccess",
        employee_id=LOCAL_ADMIN_EMPLOYEE_ID,
        token=token,
        client_version=client_version,
    )
    AUTH_LOGGER.info("Login success user_id=%s token=%s", LOCAL_ADMIN_EMPLOYEE_ID, token_fingerprint(token))
    return {"sessionToken": token, "user": session_payload, "lifecycle": controller.snapshot()}


@app.post("/api/auth/logout")
async def auth_logout(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    token = _resolve_token(request, x_session_token)
    request.session.clear()
    if not registry.close(token, SignOutReason.USER_LOGOUT):
        await asyncio.to_thread(remove_session, token)
    registry.pop_ended(token)
    await registry.flush()
    return {"ok": True}


@app.get("/api/auth/me")
async def auth_me(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    _, session = await _require_session_or_401(request, x_session_token)
    return {"user": session}


@app.get("/api/session/state")
async def session_state(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    token = _resolve_token(request, x_session_token)
    controller = registry.get(token)
    if controller is not None:
        return {"active": True, **controller.snapshot()}
    ended = registry.pop_ended(token)
    if ended is not None:
        request.session.clear()
        return {"active": False, "endedReason": ended["reason"], "reloadRequired": ended["reloadRequired"]}
    raise HTTPException(status_code=401, detail="Not authenticated.")


@app.post("/api/session/activity")
async def session_activity(
    request: Request,
    payload: ActivityRequest | None = None,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    controller = await _require_controller_or_401(request, x_session_token)
    controller.record_activity((payload.kind if payload else None) or "activity")
    return {"ok": True, "idlePhase": controller.idle.phase.value}


@app.post("/api/session/continue")
async def session_continue(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    controller = await _require_controller_or_401(request, x_session_token)
    controller.continue_session()
    return {"ok": True, **controller.snapshot()}


@app.post("/api/session/update-now")
async def session_update_now(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    controller = await _require_controller_or_401(request, x_session_token)
    controller.force_reload_for_update()
    request.session.clear()
    await registry.flush()
    return {"ok": True, "reloadRequired": True}


@app.post("/api/session/update-dialog/close")
async def session_close_update_dialog(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    controller = await _require_controller_or_401(request, x_session_token)
    controller.close_update_dialog()
    return {"ok": True, **controller.snapshot()}


@app.get("/api/admin/sessions")
async def admin_sessions(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    await _require_admin_session_or_403(request, x_session_token)
    return registry.stats()
