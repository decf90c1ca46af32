from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import threading
import time
from pathlib import Path
from typing import Any


SESSION_TTL_SECONDS = 60 * 60 * 12

_BASE_DIR = Path(__file__).resolve().parent.parent
_DATA_DIR = Path(os.environ.get("SESSION_GUARD_DATA_DIR") or (_BASE_DIR / "data"))
_REVOKED_TOKENS_PATH = _DATA_DIR / "revoked_sessions.json"
_LOCK = threading.Lock()


def _require_session_secret() -> bytes:
    raw = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
    if len(raw) < 32:
        raise RuntimeError("SESSION_SIGNING_SECRET must be set and at least 32 characters long.")
    return raw.encode("utf-8")


_SESSION_SECRET = _require_session_secret()


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _sign(encoded_body: str) -> bytes:
    return hmac.new(_SESSION_SECRET, encoded_body.encode("ascii"), hashlib.sha256).digest()


def _decode_body(token: str) -> dict[str, Any] | None:
    try:
        encoded = token.split(".", 1)[0]
        payload = json.loads(_b64decode(encoded).decode("utf-8"))
    except (ValueError, UnicodeError, TypeError):
        return None
    return payload if isinstance(payload, dict) else None


def _load_revoked_unlocked() -> dict[str, float]:
    if not _REVOKED_TOKENS_PATH.exists():
        return {}
    try:
        payload = json.loads(_REVOKED_TOKENS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, ValueError):
        return {}
    if not isinstance(payload, dict):
        return {}
    out: dict[str, float] = {}
    for token, expires_at in payload.items():
        try:
            out[str(token)] = float(expires_at)
        except (TypeError, ValueError):
            continue
    return out


def token_fingerprint(token: str | None) -> str:
    if not token:
        return ""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]


def create_session(payload: dict[str, Any]) -> str:
    """Sign ``payload`` into a bearer token valid for ``SESSION_TTL_SECONDS``."""
    body = dict(payload)
    body["expiresAt"] = time.time() + SESSION_TTL_SECONDS
    encoded = _b64encode(json.dumps(body, ensure_ascii=True, separators=(",", ":")).encode("utf-8"))
    return f"{encoded}.{_b64encode(_sign(encoded))}"


def get_session(token: str | None) -> dict[str, Any] | None:
    """Payload of a valid, unexpired and unrevoked token, else ``None``.

    Reads the revocation file, so call it off the event loop.
    """
    if not token or "." not in token:
        return None
    encoded, encoded_sig = token.split(".", 1)
    try:
        signature_ok = hmac.compare_digest(_sign(encoded), _b64decode(encoded_sig))
    except (ValueError, UnicodeError, TypeError):
        return None
    if not signature_ok:
        return None
    session = _decode_body(token)
    if session is None or time.time() >= float(session.get("expiresAt") or 0.0):
        return None
    with _LOCK:
        if token in _load_revoked_unlocked():
            return None
    return session


def remove_session(token: str | None) -> None:
    """Revoke ``token`` until it would have expired anyway. Blocking file I/O."""
    if not token:
        return
    now = time.time()
    session = _decode_body(token) or {}
    expires_at = float(session.get("expiresAt") or now + SESSION_TTL_SECONDS)
    with _LOCK:
        revoked = {key: exp for key, exp in _load_revoked_unlocked().items() if exp > now}
        if expires_at > now:
            revoked[token] = expires_at
        _DATA_DIR.mkdir(parents=True, exist_ok=True)
        _REVOKED_TOKENS_PATH.write_text(json.dumps(revoked, ensure_ascii=True, indent=2), encoding="utf-8")
