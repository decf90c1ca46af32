from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime
from functools import partial
from typing import Any, Awaitable, Callable

from schemas.security import DEFAULT_SECURITY_CONFIG, SecurityConfig
from services.business_clock import now_in_business_tz
from services.idle_timer import IdlePhase
from services.lifecycle_controller import SessionLifecycleController, SignOutReason
from services.timers import Scheduler
from services.user_access_service import remove_session, token_fingerprint
from services.version_store import VersionMarkerStore


LOGGER = logging.getLogger("session_guard.registry")
MAX_ENDED_SESSIONS = 1000

ProbeFactory = Callable[[str], Callable[[], Awaitable[Any]]]
AuditHook = Callable[..., Any]
BlockingRunner = Callable[[Callable[[], Any]], Any]


class SessionRegistry:
    """Lifecycle controllers of the sessions served by this process, by token.

    Controllers are created on the event loop passed as ``scheduler`` and
    must only be touched from that loop.
    Token revocation and audit rows are handed to ``run_blocking``; when it
    returns a future the write is tracked until done, see ``flush``.
    """

    def __init__(
        self,
        *,
        version_store: VersionMarkerStore,
        probe_factory: ProbeFactory,
        config: SecurityConfig = DEFAULT_SECURITY_CONFIG,
        clock: Callable[[], datetime] = now_in_business_tz,
        audit: AuditHook | None = None,
        run_blocking: BlockingRunner | None = None,
    ) -> None:
        self._version_store = version_store
        self._probe_factory = probe_factory
        self._config = config
        self._clock = clock
        self._audit = audit
        self._run_blocking = run_blocking or _run_inline
        self._pending_writes: set[asyncio.Future[Any]] = set()
        self._controllers: dict[str, SessionLifecycleController] = {}
        self._users: dict[str, dict[str, Any]] = {}
        self._ended: OrderedDict[str, dict[str, Any]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._controllers)

    def __contains__(self, token: object) -> bool:
        return token in self._controllers

    def open_session(
        self,
        token: str,
        user: dict[str, Any],
        *,
        client_version: str,
        scheduler: Scheduler,
    ) -> SessionLifecycleController:
        existing = self._controllers.get(token)
        if existing is not None:
            return existing
        controller = SessionLifecycleController(
            sign_out=lambda reason: self._end_session(token, reason, reload_required=False),
            reload=lambda: self._end_session(token, SignOutReason.UPDATE_REQUIRED, reload_required=True),
            probe=self._probe_factory(token),
            current_version=client_version,
            version_store=self._version_store,
            scheduler=scheduler,
            clock=self._clock,
            config=self._config,
            authenticated=False,
        )
        self._controllers[token] = controller
        self._users[token] = dict(user)
        self._ended.pop(token, None)
        controller.set_authenticated(True)
        LOGGER.info(
            "Session opened token=%s user_id=%s client_version=%s",
            token_fingerprint(token),
            user.get("employeeID"),
            client_version,
        )
        return controller

    def get(self, token: str | None) -> SessionLifecycleController | None:
        if not token:
            return None
        return self._controllers.get(token)

    def close(self, token: str | None, reason: SignOutReason = SignOutReason.USER_LOGOUT) -> bool:
        controller = self.get(token)
        if controller is None:
            return False
        controller.force_sign_out(reason)
        return True

    def pop_ended(self, token: str | None) -> dict[str, Any] | None:
        if not token:
            return None
        return self._ended.pop(token, None)

    def stats(self) -> dict[str, Any]:
        sessions = []
        for token, controller in self._controllers.items():
            user = self._users.get(token) or {}
            snapshot = controller.snapshot()
            sessions.append(
                {
                    "tokenFingerprint": token_fingerprint(token),
                    "employeeID": user.get("employeeID"),
                    "displayName": user.get("displayName"),
                    "idlePhase": snapshot["idlePhase"],
                    "isHealthy": snapshot["isHealthy"],
                    "updateAvailable": snapshot["updateAvailable"],
                    "currentVersion": snapshot["currentVersion"],
                }
            )
        user_ids = [item["employeeID"] for item in sessions if item["employeeID"] is not None]
        return {
            "activeSessions": len(sessions),
            "uniqueUsers": len(set(user_ids)),
            "multiSessionUsers": len({uid for uid in user_ids if user_ids.count(uid) > 1}),
            "idleWarnings": sum(1 for item in sessions if item["idlePhase"] == IdlePhase.WARNING_SHOWN.value),
            "unhealthySessions": sum(1 for item in sessions if not item["isHealthy"]),
            "pendingUpdates": sum(1 for item in sessions if item["updateAvailable"]),
            "sessions": sessions,
        }

    def dispose_all(self) -> None:
        for controller in list(self._controllers.values()):
            controller.dispose()
        self._controllers.clear()
        self._users.clear()

    def _end_session(self, token: str, reason: SignOutReason, *, reload_required: bool) -> None:
        controller = self._controllers.pop(token, None)
        user = self._users.pop(token, None) or {}
        self._submit_write("revoke", partial(remove_session, token))
        self._ended[token] = {"reason": reason.value, "reloadRequired": reload_required}
        while len(self._ended) > MAX_ENDED_SESSIONS:
            self._ended.popitem(last=False)
        LOGGER.info(
            "Session ended token=%s user_id=%s reason=%s reload_required=%s",
            token_fingerprint(token),
            user.get("employeeID"),
            reason.value,
            reload_required,
        )
        if self._audit is not None:
            self._submit_write(
                "audit",
                partial(
                    self._audit,
                    event_type="SessionReload" if reload_required else "SessionSignOut",
                    reason=reason.value,
                    employee_id=user.get("employeeID"),
                    token=token,
                    client_version=controller.version.state.current_version if controller else None,
                ),
            )

    async def flush(self) -> None:
        """Wait for revocation and audit writes still running elsewhere."""
        pending = [future for future in self._pending_writes if not future.done()]
        if pending:
            await asyncio.wait(pending)

    def _submit_write(self, kind: str, write: Callable[[], Any]) -> None:
        try:
            result = self._run_blocking(write)
        except Exception:
            LOGGER.exception("Session %s write failed", kind)
            return
        if asyncio.isfuture(result):
            self._pending_writes.add(result)
            result.add_done_callback(partial(self._write_finished, kind))

    def _write_finished(self, kind: str, future: "asyncio.Future[Any]") -> None:
        self._pending_writes.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            LOGGER.error("Session %s write failed: %s", kind, exc)


def _run_inline(write: Callable[[], Any]) -> Any:
    return write()
