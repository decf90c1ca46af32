import asyncio
import os
import tempfile
import unittest

os.environ.setdefault("SESSION_SIGNING_SECRET", "x" * 48)
os.environ.setdefault("SESSION_GUARD_DATA_DIR", tempfile.mkdtemp(prefix="session-guard-tests-"))

from fakes import FakeClock, FakeScheduler, FakeVersionStore

from services.lifecycle_controller import SignOutReason
from services.session_registry import SessionRegistry
from services.user_access_service import create_session, get_session


async def _drain():
    for _ in range(5):
        await asyncio.sleep(0)


class SessionRegistryTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.scheduler = FakeScheduler()
        self.store = FakeVersionStore(None)
        self.audit_calls = []
        self.probe_failure = None
        self.registry = None

    async def asyncTearDown(self):
        if self.registry is not None:
            self.registry.dispose_all()

    def _probe_factory(self, token):
        async def _check():
            if self.probe_failure is not None:
                raise self.probe_failure

        return _check

    def _record_audit(self, **fields):
        self.audit_calls.append(fields)

    def _registry(self, **kwargs):
        options = {
            "version_store": self.store,
            "probe_factory": self._probe_factory,
            "clock": FakeClock(self.scheduler, hour=9),
            "audit": self._record_audit,
        }
        options.update(kwargs)
        self.registry = SessionRegistry(**options)
        return self.registry

    def _open(self, registry, employee_id):
        user = {"employeeID": employee_id, "displayName": f"User {employee_id}"}
        token = create_session(user)
        registry.open_session(token, user, client_version="1.1.0", scheduler=self.scheduler)
        return token

    async def test_idle_timeout_revokes_token_and_reports_once(self):
        registry = self._registry()
        token = self._open(registry, 7)
        await _drain()
        self.assertIsNotNone(get_session(token))

        self.scheduler.advance(1200)
        self.assertNotIn(token, registry)
        self.assertIsNone(get_session(token))
        self.assertEqual(registry.pop_ended(token), {"reason": "idle_timeout", "reloadRequired": False})
        self.assertIsNone(registry.pop_ended(token))
        self.assertEqual(len(self.audit_calls), 1)
        self.assertEqual(self.audit_calls[0]["event_type"], "SessionSignOut")
        self.assertEqual(self.audit_calls[0]["reason"], "idle_timeout")
        self.assertEqual(self.audit_calls[0]["employee_id"], 7)
        self.assertEqual(self.audit_calls[0]["client_version"], "1.1.0")

    async def test_unhealthy_session_is_signed_out(self):
        self.probe_failure = RuntimeError("db offline")
        registry = self._registry()
        token = self._open(registry, 8)
        await _drain()
        for _ in range(2):
            self.scheduler.advance(120)
            await _drain()

        self.assertNotIn(token, registry)
        self.assertEqual(registry.pop_ended(token), {"reason": "session_unhealthy", "reloadRequired": False})
        self.assertIsNone(get_session(token))
        self.assertEqual(self.audit_calls[0]["reason"], "session_unhealthy")

    async def test_failing_audit_does_not_block_sign_out(self):
        def _broken_audit(**fields):
            raise RuntimeError("audit table missing")

        registry = self._registry(audit=_broken_audit)
        token = self._open(registry, 9)
        with self.assertLogs("session_guard.registry", level="ERROR"):
            self.assertTrue(registry.close(token, SignOutReason.USER_LOGOUT))

        self.assertNotIn(token, registry)
        self.assertIsNone(get_session(token))
        self.assertEqual(registry.pop_ended(token), {"reason": "user_logout", "reloadRequired": False})

    async def test_writes_can_run_off_the_loop(self):
        def _run_in_executor(write):
            return asyncio.get_running_loop().run_in_executor(None, write)

        registry = self._registry(run_blocking=_run_in_executor)
        token = self._open(registry, 10)
        registry.close(token, SignOutReason.USER_LOGOUT)
        self.assertNotIn(token, registry)

        await registry.flush()
        self.assertIsNone(get_session(token))
        self.assertEqual([call["event_type"] for call in self.audit_calls], ["SessionSignOut"])

    async def test_update_reload_is_reported_with_reload_flag(self):
        self.store.version = "1.2.0"
        registry = self._registry()
        token = self._open(registry, 11)
        self.assertEqual(registry.stats()["pendingUpdates"], 1)

        self.scheduler.advance(30)
        self.assertEqual(registry.pop_ended(token), {"reason": "update_required", "reloadRequired": True})
        self.assertEqual(self.audit_calls[0]["event_type"], "SessionReload")


if __name__ == "__main__":
    unittest.main()
