import os
import sys
import tempfile
import unittest
from pathlib import Path

from sqlalchemy.exc import OperationalError


os.environ.setdefault("SESSION_SIGNING_SECRET", "x" * 48)
os.environ.setdefault("SESSION_GUARD_DATA_DIR", tempfile.mkdtemp(prefix="session-guard-tests-"))

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from models.audit_models import SessionAuditLog
from services.audit_service import record_session_event
from services.user_access_service import token_fingerprint


class FakeAuditDb:
    def __init__(self, fail_commit=False):
        self.fail_commit = fail_commit
        self.added = []
        self.committed = False
        self.rolled_back = False
        self.closed = False

    def add(self, row):
        self.added.append(row)

    def commit(self):
        if self.fail_commit:
            raise OperationalError("INSERT INTO SessionAuditLogs", {}, Exception("database is locked"))
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


class RecordSessionEventTests(unittest.TestCase):
    def test_writes_row_and_commits(self):
        db = FakeAuditDb()
        ok = record_session_event(
            lambda: db,
            event_type="SessionSignOut",
            reason="idle_timeout",
            employee_id=42,
            token="abc.def",
            client_version="1.1.0",
            details="x" * 600,
        )
        self.assertTrue(ok)
        self.assertTrue(db.committed)
        self.assertTrue(db.closed)
        self.assertEqual(len(db.added), 1)
        row = db.added[0]
        self.assertIsInstance(row, SessionAuditLog)
        self.assertEqual(row.EventType, "SessionSignOut")
        self.assertEqual(row.Reason, "idle_timeout")
        self.assertEqual(row.EmployeeID, 42)
        self.assertEqual(row.TokenFingerprint, token_fingerprint("abc.def"))
        self.assertEqual(len(row.Details), 500)

    def test_commit_failure_rolls_back_and_reports_false(self):
        db = FakeAuditDb(fail_commit=True)
        with self.assertLogs("session_guard.audit", level="WARNING") as logs:
            ok = record_session_event(lambda: db, event_type="SessionReload", reason="update_required")
        self.assertFalse(ok)
        self.assertTrue(db.rolled_back)
        self.assertFalse(db.committed)
        self.assertTrue(db.closed)
        self.assertIn("SessionReload", logs.output[0])


if __name__ == "__main__":
    unittest.main()
