"""
Tests for core/messages.py — popup/website message dispatch.
"""

import sys
import tempfile
import unittest
from pathlib import Path

# Ensure project root and tests dir are on the path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from core.engine import DetoxEngine
from core.messages import MessageType, handle_message
from core.storage import LocalStore
from emergency.keyword_evaluator import KeywordEvaluator
from fakes import FakeClock, FakeHost
from tracking.sites import TrackedSite


class TestHandleMessage(unittest.TestCase):
    """handle_message() routing and responses."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = LocalStore(Path(self._tmp.name) / "state.json", background=False)
        self.engine = DetoxEngine(
            self.store,
            host=FakeHost(),
            clock=FakeClock(),
            evaluator=KeywordEvaluator(),
            background_io=False,
            schedule_expiry=False,
        )

    def tearDown(self):
        self._tmp.cleanup()

    def test_unknown_type(self):
        response = handle_message(self.engine, {"type": "DO_SOMETHING"})
        self.assertEqual(response, {"success": False, "error": "Unknown message type"})

    def test_missing_type(self):
        self.assertFalse(handle_message(self.engine, {})["success"])

    def test_get_status(self):
        response = handle_message(self.engine, {"type": MessageType.GET_STATUS.value})
        self.assertTrue(response["success"])
        self.assertIn("daily_usage", response)
        self.assertIn("seconds_until_reset", response)

    def test_set_identity_and_login_success_are_equivalent(self):
        for message_type in ("SET_IDENTITY", "LOGIN_SUCCESS"):
            with self.subTest(message_type=message_type):
                response = handle_message(self.engine, {
                    "type": message_type, "identity": f"id-{message_type}", "email": "a@example.com",
                })
                self.assertEqual(response, {"success": True})
                self.assertEqual(self.engine.identity, f"id-{message_type}")
                self.assertEqual(self.engine.identity_email, "a@example.com")

    def test_login_accepts_user_id_key(self):
        handle_message(self.engine, {"type": "LOGIN_SUCCESS", "userId": "abc123"})
        self.assertEqual(self.engine.identity, "abc123")

    def test_login_without_identity(self):
        response = handle_message(self.engine, {"type": "SET_IDENTITY"})
        self.assertFalse(response["success"])
        self.assertIsNone(self.engine.identity)

    def test_logout(self):
        handle_message(self.engine, {"type": "SET_IDENTITY", "identity": "abc"})
        response = handle_message(self.engine, {"type": "USER_LOGGED_OUT"})
        self.assertTrue(response["success"])
        self.assertIsNone(self.engine.identity)

    def test_toggle_blocking(self):
        response = handle_message(self.engine, {"type": "TOGGLE_BLOCKING", "enabled": False})
        self.assertEqual(response, {"success": True, "is_blocking": False})
        self.assertFalse(self.engine.is_blocking)

    def test_toggle_blocking_requires_enabled(self):
        response = handle_message(self.engine, {"type": "TOGGLE_BLOCKING"})
        self.assertFalse(response["success"])
        self.assertTrue(self.engine.is_blocking)

    def test_emergency_access_granted(self):
        response = handle_message(self.engine, {
            "type": "REQUEST_EMERGENCY_ACCESS",
            "site": "youtube",
            "reason": "I have an urgent work deadline for my boss",
        })
        self.assertTrue(response["success"])
        self.assertTrue(response["granted"])
        self.assertEqual(response["duration"], 15)
        self.assertTrue(self.engine.overrides.is_active(TrackedSite.YOUTUBE))

    def test_emergency_access_short_reason(self):
        response = handle_message(self.engine, {
            "type": "REQUEST_EMERGENCY_ACCESS", "site": "youtube", "reason": "bored",
        })
        self.assertFalse(response["granted"])
        self.assertEqual(response["error_type"], "reason_too_short")

    def test_emergency_access_non_text_reason(self):
        """A reason that is not a string is denied like a missing one."""
        for reason in (123456789012345678901234, ["urgent", "work"], {"why": "x"}, None):
            with self.subTest(reason=reason):
                response = handle_message(self.engine, {
                    "type": "REQUEST_EMERGENCY_ACCESS", "site": "instagram", "reason": reason,
                })
                self.assertTrue(response["success"])
                self.assertFalse(response["granted"])
                self.assertEqual(response["error_type"], "reason_too_short")
        self.assertEqual(self.engine.overrides.active_grants(), {})


if __name__ == "__main__":
    unittest.main()
