"""
Tests for sync/backend_client.py against an in-process httpx.MockTransport.
"""

import json
import sys
import unittest
from pathlib import Path

import httpx

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.exceptions import BackendError
from sync.backend_client import DetoxBackendClient
from tracking.sites import TrackedSite


def make_client(handler):
    return DetoxBackendClient(base_url="http://backend.test/api", transport=httpx.MockTransport(handler))


class TestFetchLimits(unittest.TestCase):
    """fetch_limits() parsing."""

    def test_parses_known_sites(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json={
                "success": True,
                "limits": {
                    "instagram": {"dailyLimit": 30},
                    "youtube": {"dailyLimit": "45"},
                    "myspace": {"dailyLimit": 10},
                    "reddit": {"dailyLimit": "lots"},
                    "tiktok": 5,
                },
            })

        client = make_client(handler)
        limits = client.fetch_limits("user-1")

        self.assertEqual(limits, {TrackedSite.INSTAGRAM: 30, TrackedSite.YOUTUBE: 45})
        self.assertEqual(seen["url"], "http://backend.test/api/limits?identity=user-1")

    def test_success_false_raises(self):
        client = make_client(lambda request: httpx.Response(200, json={"success": False, "message": "nope"}))
        with self.assertRaises(BackendError):
            client.fetch_limits("user-1")

    def test_server_error_raises(self):
        client = make_client(lambda request: httpx.Response(500, text="boom"))
        with self.assertRaises(BackendError):
            client.fetch_limits("user-1")

    def test_invalid_json_raises(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>"))
        with self.assertRaises(BackendError):
            client.fetch_limits("user-1")

    def test_network_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaises(BackendError):
            make_client(handler).fetch_limits("user-1")

    def test_identity_required(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        with self.assertRaises(ValueError):
            client.fetch_limits("")


class TestPushUsage(unittest.TestCase):
    """push_usage() request body and acknowledgement."""

    def test_body_uses_site_identifiers(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        client = make_client(handler)
        ok = client.push_usage("user-1", {TrackedSite.YOUTUBE: 120, TrackedSite.REDDIT: 7})

        self.assertTrue(ok)
        self.assertEqual(bodies, [{"identity": "user-1", "usage": {"youtube": 120, "reddit": 7}}])

    def test_rejected_push_returns_false(self):
        client = make_client(lambda request: httpx.Response(200, json={"success": False}))
        self.assertFalse(client.push_usage("user-1", {TrackedSite.YOUTUBE: 1}))

    def test_resend_against_max_merge_server(self):
        """Retransmitting a snapshot never inflates the server's totals."""
        totals = {}

        def handler(request):
            body = json.loads(request.content)
            for site, seconds in body["usage"].items():
                totals[site] = max(totals.get(site, 0), seconds)
            return httpx.Response(200, json={"success": True})

        client = make_client(handler)
        for _ in range(3):
            client.push_usage("user-1", {TrackedSite.NETFLIX: 300})
        client.push_usage("user-1", {TrackedSite.NETFLIX: 200})

        self.assertEqual(totals, {"netflix": 300})


class TestEmergencyAccess(unittest.TestCase):
    """request_emergency_access() response handling."""

    def test_approved(self):
        def handler(request):
            body = json.loads(request.content)
            self.assertEqual(body, {"identity": "user-1", "site": "tiktok", "reason": "family emergency at home"})
            return httpx.Response(200, json={"approved": True, "message": "OK", "duration": 10})

        result = make_client(handler).request_emergency_access("user-1", TrackedSite.TIKTOK, "family emergency at home")
        self.assertEqual(result, {"approved": True, "message": "OK", "duration_minutes": 10})

    def test_missing_flag_raises(self):
        client = make_client(lambda request: httpx.Response(200, json={"message": "?"}))
        with self.assertRaises(BackendError):
            client.request_emergency_access("user-1", TrackedSite.TIKTOK, "family emergency at home")


class TestSession(unittest.TestCase):
    """fetch_session_identity() and check_health()."""

    def test_authenticated(self):
        client = make_client(lambda request: httpx.Response(200, json={"authenticated": True, "userId": "u-9"}))
        self.assertEqual(client.fetch_session_identity(), "u-9")

    def test_unauthorized_is_none(self):
        client = make_client(lambda request: httpx.Response(401, json={"authenticated": False}))
        self.assertIsNone(client.fetch_session_identity())

    def test_health(self):
        self.assertTrue(make_client(lambda request: httpx.Response(200, json={"success": True})).check_health())
        self.assertFalse(make_client(lambda request: httpx.Response(503)).check_health())


if __name__ == "__main__":
    unittest.main()
