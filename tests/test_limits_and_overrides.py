"""
Tests for tracking/limit_store.py and tracking/overrides.py.
"""

import sys
import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

# Ensure project root and tests dir are on the path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

import config
from core.exceptions import BackendError
from core.storage import LocalStore
from fakes import FakeClock
from tracking.limit_store import LimitStore
from tracking.overrides import OverrideRegistry
from tracking.sites import TrackedSite


class TestLimitStore(unittest.TestCase):
    """LimitStore refresh and lookup."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "state.json"
        self.store = LocalStore(self.path, background=False)
        self.client = MagicMock()

    def tearDown(self):
        self._tmp.cleanup()

    def test_no_identity_means_unlimited_everywhere(self):
        limits = LimitStore(self.store, self.client)
        self.assertTrue(limits.refresh(None))
        for site in TrackedSite:
            self.assertEqual(limits.limit_for(site), config.UNLIMITED_LIMIT_MINUTES)
        self.client.fetch_limits.assert_not_called()

    def test_refresh_replaces_whole_map(self):
        """A successful fetch replaces the map; sites it omits lose their limit."""
        limits = LimitStore(self.store, self.client)
        limits.replace({TrackedSite.INSTAGRAM: 30, TrackedSite.REDDIT: 10})

        self.client.fetch_limits.return_value = {TrackedSite.YOUTUBE: 45}
        self.assertTrue(limits.refresh("user-1"))

        self.client.fetch_limits.assert_called_once_with("user-1")
        self.assertEqual(limits.limit_for(TrackedSite.YOUTUBE), 45)
        self.assertIsNone(limits.limit_for(TrackedSite.INSTAGRAM))
        self.assertIsNone(limits.limit_for(TrackedSite.REDDIT))

    def test_failed_refresh_keeps_previous_map(self):
        limits = LimitStore(self.store, self.client)
        limits.replace({TrackedSite.INSTAGRAM: 30})

        self.client.fetch_limits.side_effect = BackendError("timeout")
        self.assertFalse(limits.refresh("user-1"))
        self.assertEqual(limits.limit_for(TrackedSite.INSTAGRAM), 30)

    def test_refresh_without_client(self):
        limits = LimitStore(self.store)
        limits.replace({TrackedSite.TIKTOK: 5})
        self.assertFalse(limits.refresh("user-1"))
        self.assertEqual(limits.limit_for(TrackedSite.TIKTOK), 5)

    def test_zero_or_negative_limit_is_unlimited(self):
        limits = LimitStore(self.store)
        limits.replace({TrackedSite.INSTAGRAM: 0, TrackedSite.REDDIT: -5})
        self.assertIsNone(limits.limit_for(TrackedSite.INSTAGRAM))
        self.assertIsNone(limits.limit_for(TrackedSite.REDDIT))
        self.assertIsNone(limits.limit_for(TrackedSite.NETFLIX))

    def test_cached_limits_survive_restart(self):
        LimitStore(self.store).replace({TrackedSite.FACEBOOK: 20})
        reloaded = LimitStore(LocalStore(self.path, background=False))
        self.assertEqual(reloaded.limit_for(TrackedSite.FACEBOOK), 20)

    def test_cache_accepts_wire_shape(self):
        self.store.set(daily_limits={"twitter": {"dailyLimit": 25}, "netflix": 40, "myspace": 5})
        limits = LimitStore(self.store)
        self.assertEqual(dict(limits.snapshot()), {TrackedSite.TWITTER: 25, TrackedSite.NETFLIX: 40})

    def test_clear(self):
        limits = LimitStore(self.store)
        limits.replace({TrackedSite.FACEBOOK: 20})
        limits.clear()
        self.assertEqual(dict(limits.snapshot()), {})


class TestOverrideRegistry(unittest.TestCase):
    """OverrideRegistry grants and expiry."""

    def setUp(self):
        self.clock = FakeClock(datetime(2024, 3, 1, 12, 0, 0))
        self.registry = OverrideRegistry(self.clock, schedule_expiry=False)

    def test_grant_is_active_until_expiry(self):
        self.registry.grant(TrackedSite.YOUTUBE, 15, "urgent work meeting today")
        self.assertTrue(self.registry.is_active(TrackedSite.YOUTUBE))
        self.assertFalse(self.registry.is_active(TrackedSite.REDDIT))

        self.clock.advance(minutes=14, seconds=59)
        self.assertTrue(self.registry.is_active(TrackedSite.YOUTUBE))

    def test_expired_grant_removed_lazily(self):
        """An expired grant is treated as absent and dropped on the next check."""
        self.registry.grant(TrackedSite.YOUTUBE, 15)
        self.clock.advance(minutes=15)

        self.assertFalse(self.registry.is_active(TrackedSite.YOUTUBE))
        self.assertIsNone(self.registry.get(TrackedSite.YOUTUBE))
        self.assertEqual(self.registry.active_grants(), {})

    def test_new_grant_replaces_old(self):
        self.registry.grant(TrackedSite.TIKTOK, 15, "first")
        self.clock.advance(minutes=10)
        grant = self.registry.grant(TrackedSite.TIKTOK, 15, "second")

        self.assertEqual(self.registry.get(TrackedSite.TIKTOK), grant)
        self.assertEqual(grant.expires_at, datetime(2024, 3, 1, 12, 25, 0))
        self.assertEqual(len(self.registry.active_grants()), 1)

    def test_remaining_seconds(self):
        grant = self.registry.grant(TrackedSite.NETFLIX, 15)
        self.clock.advance(minutes=5)
        self.assertEqual(grant.remaining_seconds(self.clock()), 600)
        self.clock.advance(hours=1)
        self.assertEqual(grant.remaining_seconds(self.clock()), 0)

    def test_clear_revokes_everything(self):
        self.registry.grant(TrackedSite.NETFLIX, 15)
        self.registry.grant(TrackedSite.REDDIT, 15)
        self.registry.clear()
        self.assertEqual(self.registry.active_grants(), {})

    def test_timer_expiry_notifies(self):
        """The scheduled removal drops the grant and calls on_expired."""
        registry = OverrideRegistry(self.clock, schedule_expiry=True)
        expired = []
        registry.on_expired = expired.append
        grant = registry.grant(TrackedSite.REDDIT, 15)
        registry.cancel_timers()

        # Fire the callback directly instead of waiting 15 minutes
        registry._expire(TrackedSite.REDDIT, grant)

        self.assertEqual(expired, [TrackedSite.REDDIT])
        self.assertEqual(registry.active_grants(), {})

    def test_stale_timer_ignored(self):
        registry = OverrideRegistry(self.clock, schedule_expiry=True)
        old = registry.grant(TrackedSite.REDDIT, 15)
        registry.grant(TrackedSite.REDDIT, 15)
        registry.cancel_timers()

        registry._expire(TrackedSite.REDDIT, old)
        self.assertTrue(registry.is_active(TrackedSite.REDDIT))


if __name__ == "__main__":
    unittest.main()
