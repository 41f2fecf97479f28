"""
Daily limit store.

Holds the per-site daily limit (minutes) used by blocking decisions.
Refreshed wholesale from the backend; keeps the last known values when a
refresh fails, and uses an effectively unlimited value for every site when
no identity is associated with this installation.
"""

import logging
from types import MappingProxyType
from typing import Dict, Mapping, Optional

import config
from core.exceptions import BackendError
from core.storage import LocalStore
from tracking.sites import TrackedSite, site_from_id

logger = logging.getLogger(__name__)

_LIMITS_KEY = "daily_limits"


class LimitStore:
    """Per-site daily limits with a local cache for offline starts."""

    def __init__(self, store: LocalStore, client=None) -> None:
        """
        Args:
            store: Local state for the limits cache.
            client: DetoxBackendClient (or anything with fetch_limits()).
        """
        self._store = store
        self._client = client
        self._limits: Dict[TrackedSite, int] = self._load_cached()

    def _load_cached(self) -> Dict[TrackedSite, int]:
        raw = self._store.get(_LIMITS_KEY, {}) or {}
        limits: Dict[TrackedSite, int] = {}
        if not isinstance(raw, dict):
            return limits
        for key, minutes in raw.items():
            site = site_from_id(key)
            if site is None:
                continue
            # Accept both {"instagram": 30} and the wire shape {"instagram": {"dailyLimit": 30}}
            if isinstance(minutes, dict):
                minutes = minutes.get("dailyLimit")
            try:
                limits[site] = int(minutes)
            except (TypeError, ValueError):
                continue
        return limits

    def _save(self) -> None:
        self._store.set(**{_LIMITS_KEY: {site.value: minutes for site, minutes in self._limits.items()}})

    def fetch(self, identity: Optional[str]) -> Optional[Dict[TrackedSite, int]]:
        """
        Get the limit map for an identity without storing it.

        Without an identity every site gets UNLIMITED_LIMIT_MINUTES and no
        request is made.

        Returns:
            The new map, or None if there is no client or the fetch failed.
        """
        if not identity:
            return {site: config.UNLIMITED_LIMIT_MINUTES for site in TrackedSite}

        if self._client is None:
            logger.debug("No backend client configured, keeping current limits")
            return None

        try:
            return self._client.fetch_limits(identity)
        except BackendError as e:
            logger.warning(f"Could not refresh limits, keeping last known values: {e}")
            return None

    def refresh(self, identity: Optional[str]) -> bool:
        """
        Reload limits for an identity: fetch(), then replace() on success.

        Any failure keeps the previous map.

        Returns:
            True if the map was replaced.
        """
        limits = self.fetch(identity)
        if limits is None:
            return False
        self.replace(limits)
        logger.info(f"Limits refreshed for {len(limits)} site(s)")
        return True

    def replace(self, limits: Mapping[TrackedSite, int]) -> None:
        """Replace the whole map (no merge) and persist it."""
        self._limits = dict(limits)
        self._save()

    def limit_for(self, site: TrackedSite) -> Optional[int]:
        """
        Daily limit in minutes, or None when the site is unlimited.

        A zero or negative limit counts as unlimited.
        """
        minutes = self._limits.get(site)
        if not minutes or minutes <= 0:
            return None
        return minutes

    def snapshot(self) -> Mapping[TrackedSite, int]:
        """Read-only copy of the current limits."""
        return MappingProxyType(dict(self._limits))

    def clear(self) -> None:
        """Forget all limits (identity change / logout)."""
        self._limits = {}
        self._save()
