"""
Usage ledger for Digital Detox.

Tracks seconds spent on each tracked site for the current local day.
Resets when the date changes. The ledger is an authoritative cache for
blocking decisions on this device; the backend holds the cross-device
totals, so persistence here is for restart recovery only.
"""

import logging
from datetime import date
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from core.clock import Clock, system_clock
from core.storage import LocalStore
from tracking.sites import TrackedSite, site_from_id

logger = logging.getLogger(__name__)

_USAGE_KEY = "daily_usage"
_RESET_DATE_KEY = "last_reset_date"


class UsageLedger:
    """
    Per-site elapsed seconds for today.

    Every mutation is written through to the LocalStore. The store decides
    whether the write is synchronous or coalesced in the background.
    """

    def __init__(self, store: LocalStore, clock: Clock = system_clock) -> None:
        """Load today's counters from the store and reset if the day changed."""
        self._store = store
        self._clock = clock
        self._usage: Dict[TrackedSite, int] = self._load_usage()
        self._last_reset: Optional[str] = store.get(_RESET_DATE_KEY)

        self.reset_if_new_day(self._clock().date())

    def _load_usage(self) -> Dict[TrackedSite, int]:
        raw = self._store.get(_USAGE_KEY, {}) or {}
        usage: Dict[TrackedSite, int] = {}
        if not isinstance(raw, dict):
            logger.warning("Stored usage is malformed, starting from zero")
            return usage
        for key, seconds in raw.items():
            site = site_from_id(key)
            if site is None:
                logger.debug(f"Dropping usage for unknown site '{key}'")
                continue
            try:
                usage[site] = max(0, int(seconds))
            except (TypeError, ValueError):
                logger.debug(f"Dropping malformed usage value for '{key}': {seconds!r}")
        return usage

    def _save(self) -> None:
        self._store.set(**{
            _USAGE_KEY: {site.value: seconds for site, seconds in self._usage.items()},
            _RESET_DATE_KEY: self._last_reset,
        })

    @property
    def last_reset_date(self) -> Optional[str]:
        """ISO date of the last reset (the day these counters belong to)."""
        return self._last_reset

    def reset_if_new_day(self, today: date) -> bool:
        """
        Clear all counters if `today` differs from the stored reset date.

        Safe to call as often as needed: only the first call on a new day
        resets anything.

        Returns:
            True if a reset happened.
        """
        today_iso = today.isoformat()
        if self._last_reset == today_iso:
            return False

        logger.info(f"New day detected ({self._last_reset} -> {today_iso}). Resetting usage.")
        self._usage = {}
        self._last_reset = today_iso
        self._save()
        return True

    def record_tick(self, site: TrackedSite) -> int:
        """
        Add exactly one second of usage for a site.

        Returns:
            The site's new total in seconds.
        """
        total = self._usage.get(site, 0) + 1
        self._usage[site] = total
        self._save()
        return total

    def used_seconds(self, site: TrackedSite) -> int:
        """Seconds used today on a site."""
        return self._usage.get(site, 0)

    def snapshot(self) -> Mapping[TrackedSite, int]:
        """Read-only copy of today's counters."""
        return MappingProxyType(dict(self._usage))

    def persist(self) -> None:
        """Write the current counters to the store (used when tracking stops)."""
        self._save()

    def clear(self) -> None:
        """Drop all counters without touching the reset date (logout / identity change)."""
        self._usage = {}
        self._save()
        logger.info("Usage ledger cleared")
