"""
Emergency override registry.

One time-boxed grant per site at most. Expiry is enforced twice: a timer
removes the grant when it runs out, and is_active() drops an expired grant
the next time it is consulted (timers may not fire on time after a sleep).
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from core.clock import Clock, system_clock
from tracking.sites import TrackedSite

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmergencyGrant:
    """A time-boxed exemption from blocking for one site."""

    site: TrackedSite
    granted_at: datetime
    expires_at: datetime
    reason: str = ""

    def remaining_seconds(self, now: datetime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))


class OverrideRegistry:
    """Live emergency grants keyed by site."""

    def __init__(self, clock: Clock = system_clock, schedule_expiry: bool = True) -> None:
        """
        Args:
            clock: Source of "now".
            schedule_expiry: Start a removal timer for each grant. Tests turn
                this off and rely on the lazy check.
        """
        self._clock = clock
        self._schedule_expiry = schedule_expiry
        self._grants: Dict[TrackedSite, EmergencyGrant] = {}
        self._timers: Dict[TrackedSite, threading.Timer] = {}
        self._lock = threading.Lock()
        self.on_expired = None  # Optional[Callable[[TrackedSite], None]]

    def grant(self, site: TrackedSite, duration_minutes: int, reason: str = "") -> EmergencyGrant:
        """Create a grant starting now, replacing any existing grant for the site."""
        now = self._clock()
        grant = EmergencyGrant(
            site=site,
            granted_at=now,
            expires_at=now + timedelta(minutes=duration_minutes),
            reason=reason,
        )
        with self._lock:
            self._grants[site] = grant
            self._cancel_timer(site)
            if self._schedule_expiry:
                timer = threading.Timer(duration_minutes * 60, self._expire, args=(site, grant))
                timer.daemon = True
                self._timers[site] = timer
                timer.start()

        logger.info(f"Emergency access granted for {site.value}: {duration_minutes} min")
        return grant

    def is_active(self, site: TrackedSite) -> bool:
        """True iff a grant for the site exists and has not expired. Drops expired grants."""
        with self._lock:
            grant = self._grants.get(site)
            if grant is None:
                return False
            if self._clock() < grant.expires_at:
                return True
            del self._grants[site]
            self._cancel_timer(site)

        logger.info(f"Emergency access expired for {site.value}")
        return False

    def get(self, site: TrackedSite) -> Optional[EmergencyGrant]:
        """The live grant for a site, if any."""
        if not self.is_active(site):
            return None
        with self._lock:
            return self._grants.get(site)

    def active_grants(self) -> Dict[TrackedSite, EmergencyGrant]:
        """All live grants (expired ones are dropped first)."""
        for site in list(self._grants):
            self.is_active(site)
        with self._lock:
            return dict(self._grants)

    def clear(self) -> None:
        """Revoke every grant (day rollover, identity change, logout)."""
        with self._lock:
            self._grants.clear()
            for site in list(self._timers):
                self._cancel_timer(site)

    def cancel_timers(self) -> None:
        """Stop pending expiry timers without revoking grants (shutdown)."""
        with self._lock:
            for site in list(self._timers):
                self._cancel_timer(site)

    def _cancel_timer(self, site: TrackedSite) -> None:
        timer = self._timers.pop(site, None)
        if timer is not None:
            timer.cancel()

    def _expire(self, site: TrackedSite, grant: EmergencyGrant) -> None:
        """Timer callback: remove the grant if it is still the one we scheduled."""
        with self._lock:
            if self._grants.get(site) is not grant:
                return
            del self._grants[site]
            self._timers.pop(site, None)

        logger.info(f"Emergency access ended for {site.value}")
        if self.on_expired:
            try:
                self.on_expired(site)
            except Exception as e:
                logger.debug(f"on_expired callback error: {e}")
