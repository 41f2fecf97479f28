"""
DetoxEngine — tracking, limit and override orchestration for Digital Detox.

Owns the usage ledger, limit store, override registry and warning state,
and runs the three loops:

    tracking tick (1 s)     accrue time on the focused tracked tab, warn near
                            the limit, redirect once the limit is reached
    usage sync (2 min)      push today's usage to the backend
    limit refresh (1 min)   pull limits, then re-check the active tab
    rules check (1 min)     midnight reset, then re-check the active tab

Browser events (tab activated/updated/removed, window focus) come in
through the on_* methods. Every event handler and loop body runs under
one engine lock so state is only ever touched by one callback at a time.
Network calls are made outside the lock.

This module has ZERO browser dependencies. The browser is reached only
through the BrowserHost passed in.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Set
from urllib.parse import urlencode

import config
from core.clock import Clock, seconds_until_midnight, system_clock
from core.exceptions import BackendError, EvaluatorUnavailableError
from core.host import BrowserHost, NullHost, Tab
from core.storage import LocalStore
from emergency import create_evaluator
from emergency.base import Evaluation, reason_too_short
from tracking.limit_store import LimitStore
from tracking.overrides import OverrideRegistry
from tracking.sites import TrackedSite, classify_url, site_from_id
from tracking.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentFocus:
    """The one tab currently accruing time."""

    tab_id: int
    site: TrackedSite
    started_at: datetime


def build_blocked_url(site: TrackedSite, used_minutes: int, limit_minutes: Optional[int]) -> str:
    """Interstitial URL with display-only site/usage/limit parameters."""
    query = urlencode({
        "site": site.domain,
        "usage": used_minutes,
        "limit": limit_minutes or config.DEFAULT_DISPLAY_LIMIT_MINUTES,
    })
    return f"{config.BLOCKED_PAGE_URL}?{query}"


def is_interstitial(url: str) -> bool:
    """True if the URL already points at the blocked page."""
    page = config.BLOCKED_PAGE_URL.rsplit("/", 1)[-1]
    return bool(url) and page in url


class DetoxEngine:
    """
    Core tracking/blocking engine.

    Handles:
    - Tracking state machine (Idle / Tracking(site, tab))
    - Block decisions and interstitial redirects
    - Near-limit warnings
    - Usage push and limit pull against the backend
    - Identity changes, blocking toggle and emergency access requests
    """

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def __init__(
        self,
        store: LocalStore,
        client=None,
        host: Optional[BrowserHost] = None,
        clock: Clock = system_clock,
        evaluator=None,
        background_io: bool = True,
        schedule_expiry: bool = True,
    ) -> None:
        """
        Args:
            store: Local persisted state.
            client: DetoxBackendClient, or None to run fully offline.
            host: Browser host (defaults to NullHost).
            clock: Source of "now" for day rollover, grants and warnings.
            evaluator: Emergency evaluator (defaults to create_evaluator()).
            background_io: Run network work triggered by messages on a
                daemon thread. Tests turn this off for determinism.
            schedule_expiry: Passed to OverrideRegistry.
        """
        self.store = store
        self.client = client
        self.host: BrowserHost = host or NullHost()
        self.clock = clock
        self.background_io = background_io

        self._lock = threading.RLock()
        self.should_stop = threading.Event()
        self._threads: list = []

        # Persisted settings
        self.identity: Optional[str] = store.get("identity")
        self.identity_email: Optional[str] = store.get("identity_email")
        self.is_blocking: bool = bool(store.get("is_blocking", True))

        # State
        self.ledger = UsageLedger(store, clock)
        self.limits = LimitStore(store, client)
        self.overrides = OverrideRegistry(clock, schedule_expiry=schedule_expiry)
        self.overrides.on_expired = self._on_override_expired
        self.evaluator = evaluator or create_evaluator(client=client)
        self.current_focus: Optional[CurrentFocus] = None
        self.last_warning: Dict[TrackedSite, datetime] = {}

        # ---- Callbacks (optional, for a status UI) ----
        self.on_blocked: Optional[Callable[[TrackedSite, int], None]] = None

        logger.info(
            f"Engine ready (identity: {'set' if self.identity else 'none'}, "
            f"blocking: {self.is_blocking}, evaluator: {getattr(self.evaluator, 'name', '?')})"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Load limits and start the background loops."""
        self.should_stop.clear()
        self.refresh_limits()

        loops = [
            ("tracking", config.TRACKING_TICK_SECONDS, self.tick),
            ("usage-sync", config.USAGE_SYNC_INTERVAL, self.sync_usage),
            ("limit-refresh", config.LIMIT_REFRESH_INTERVAL, self.refresh_limits),
            ("rules-check", config.RULES_CHECK_INTERVAL, self.check_rules),
        ]
        for name, interval, func in loops:
            thread = threading.Thread(
                target=self._run_every, args=(interval, func, name), name=name, daemon=True
            )
            self._threads.append(thread)
            thread.start()
        logger.info("Tracking started")

    def stop(self) -> None:
        """Stop the loops and persist state. Call before exit."""
        self.should_stop.set()
        with self._lock:
            self._stop_tracking()
        for thread in self._threads:
            if thread.is_alive():
                thread.join(timeout=2.0)
                if thread.is_alive():
                    logger.warning(f"{thread.name} loop did not stop within timeout")
        self._threads = []
        self.overrides.cancel_timers()
        self.store.flush()
        logger.info("Engine stopped")

    def _run_every(self, interval: float, func: Callable[[], object], name: str) -> None:
        """Call func every interval seconds until stopped. Errors never end the loop."""
        while not self.should_stop.wait(interval):
            try:
                func()
            except Exception as e:
                logger.error(f"{name} loop error: {e}", exc_info=True)

    def _run_io(self, func: Callable[[], object]) -> None:
        """Fire-and-forget network work triggered by a message."""
        if self.background_io:
            threading.Thread(target=func, daemon=True).start()
        else:
            func()

    # ------------------------------------------------------------------
    # Block decision
    # ------------------------------------------------------------------

    def should_block(self, site: TrackedSite) -> bool:
        """
        Decide whether a site is blocked right now.

        Blocking disabled, a live emergency grant, or no limit all mean
        "not blocked". Otherwise blocked once today's usage reaches the limit.
        """
        if not self.is_blocking:
            return False
        if self.overrides.is_active(site):
            return False
        limit_minutes = self.limits.limit_for(site)
        if limit_minutes is None:
            return False
        return self.ledger.used_seconds(site) >= limit_minutes * 60

    def blocked_sites(self) -> Set[TrackedSite]:
        """Every tracked site that is blocked right now."""
        with self._lock:
            if not self.is_blocking:
                return set()
            return {site for site in TrackedSite if self.should_block(site)}

    # ------------------------------------------------------------------
    # Browser events
    # ------------------------------------------------------------------

    def on_tab_activated(self, tab: Tab) -> None:
        """The user switched to a tab."""
        with self._lock:
            self._stop_tracking()
            self._start_tracking(tab)

    def on_tab_updated(self, tab: Tab, status: str) -> None:
        """
        A tab's navigation state changed.

        "complete" on the active tab restarts tracking on it. "loading" on
        an already-blocked site redirects straight away.
        """
        with self._lock:
            if status == "complete" and tab.active:
                self._stop_tracking()
                self._start_tracking(tab)

            if status == "loading" and tab.url and not is_interstitial(tab.url):
                site = classify_url(tab.url)
                if site is not None and self.should_block(site):
                    self._redirect(tab.id, site)
                    if self.current_focus and self.current_focus.tab_id == tab.id:
                        self.current_focus = None

    def on_window_focus_changed(self, focused: bool) -> None:
        """Browser window gained or lost focus."""
        with self._lock:
            self._stop_tracking()
            if not focused:
                return
            tab = self._host_call("get_active_tab")
            if tab is not None:
                self._start_tracking(tab)

    def on_tab_removed(self, tab_id: int) -> None:
        """A tab was closed."""
        with self._lock:
            if self.current_focus and self.current_focus.tab_id == tab_id:
                self._stop_tracking()

    def _start_tracking(self, tab: Optional[Tab]) -> None:
        if tab is None or not tab.url:
            return
        site = classify_url(tab.url)
        if site is None:
            return

        if self.should_block(site):
            self._redirect(tab.id, site)
            return

        self.current_focus = CurrentFocus(tab_id=tab.id, site=site, started_at=self.clock())
        logger.info(f"Started tracking {site.value} (tab {tab.id})")

    def _stop_tracking(self) -> None:
        if self.current_focus is None:
            return
        # Usage is counted every tick; just persist and clear
        self.ledger.persist()
        logger.info(f"Stopped tracking {self.current_focus.site.value}")
        self.current_focus = None

    # ------------------------------------------------------------------
    # Tracking tick
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """
        One tracking-loop step.

        Accrues a second only when the tracked tab is the active tab and
        its window is focused. Never waits on I/O.
        """
        with self._lock:
            self.check_new_day()

            focus = self.current_focus
            if focus is None:
                return

            active = self._host_call("get_active_tab")
            focused = self._host_call("is_window_focused")
            if active is None or active.id != focus.tab_id or not focused:
                return

            site = focus.site
            total = self.ledger.record_tick(site)
            if total % 10 == 0:
                logger.debug(f"{site.value}: {total // 60}m {total % 60}s")

            self._maybe_warn(site, focus.tab_id)

            if self.should_block(site):
                self._redirect(focus.tab_id, site)
                self._stop_tracking()

    def _maybe_warn(self, site: TrackedSite, tab_id: int) -> None:
        """Warn once per cooldown window when usage reaches the warning threshold."""
        limit_minutes = self.limits.limit_for(site)
        if limit_minutes is None:
            return

        used_minutes = self.ledger.used_seconds(site) // 60
        percentage = used_minutes / limit_minutes * 100
        if percentage < config.WARNING_THRESHOLD_PERCENT or self.should_block(site):
            return

        now = self.clock()
        last = self.last_warning.get(site)
        if last is not None and (now - last).total_seconds() <= config.WARNING_COOLDOWN_SECONDS:
            return

        self.last_warning[site] = now
        logger.info(f"Near-limit warning for {site.display_name}: {used_minutes}/{limit_minutes} min")
        self._host_call("show_warning", tab_id, used_minutes, limit_minutes)

    def _redirect(self, tab_id: int, site: TrackedSite) -> None:
        used_minutes = self.ledger.used_seconds(site) // 60
        limit_minutes = self.limits.limit_for(site)
        url = build_blocked_url(site, used_minutes, limit_minutes)
        logger.info(f"Blocking {site.value} on tab {tab_id} ({used_minutes}/{limit_minutes} min)")
        self._host_call("redirect", tab_id, url)

        if self.on_blocked:
            try:
                self.on_blocked(site, used_minutes)
            except Exception as e:
                logger.debug(f"on_blocked callback error: {e}")

    def _host_call(self, method: str, *args):
        """Call the host, logging (never raising) its failures."""
        try:
            return getattr(self.host, method)(*args)
        except Exception as e:
            logger.warning(f"Browser host {method} failed: {e}")
            return None

    # ------------------------------------------------------------------
    # Periodic checks
    # ------------------------------------------------------------------

    def check_new_day(self) -> bool:
        """Reset usage, warnings and grants if the local date changed."""
        with self._lock:
            if not self.ledger.reset_if_new_day(self.clock().date()):
                return False
            self.last_warning.clear()
            self.overrides.clear()
            return True

    def check_rules(self) -> None:
        """Midnight check, then re-evaluate the active tab."""
        self.check_new_day()
        self.enforce_active_tab()

    def enforce_active_tab(self) -> None:
        """Redirect the active tab if its site became blocked without a tab event."""
        with self._lock:
            tab = self._host_call("get_active_tab")
            if tab is None or not tab.url or is_interstitial(tab.url):
                return
            site = classify_url(tab.url)
            if site is None or not self.should_block(site):
                return
            self._redirect(tab.id, site)
            if self.current_focus and self.current_focus.tab_id == tab.id:
                self._stop_tracking()

    def _on_override_expired(self, site: TrackedSite) -> None:
        self.enforce_active_tab()

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync_usage(self) -> bool:
        """
        Push today's non-zero usage to the backend.

        Returns:
            True if the backend acknowledged the push.
        """
        with self._lock:
            identity = self.identity
            usage = {site: seconds for site, seconds in self.ledger.snapshot().items() if seconds > 0}

        if not identity or self.client is None:
            return False
        if not usage:
            return False

        try:
            ok = self.client.push_usage(identity, usage)
        except BackendError as e:
            logger.warning(f"Usage sync failed (will retry next interval): {e}")
            return False

        if ok:
            logger.debug(f"Synced usage for {len(usage)} site(s)")
        return ok

    def refresh_limits(self) -> bool:
        """Pull limits for the current identity, then re-check the active tab."""
        with self._lock:
            identity = self.identity

        # Network call happens outside the engine lock
        limits = self.limits.fetch(identity)
        if limits is None:
            return False

        with self._lock:
            if identity != self.identity:
                # The newer identity's own refresh (or logout) owns the map
                logger.info("Identity changed during limit refresh, discarding result")
                return False
            self.limits.replace(limits)
            logger.info(f"Limits refreshed for {len(limits)} site(s)")

        self.enforce_active_tab()
        return True

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def login(self, identity: str, email: Optional[str] = None) -> None:
        """
        Associate this installation with an identity.

        Switching to a different identity drops the previous one's usage,
        grants and limits before the new limits are fetched.
        """
        if not identity:
            raise ValueError("identity is required")

        with self._lock:
            previous = self.identity
            if previous != identity:
                if previous:
                    logger.info("Different identity, clearing previous usage and grants")
                    self.ledger.clear()
                    self.overrides.clear()
                    self.last_warning.clear()
                self.limits.clear()

            self.identity = identity
            self.identity_email = email
            self.store.set(identity=identity, identity_email=email)
            logger.info(f"Identity set ({email or 'no email'})")

        self._run_io(self.refresh_limits)

    def logout(self) -> None:
        """Forget the identity and everything tied to it."""
        with self._lock:
            self.identity = None
            self.identity_email = None
            self.ledger.clear()
            self.overrides.clear()
            self.last_warning.clear()
            self.limits.refresh(None)
            self.store.remove(["identity", "identity_email"])
            logger.info("Logged out, local state cleared")

    def set_blocking(self, enabled: bool) -> None:
        """Turn blocking on or off globally."""
        with self._lock:
            self.is_blocking = bool(enabled)
            self.store.set(is_blocking=self.is_blocking)
            logger.info(f"Blocking {'enabled' if self.is_blocking else 'disabled'}")
        self.enforce_active_tab()

    def request_emergency_access(self, site_id: str, reason: Optional[str]) -> Evaluation:
        """
        Evaluate an emergency access request and grant it if approved.

        The length precondition is checked first; the evaluator is only
        consulted for reasons that pass it.
        """
        rejection = reason_too_short(reason)
        if rejection is not None:
            return rejection

        site = site_from_id(site_id)
        if site is None:
            return Evaluation(
                granted=False,
                message=f"'{site_id}' is not a tracked site",
                error_type="unknown_site",
            )

        reason = reason.strip()
        with self._lock:
            identity = self.identity

        try:
            evaluation = self.evaluator.evaluate(reason, site, identity)
        except EvaluatorUnavailableError as e:
            logger.warning(f"Emergency evaluator unavailable: {e}")
            return Evaluation(
                granted=False,
                message="Could not evaluate request. Please try again later.",
                error_type="evaluator_unavailable",
            )

        if evaluation.granted:
            with self._lock:
                self.overrides.grant(site, evaluation.duration_minutes, reason)
            self.enforce_active_tab()
        return evaluation

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> Dict:
        """
        Snapshot for the popup / interstitial.

        Returns:
            dict with keys: daily_usage, daily_limits, is_blocking, identity,
            tracking, active_overrides, seconds_until_reset.
        """
        with self._lock:
            now = self.clock()
            tracking = None
            if self.current_focus:
                tracking = {"site": self.current_focus.site.value, "tab_id": self.current_focus.tab_id}
            return {
                "daily_usage": {site.value: seconds for site, seconds in self.ledger.snapshot().items()},
                "daily_limits": {site.value: minutes for site, minutes in self.limits.snapshot().items()},
                "is_blocking": self.is_blocking,
                "identity": self.identity,
                "tracking": tracking,
                "active_overrides": {
                    site.value: grant.remaining_seconds(now)
                    for site, grant in self.overrides.active_grants().items()
                },
                "seconds_until_reset": seconds_until_midnight(self.clock),
            }
