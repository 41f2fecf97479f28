"""
DetoxBackendClient — HTTP client for the Digital Detox backend.

Handles:
- Daily limit fetch for an identity
- Usage push (the server max-merges per site per day, so resending is safe)
- Remote emergency access evaluation
- Session / identity lookup and health check

Every failure is raised as BackendError; the loops that call this client
catch it, log it and try again on their next scheduled run.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

import config
from core.exceptions import BackendError
from tracking.sites import TrackedSite, site_from_id

logger = logging.getLogger(__name__)


class DetoxBackendClient:
    """
    Thin wrapper over httpx for the backend's extension endpoints.

    Args:
        base_url: API base URL (falls back to config.DETOX_API_URL).
        timeout: Per-request timeout in seconds (falls back to config.HTTP_TIMEOUT).
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or config.DETOX_API_URL).rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else config.HTTP_TIMEOUT,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """Send a request and return the decoded JSON object."""
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            raise BackendError(f"{method} {path} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(f"{method} {path} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise BackendError(f"{method} {path} returned {type(data).__name__}, expected object")
        return data

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------

    def fetch_limits(self, identity: str) -> Dict[TrackedSite, int]:
        """
        Fetch daily limits (minutes) for an identity.

        Entries for unknown sites or with a malformed dailyLimit are skipped.

        Raises:
            BackendError: On network error, non-2xx status, success=false
                or a payload without a limits object.
        """
        if not identity:
            raise ValueError("identity is required to fetch limits")

        data = self._request("GET", config.LIMITS_PATH, params={"identity": identity})
        if not data.get("success"):
            raise BackendError(f"Limit fetch rejected: {data.get('message', 'no message')}")

        raw_limits = data.get("limits")
        if not isinstance(raw_limits, dict):
            raise BackendError("Limit fetch response has no limits object")

        limits: Dict[TrackedSite, int] = {}
        for key, entry in raw_limits.items():
            site = site_from_id(key)
            if site is None:
                logger.debug(f"Ignoring limit for unknown site '{key}'")
                continue
            value = entry.get("dailyLimit") if isinstance(entry, dict) else None
            try:
                limits[site] = int(value)
            except (TypeError, ValueError):
                logger.debug(f"Ignoring malformed limit for '{key}': {entry!r}")
        return limits

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def push_usage(self, identity: str, usage: Mapping[TrackedSite, int]) -> bool:
        """
        Report today's per-site seconds.

        This is an "at least this much" claim; the server keeps the max of
        what it has and what we send, so retransmission never double counts.

        Returns:
            True if the server acknowledged with success=true.

        Raises:
            BackendError: On network error or non-2xx status.
        """
        body = {
            "identity": identity,
            "usage": {site.value: int(seconds) for site, seconds in usage.items()},
        }
        data = self._request("POST", config.USAGE_SYNC_PATH, json=body)
        if not data.get("success"):
            logger.warning(f"Usage sync rejected: {data.get('message', 'no message')}")
            return False
        return True

    # ------------------------------------------------------------------
    # Emergency access
    # ------------------------------------------------------------------

    def request_emergency_access(self, identity: Optional[str], site: TrackedSite, reason: str) -> Dict[str, Any]:
        """
        Ask the backend's evaluator for an emergency grant.

        Returns:
            {"approved": bool, "message": str, "duration_minutes": int | None}

        Raises:
            BackendError: On network error, non-2xx status or missing approved flag.
        """
        body = {"identity": identity, "site": site.value, "reason": reason}
        data = self._request("POST", config.EMERGENCY_ACCESS_PATH, json=body)
        if "approved" not in data:
            raise BackendError("Emergency access response has no approved flag")

        duration = data.get("duration_minutes", data.get("duration"))
        try:
            duration = int(duration) if duration is not None else None
        except (TypeError, ValueError):
            duration = None

        return {
            "approved": bool(data["approved"]),
            "message": str(data.get("message", "")),
            "duration_minutes": duration,
        }

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def fetch_session_identity(self) -> Optional[str]:
        """
        Resolve the signed-in identity from the backend session.

        Returns:
            The identity, or None if not authenticated.

        Raises:
            BackendError: On network error or a server error.
        """
        try:
            response = self._client.get(config.SESSION_PATH)
        except httpx.HTTPError as e:
            raise BackendError(f"GET {config.SESSION_PATH} failed: {e}") from e

        # 401 is the normal "not signed in" answer
        if response.status_code == 401:
            return None
        if response.is_error:
            raise BackendError(f"GET {config.SESSION_PATH} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise BackendError("Session response is not JSON") from e

        if not isinstance(data, dict) or not data.get("authenticated"):
            return None
        identity = data.get("userId") or data.get("identity")
        return str(identity) if identity else None

    def check_health(self) -> bool:
        """Return True if the backend answers its health check."""
        try:
            return bool(self._request("GET", config.HEALTH_PATH).get("success"))
        except BackendError as e:
            logger.debug(f"Backend health check failed: {e}")
            return False

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self._client.close()
