"""
Tracked sites and URL classification.

The set of tracked sites is closed: usage and limits are keyed by the
site's stable identifier (e.g. "instagram"), while URL matching uses its
domain (e.g. "instagram.com") with subdomain support.
"""

import logging
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class TrackedSite(str, Enum):
    """Sites subject to daily limits. The value is the identifier used on the wire."""

    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    FACEBOOK = "facebook"
    TWITTER = "twitter"
    REDDIT = "reddit"
    NETFLIX = "netflix"

    @property
    def domain(self) -> str:
        return _SITE_INFO[self]["domain"]

    @property
    def display_name(self) -> str:
        return _SITE_INFO[self]["name"]


_SITE_INFO = {
    TrackedSite.INSTAGRAM: {"domain": "instagram.com", "name": "Instagram"},
    TrackedSite.TIKTOK: {"domain": "tiktok.com", "name": "TikTok"},
    TrackedSite.YOUTUBE: {"domain": "youtube.com", "name": "YouTube"},
    TrackedSite.FACEBOOK: {"domain": "facebook.com", "name": "Facebook"},
    TrackedSite.TWITTER: {"domain": "twitter.com", "name": "Twitter"},
    TrackedSite.REDDIT: {"domain": "reddit.com", "name": "Reddit"},
    TrackedSite.NETFLIX: {"domain": "netflix.com", "name": "Netflix"},
}


def _normalise_hostname(hostname: str) -> str:
    host = hostname.lower().rstrip(".")
    if host.startswith("www."):
        host = host[len("www."):]
    return host


def classify_url(url: Any) -> Optional[TrackedSite]:
    """
    Map a page URL to the tracked site it belongs to.

    Matching is on domain boundaries: "m.youtube.com" is YouTube,
    "notinstagram.com" is not Instagram. Anything that cannot be parsed
    classifies as untracked, so a bad URL never blocks or tracks.

    Args:
        url: Page URL (any value is accepted).

    Returns:
        The matching TrackedSite, or None if untracked.
    """
    if not isinstance(url, str) or not url:
        return None

    try:
        hostname = urlparse(url).hostname
    except ValueError as e:
        logger.debug(f"Unparseable URL treated as untracked: {e}")
        return None

    if not hostname:
        return None

    host = _normalise_hostname(hostname)
    for site in TrackedSite:
        domain = site.domain
        if host == domain or host.endswith("." + domain):
            return site
    return None


def site_from_id(value: Any) -> Optional[TrackedSite]:
    """
    Resolve a site identifier ("instagram") or domain ("instagram.com").

    Returns:
        The TrackedSite, or None for unknown values.
    """
    if isinstance(value, TrackedSite):
        return value
    if not isinstance(value, str):
        return None

    key = _normalise_hostname(value.strip())
    for site in TrackedSite:
        if key == site.value or key == site.domain:
            return site
    return None
