"""Configuration settings for Digital Detox."""

import os
import sys
from pathlib import Path
from dotenv import load_dotenv


def is_bundled() -> bool:
    """
    Check if the application is running from a PyInstaller bundle.

    Returns:
        True if running from a bundled executable, False otherwise.
    """
    return getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS')


def get_user_data_dir() -> Path:
    """
    Get the directory for user-writable data (usage ledger, limits cache, identity).

    DETOX_DATA_DIR overrides everything (used by tests and portable installs).
    For development: BASE_DIR/data
    For bundled apps: a dedicated per-platform folder that persists across updates.

    Returns:
        Path to the user data directory.
    """
    override = os.environ.get("DETOX_DATA_DIR")
    if override:
        return Path(override)

    if not is_bundled():
        return Path(__file__).parent / "data"

    if sys.platform == 'darwin':
        # macOS: ~/Library/Application Support/DigitalDetox
        return Path.home() / "Library" / "Application Support" / "DigitalDetox"
    if sys.platform == 'win32':
        # Windows: %APPDATA%/DigitalDetox
        appdata = os.environ.get('APPDATA')
        if appdata:
            return Path(appdata) / "DigitalDetox"
        return Path.home() / "AppData" / "Roaming" / "DigitalDetox"
    # Linux: ~/.local/share/DigitalDetox
    return Path.home() / ".local" / "share" / "DigitalDetox"


def _get_int(env_var: str, default: int) -> int:
    """Read an integer setting, falling back to default on a malformed value."""
    raw = os.getenv(env_var, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        import logging
        logging.getLogger(__name__).warning(
            f"{env_var}={raw!r} is not an integer, using {default}"
        )
        return default


# Load environment variables from .env file (only in development)
if not is_bundled():
    # Explicitly load from the project root (where config.py lives)
    _env_path = Path(__file__).parent / ".env"
    load_dotenv(_env_path)

# User data directory (for writable data like the usage ledger)
USER_DATA_DIR = get_user_data_dir()

# Local persisted state (identity, usage, last reset date, limits cache, blocking flag)
STATE_FILE = USER_DATA_DIR / "detox_state.json"

# --- Remote backend ---
DETOX_API_URL = os.getenv("DETOX_API_URL", "http://localhost:3001/api")
HTTP_TIMEOUT = _get_int("HTTP_TIMEOUT", 10)  # Seconds per request

LIMITS_PATH = "/limits"
USAGE_SYNC_PATH = "/usage-sync"
EMERGENCY_ACCESS_PATH = "/emergency-access"
SESSION_PATH = "/check-auth"
HEALTH_PATH = "/health"

# --- Timers (seconds) ---
TRACKING_TICK_SECONDS = 1
USAGE_SYNC_INTERVAL = 120  # Push usage every 2 minutes
LIMIT_REFRESH_INTERVAL = 60  # Pull limits every minute
RULES_CHECK_INTERVAL = 60  # Midnight check + re-evaluate the active tab

# --- Limits ---
# Used for every site when no identity is associated with this installation
UNLIMITED_LIMIT_MINUTES = 999999
# Shown on the interstitial when a site has no configured limit
DEFAULT_DISPLAY_LIMIT_MINUTES = 60

# --- Near-limit warnings ---
WARNING_THRESHOLD_PERCENT = 90
WARNING_COOLDOWN_SECONDS = 15 * 60

# --- Emergency access ---
# Evaluator selection: "local" (keyword heuristic), "remote" (backend), "auto"
EMERGENCY_EVALUATOR = os.getenv("EMERGENCY_EVALUATOR", "local").lower()
EVALUATOR_LOCAL = "local"
EVALUATOR_REMOTE = "remote"
EVALUATOR_AUTO = "auto"

MIN_REASON_LENGTH = _get_int("MIN_REASON_LENGTH", 20)
EMERGENCY_SCORE_THRESHOLD = 13
EMERGENCY_GRANT_MINUTES = 15
EMERGENCY_CATEGORY_WEIGHT = 10
EMERGENCY_LENGTH_BONUS = 5
EMERGENCY_LENGTH_BONUS_MIN_CHARS = 50  # Bonus applies when length is strictly greater
EMERGENCY_PHRASE_BONUS = 3
EMERGENCY_PHRASE = "need to"

# Keyword taxonomy for the local evaluator (order matters for the approval message)
EMERGENCY_KEYWORDS = {
    "work": ["work", "job", "meeting", "boss", "colleague", "client", "project"],
    "emergency": ["emergency", "urgent", "important", "critical", "asap"],
    "family": ["family", "mom", "dad", "parent", "child", "relative"],
    "health": ["health", "medical", "doctor", "hospital", "sick"],
    "education": [
        "school", "homework", "assignment", "deadline", "class",
        "study", "learning", "education", "research",
    ],
}

# --- Interstitial ---
# Relative to the extension root; the shim resolves it with chrome.runtime.getURL()
BLOCKED_PAGE_URL = os.getenv("BLOCKED_PAGE_URL", "blocked.html")

# --- Local bridge for the browser extension shim ---
BRIDGE_HOST = "127.0.0.1"
BRIDGE_PORT = _get_int("BRIDGE_PORT", 5055)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # Can override in .env: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
