"""Configuration settings for FocusFlow."""

import logging
import os
import sys
from pathlib import Path
from dotenv import load_dotenv


def get_base_dir() -> Path:
    """Get the directory containing this file (project root)."""
    return Path(__file__).parent


def get_user_data_dir() -> Path:
    """
    Get the directory for user-writable data (presets, auth tokens).

    Uses FOCUSFLOW_DATA_DIR when set, otherwise a platform-specific
    location in the user's home directory.

    Returns:
        Path to the user data directory.
    """
    override = os.getenv("FOCUSFLOW_DATA_DIR", "")
    if override:
        return Path(override)

    if sys.platform == 'darwin':
        # macOS: ~/Library/Application Support/FocusFlow
        return Path.home() / "Library" / "Application Support" / "FocusFlow"
    elif sys.platform == 'win32':
        appdata = os.environ.get('APPDATA')
        if appdata:
            return Path(appdata) / "FocusFlow"
        return Path.home() / "AppData" / "Roaming" / "FocusFlow"
    # Linux: ~/.local/share/FocusFlow
    return Path.home() / ".local" / "share" / "FocusFlow"


# Load environment variables from .env in the project root, regardless of cwd
load_dotenv(get_base_dir() / ".env")

BASE_DIR = get_base_dir()
USER_DATA_DIR = get_user_data_dir()


def _validate_api_key_format(key: str, key_type: str) -> bool:
    """
    Validate API key format to catch configuration errors early.

    Args:
        key: The API key to validate.
        key_type: Type of key ("openai", "gemini", "supabase")

    Returns:
        True if key format is valid, False otherwise.
    """
    if not key or len(key) < 10:
        return False

    expected_prefixes = {
        "openai": "sk-",
        "gemini": "AI",
        # Supabase anon/service keys are JWTs (legacy) or sb_ prefixed keys
        "supabase": ("eyJ", "sb_publishable_", "sb_secret_"),
    }

    if key_type in expected_prefixes:
        prefix = expected_prefixes[key_type]
        if isinstance(prefix, tuple):
            return any(key.startswith(p) for p in prefix)
        return key.startswith(prefix)

    return True


def _get_api_key(env_var: str, key_type: str = "") -> str:
    """
    Read an API key from the environment, warning when its format looks wrong.

    Args:
        env_var: Environment variable name.
        key_type: Optional key type for format validation logging.

    Returns:
        API key string, or empty string if not set.
    """
    key = os.getenv(env_var, "")
    if key and key_type and not _validate_api_key_format(key, key_type):
        logging.getLogger(__name__).warning(
            f"{env_var} may have invalid format for {key_type} key"
        )
    return key


# Text classification provider
# Options: "openai" or "gemini"
CLASSIFIER_PROVIDER = os.getenv("CLASSIFIER_PROVIDER", "openai")

# OpenAI Configuration
OPENAI_API_KEY = _get_api_key("OPENAI_API_KEY", "openai")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

# Gemini Configuration
GEMINI_API_KEY = _get_api_key("GEMINI_API_KEY", "gemini")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

# Seconds before a classification request is abandoned
CLASSIFIER_TIMEOUT = 30.0
CLASSIFIER_MAX_RETRIES = 2

# Supabase Configuration (auth, flow records, activity telemetry)
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = _get_api_key("SUPABASE_ANON_KEY", "supabase")
# Service role key is only needed by the extension API server
SUPABASE_SERVICE_ROLE_KEY = _get_api_key("SUPABASE_SERVICE_ROLE_KEY", "supabase")

# Table names
FLOWS_TABLE = "flows"
ACTIVITIES_TABLE = "user_activities"
DISTRACTION_ALERTS_TABLE = "distraction_alerts"

# Extension API server
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8787"))
API_MONITOR_DEFAULT_LIMIT = 50

# Local session states
STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_PAUSED = "paused"
STATUS_COMPLETED = "completed"

# Persisted flow states
FLOW_STATUS_ACTIVE = "active"
FLOW_STATUS_COMPLETED = "completed"
FLOW_STATUS_ABANDONED = "abandoned"
FLOW_STATUSES = (FLOW_STATUS_ACTIVE, FLOW_STATUS_COMPLETED, FLOW_STATUS_ABANDONED)

# Timer settings (seconds)
TICK_INTERVAL = 1.0
CHECKIN_FIRST_DELAY = 45.0  # Let the user get started before the first check-in
CHECKIN_INTERVAL = 90.0

# Check-in responses
FALLBACK_CHECKIN_QUESTION = "Are you staying on task?"
ACTIVITY_FOCUS_CONFIRMED = "Focus Confirmed"
ACTIVITY_SELF_REPORTED = "Self-Reported Distraction"
REASON_FOCUS_CONFIRMED = "User confirmed they are on task during a check-in."
REASON_SELF_REPORTED = "You reported getting distracted."

# Task setup validation
MIN_DESCRIPTION_LENGTH = 10
MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 240
DEFAULT_DURATION_MINUTES = 30

# Flow insert retry (schema cache hiccups only)
FLOW_INSERT_MAX_ATTEMPTS = 3
FLOW_INSERT_BACKOFF_SECONDS = 1.0

# Task presets (most recent first)
PRESETS_KEY = "focusFlowPresets"
PRESETS_LIMIT = 5
PRESETS_FILE = USER_DATA_DIR / "presets.json"

# Stored Supabase auth tokens for the terminal app
AUTH_FILE = USER_DATA_DIR / "auth.json"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # Can override in .env: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

try:
    USER_DATA_DIR.mkdir(parents=True, exist_ok=True)
except Exception as e:
    logging.getLogger(__name__).error(f"Failed to create data directory {USER_DATA_DIR}: {e}")
