"""Constants and configuration for Token Cat."""

from pathlib import Path

# App identity
APP_NAME = "Token Cat"
APP_TAGLINE = "A cat that gets tired when you do."

# API
USAGE_API_URL = "https://api.anthropic.com/api/oauth/usage"
PROFILE_API_URL = "https://api.anthropic.com/api/oauth/profile"
OAUTH_BETA_HEADER = "oauth-2025-04-20"
USER_AGENT = "claude-code/2.1.5"
REQUEST_TIMEOUT_SECONDS = 10
POLL_INTERVAL_SECONDS = 5 * 60

# Credentials (written by the Claude Code CLI)
KEYCHAIN_SERVICE = "Claude Code-credentials"
KEYCHAIN_TIMEOUT_SECONDS = 5

# Logging
LOG_PATH = Path.home() / "Library" / "Logs" / "tokencat.log"

# Cat state thresholds (floored session percentage)
THRESHOLD_MODERATE = 40   # 0-39   = active
THRESHOLD_STRAINED = 80   # 40-79  = moderate
THRESHOLD_EXHAUSTED = 100  # 80-99  = strained, 100+ = exhausted

# Mock mode
MOCK_LEVELS = (0, 20, 60, 90, 100)
MOCK_SESSION_HOURS = 3

# Colors per cat state
COLOR_IDLE = "#89b4fa"
COLOR_ACTIVE = "#a6e3a1"
COLOR_MODERATE = "#f9e2af"
COLOR_STRAINED = "#fab387"
COLOR_EXHAUSTED = "#f38ba8"
COLOR_CAT = "#1e1e2e"

# Seconds per animation frame
ANIMATION_INTERVALS = {
    "idle": 0.35,
    "active": 0.15,
    "moderate": 0.4,
    "strained": 0.8,
    "exhausted": 1.2,
}

_STATE_COLORS = {
    "idle": COLOR_IDLE,
    "active": COLOR_ACTIVE,
    "moderate": COLOR_MODERATE,
    "strained": COLOR_STRAINED,
    "exhausted": COLOR_EXHAUSTED,
}


def color_for_state(state: str) -> str:
    """Return the accent color for a cat state value."""
    return _STATE_COLORS.get(state, COLOR_IDLE)
