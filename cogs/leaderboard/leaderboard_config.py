"""
Leaderboard Configuration
=========================
Styling, text templates and runtime settings for the activity leaderboards.
Runtime settings can be overridden from the environment (.env).
"""

import os
from enum import Enum
from typing import FrozenSet

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def parse_owner_ids(raw: str) -> FrozenSet[int]:
    """Parse a comma separated list of user ids, ignoring blanks."""
    ids = set()
    for part in (raw or "").split(","):
        part = part.strip()
        if part:
            ids.add(int(part))
    return frozenset(ids)


# ==================== KINDS ====================
class LeaderboardKind(str, Enum):
    MESSAGE = "message"
    VOICE = "voice"

    @classmethod
    def parse(cls, value: str) -> "LeaderboardKind":
        """Accept the canonical values plus the legacy 'vocal' label."""
        value = (value or "").strip().lower()
        if value == "vocal":
            return cls.VOICE
        return cls(value)


# ==================== COLORS ====================
EMBED_COLOR = 0x2F2B36  # Main embed color


# ==================== EMOJIS ====================
class Emojis:
    """Rank markers and decorations"""
    MEDALS = ("🥇", "🥈", "🥉")
    DEFAULT_RANK = "▫️"
    COLOR_MARKERS = ("🟢", "🔴", "🔵", "🟣", "🟡", "🟤", "⚫️", "⚪️", "🟠", "🟩")
    BULLET = "•"
    TIMER = "⏳"
    SUCCESS = "✅"
    ERROR = "❌"

    # Button labels
    LEFT_BUTTON = "⬅️"
    RIGHT_BUTTON = "➡️"


# ==================== TEXT TEMPLATES ====================
class Templates:
    """Leaderboard text templates"""

    DIVIDER_LINE = "──────────"

    TITLES = {
        LeaderboardKind.MESSAGE: "📊 Message Statistics",
        LeaderboardKind.VOICE: "🎙️ Voice Statistics",
    }

    EMPTY = "No results yet"
    WINNERS_HEADING = "**This cycle's winners:**"
    FOOTER_COUNTDOWN = "Cycle ends in: {days} days, {hours} hours, {minutes} minutes — Top 3 will be rewarded"
    FOOTER_NOT_STARTED = "Cycle not started"
    FOOTER_PAGE = "Page {page}/{pages}"
    TIMER_MESSAGE = "⏳ The leaderboard will reset <t:{unix}:R>"
    DURATION = "{days} days, {hours} hours, {minutes} minutes, {seconds} seconds"
    MESSAGE_COUNT = "{count} messages"


# ==================== BUTTON CONFIGURATION ====================
class ButtonConfig:
    """Pagination button custom ids: '{prefix}:{kind}:{page}'"""

    PREV_PREFIX = "lb_prev"
    NEXT_PREFIX = "lb_next"
    SEPARATOR = ":"


# ==================== LEADERBOARD SETTINGS ====================
class LeaderboardSettings:
    """General leaderboard settings"""

    RESULTS_PER_PAGE = 10
    LEADERBOARD_TOP = 10
    WINNERS_COUNT = 3
    MAX_MEMBERS_FETCH = 100

    DB_PATH = os.getenv("DB_PATH", "database/leaderboards.db")

    # Cycle lengths (seconds)
    CYCLE_PERIOD_SECONDS = _env_int("CYCLE_PERIOD_SECONDS", 7 * 24 * 60 * 60)
    SETUP_CYCLE_SECONDS = _env_int("SETUP_CYCLE_SECONDS", 4 * 60)

    # Scheduling (seconds)
    DEBOUNCE_SECONDS = _env_float("DEBOUNCE_SECONDS", 2.0)
    POST_FINALIZE_DELAY_SECONDS = 0.5
    REFRESH_INTERVAL_SECONDS = _env_float("REFRESH_INTERVAL_SECONDS", 30.0)
    EXPIRY_CHECK_SECONDS = _env_float("EXPIRY_CHECK_SECONDS", 15.0)


# ==================== BOT PROFILE ====================
class ProfileSettings:
    """Operator allow-list and cosmetic defaults"""

    OWNER_IDS = parse_owner_ids(os.getenv("OWNER_IDS", ""))
    STREAM_URL = os.getenv("STREAM_URL", "https://www.twitch.tv/discord")
    DEFAULT_ACTIVITY_TEXT = "Activity"
    DEFAULT_STREAM_TEXT = "Streaming"
