"""Timestamp parsing and display helpers."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone

log = logging.getLogger(__name__)

# Internet date-time without fractional seconds, as the service normally emits
_STRICT_FORMATS = ("%Y-%m-%dT%H:%M:%SZ", "%Y-%m-%dT%H:%M:%S%z")


def parse_reset_timestamp(value: str | None) -> datetime | None:
    """Parse a ``resets_at`` value into an aware UTC datetime.

    Tries strict ISO-8601 first, then a flexible parse that accepts
    fractional seconds and ``+HH:MM`` offsets. Returns None when both fail
    so a bad timestamp never fails the whole poll.
    """
    if not value:
        return None
    for fmt in _STRICT_FORMATS:
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        log.warning("Unparseable reset timestamp: %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_reset_time(reset_at: datetime | None, now: datetime | None = None) -> str:
    """Describe the time left in the session window.

    Examples: "2h 15m remaining", "0h 45m remaining", "Session reset",
    "No active session".
    """
    if reset_at is None:
        return "No active session"
    now = now or datetime.now(timezone.utc)
    total_seconds = int((reset_at - now).total_seconds())
    if total_seconds <= 0:
        return "Session reset"
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    return f"{hours}h {minutes}m remaining"


def format_clock(moment: datetime | None) -> str:
    """Local wall-clock time, e.g. "14:05". Empty when unknown."""
    if moment is None:
        return ""
    return moment.astimezone().strftime("%H:%M")


def pct_str(value: float | None) -> str:
    """Format a percentage value as a compact string."""
    if value is None or not math.isfinite(value):
        return "--"
    return f"{int(value)}%"


def format_credits(used_cents: float, limit_cents: int) -> str:
    """Extra usage as dollars: "$11.39 / $50"."""
    return f"${used_cents / 100.0:.2f} / ${int(limit_cents) // 100}"
