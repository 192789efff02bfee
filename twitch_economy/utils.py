"""Shared utility helpers for twitch-economy."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

_AMOUNT_RE = re.compile(r"^-?\d+$", re.ASCII)
_DURATION_RE = re.compile(r"^(\d+)([smhd])$", re.IGNORECASE)
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


class DurationParseError(ValueError):
    """Raised when a reminder duration token does not match <int><s|m|h|d>."""


def normalize_user(name: str | None) -> str:
    """Lowercase a username and strip a leading '@'."""
    return (name or "").strip().lstrip("@").lower()


def normalize_channel(channel: str | None) -> str:
    """Lowercase a channel name and strip a leading '#'."""
    return (channel or "").strip().lstrip("#").lower()


def now_utc() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def day_key(now: datetime | None = None, utc: bool = False) -> str:
    """Return the calendar-day bucket for ``now`` as YYYY-MM-DD.

    Uses the host's local date unless ``utc`` is set.
    """
    if now is None:
        now = now_utc()
    if utc:
        return now.astimezone(timezone.utc).strftime("%Y-%m-%d")
    return now.astimezone().strftime("%Y-%m-%d")


def format_duration(delta: timedelta | float) -> str:
    """Format a duration largest-unit-first: '1h 2m 3s', '2m 3s' or '3s'."""
    seconds = delta.total_seconds() if isinstance(delta, timedelta) else float(delta)
    if seconds <= 0:
        return "0s"
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def parse_duration(token: str | None) -> timedelta:
    """Parse '30s', '10m', '1h' or '2d' into a timedelta."""
    match = _DURATION_RE.match((token or "").strip())
    if not match:
        raise DurationParseError(f"Invalid duration: {token!r}")
    value, unit = int(match.group(1)), match.group(2).lower()
    return timedelta(seconds=value * _UNIT_SECONDS[unit])


def try_parse_duration(token: str | None) -> timedelta | None:
    try:
        return parse_duration(token)
    except DurationParseError:
        return None


def parse_amount(raw: str | None) -> int | None:
    """Parse a coin amount, accepting thousands-separator commas.

    Returns None for anything that is not a plain integer.
    """
    if not raw:
        return None
    cleaned = raw.replace(",", "").strip()
    if not _AMOUNT_RE.match(cleaned):
        return None
    return int(cleaned)


def fmt_int(value: int) -> str:
    """Format an integer with thousands separators."""
    return f"{value:,}"
