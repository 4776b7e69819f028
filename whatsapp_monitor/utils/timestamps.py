"""Timestamp utilities for the WhatsApp monitor.

Connection state and messages use integer Unix seconds; audit log entries
use ISO 8601 strings.
"""

import time
from datetime import UTC, datetime


def now_ts() -> int:
    """Get the current Unix timestamp in whole seconds.

    Examples:
        >>> ts = now_ts()
        >>> ts  # e.g., 1760745022
    """
    return int(time.time())


def now_iso() -> str:
    """Get the current UTC timestamp in ISO 8601 format.

    Returns:
        Current timestamp as ISO 8601 string (YYYY-MM-DDTHH:MM:SSZ).
    """
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def today_iso() -> str:
    """Get today's date in ISO format (YYYY-MM-DD), used for daily log files."""
    return datetime.now(UTC).strftime("%Y-%m-%d")


def ts_to_iso(ts: int | None) -> str | None:
    """Convert a Unix timestamp to an ISO 8601 string.

    Args:
        ts: Seconds since the epoch, or None.

    Returns:
        ISO 8601 string in UTC, or None when ``ts`` is None.

    Examples:
        >>> ts_to_iso(0)
        '1970-01-01T00:00:00Z'
    """
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
