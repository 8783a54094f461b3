"""
Timezone and epoch helpers.

Conventions:
- Internal processing: timezone-aware UTC datetimes
- Exchange payloads and persisted feature points: epoch milliseconds
"""

from __future__ import annotations

from datetime import datetime, timezone

UTC = timezone.utc


def now_utc() -> datetime:
    """Get current time in UTC (timezone-aware)."""
    return datetime.now(UTC)


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(now_utc().timestamp() * 1000)


def ms_to_datetime(ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def month_key(ms: int) -> str:
    """Return the YYYY-MM bucket an epoch-ms timestamp belongs to."""
    return ms_to_datetime(ms).strftime("%Y-%m")
