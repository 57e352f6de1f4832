from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_now(now: datetime | None) -> datetime:
    if now is None:
        return utc_now()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def days_since(timestamp: datetime, now: datetime) -> int:
    """Whole days elapsed, floored; future timestamps count as 0."""

    delta = now - timestamp
    return max(0, int(delta.total_seconds() // 86_400))
