"""
Requisition window evaluation.

A window is a [starts_at, ends_at) interval per level.  STATE manages the
windows and is never restricted; a level with no configured window is
treated as open.
"""

from __future__ import annotations

from datetime import datetime, timezone

from textbook_kernel.domain.dtos import WindowStatus
from textbook_kernel.domain.hierarchy import Level

# Private schools share the school window
WINDOW_LEVELS: dict[Level, Level] = {
    Level.SCHOOL: Level.SCHOOL,
    Level.PRIVATE_SCHOOL: Level.SCHOOL,
    Level.BLOCK: Level.BLOCK,
    Level.DISTRICT: Level.DISTRICT,
}


def window_level(level: Level) -> Level | None:
    """The window governing ``level``, or None if it is never restricted."""
    return WINDOW_LEVELS.get(level)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive timestamps (SQLite drops the offset) as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def evaluate_window(
    level: Level,
    starts_at: datetime | None,
    ends_at: datetime | None,
    now: datetime,
) -> WindowStatus:
    if window_level(level) is None:
        return WindowStatus(
            level, True, True, False, None, None,
            f"{level.value} users are not restricted by requisition windows",
        )
    if starts_at is None or ends_at is None:
        return WindowStatus(
            level, True, True, False, None, None,
            "No requisition window configured",
        )
    starts_at, ends_at, now = as_utc(starts_at), as_utc(ends_at), as_utc(now)
    has_started = now >= starts_at
    has_ended = now >= ends_at
    if not has_started:
        message = f"Requisition window opens on {starts_at.isoformat()}"
    elif has_ended:
        message = f"Requisition window closed on {ends_at.isoformat()}"
    else:
        message = f"Requisition window is open until {ends_at.isoformat()}"
    return WindowStatus(
        level=level,
        is_open=has_started and not has_ended,
        has_started=has_started,
        has_ended=has_ended,
        starts_at=starts_at,
        ends_at=ends_at,
        message=message,
    )
