"""
Stateless event helpers shared by the adapters and the reconciler.
"""

import hashlib
from datetime import date
from datetime import datetime
from datetime import timezone
from datetime import tzinfo

from caldav_gcal_sync.models import CalendarEvent


def to_utc(value: date | datetime, default_tz: tzinfo = timezone.utc) -> datetime:
    """
    Normalize an iCalendar DATE or DATE-TIME value to an aware UTC datetime.

    Floating (naive) times are interpreted in ``default_tz``.  DATE values
    become midnight UTC so all-day events keep their calendar date regardless
    of the local timezone.
    """
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=default_tz)
    return value.astimezone(timezone.utc)


def matches_filter(event: CalendarEvent, text_filter: str | None) -> bool:
    """Case-insensitive substring match across summary, description and location."""
    if not text_filter:
        return True
    needle = text_filter.lower()
    for text in (event.summary, event.description, event.location):
        if text and needle in text.lower():
            return True
    return False


def compute_content_hash(event: CalendarEvent) -> str:
    """
    SHA256 over the fields written to the destination.

    ``last_modified`` and ``status`` are left out: neither is written, so a
    change in them must not trigger an update.
    """
    parts = [
        event.summary or "",
        event.description or "",
        event.location or "",
        event.start.isoformat(),
        event.end.isoformat(),
        "1" if event.all_day else "0",
    ]
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


def describe_event(event: CalendarEvent) -> str:
    """Short human-readable identity used in log lines and error messages."""
    return f'"{event.summary}" ({event.uid})'
