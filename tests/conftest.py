"""
Shared pytest fixtures and event helpers.
"""

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from caldav_gcal_sync.models import CalendarEvent
from caldav_gcal_sync.models import SyncWindow

NOW = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


def make_event(
    uid: str,
    summary: str = "Test Event",
    hours_from_now: int = 2,
    description: str | None = None,
    location: str | None = None,
) -> CalendarEvent:
    """Return a one-hour CalendarEvent starting ``hours_from_now`` after NOW."""
    start = NOW + timedelta(hours=hours_from_now)
    return CalendarEvent(
        uid=uid,
        summary=summary,
        start=start,
        end=start + timedelta(hours=1),
        description=description,
        location=location,
        source="icloud-sync",
    )


def make_vevent(uid: str, summary: str = "Test Event", extra_lines: list[str] = ()) -> str:
    """Return a minimal VCALENDAR with one VEVENT."""
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//test//EN",
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"SUMMARY:{summary}",
        "DTSTAMP:20260224T000000Z",
    ]
    if not any(line.startswith("DTSTART") for line in extra_lines):
        lines.extend(["DTSTART:20260301T100000Z", "DTEND:20260301T110000Z"])
    lines.extend(extra_lines)
    lines.extend(["END:VEVENT", "END:VCALENDAR"])
    return "\r\n".join(lines) + "\r\n"


@pytest.fixture
def window():
    return SyncWindow.from_days(30, now=NOW)


@pytest.fixture
def sync_logger():
    return logging.getLogger("test_sync")
