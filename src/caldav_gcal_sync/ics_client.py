"""
iCalendar feed source: a published .ics URL or a local .ics file.
"""

import logging
from datetime import datetime
from datetime import timezone
from datetime import tzinfo
from pathlib import Path

import requests
from icalendar import Calendar

from caldav_gcal_sync.caldav_client import parse_calendar_data
from caldav_gcal_sync.models import DEFAULT_ORIGIN_TAG
from caldav_gcal_sync.models import CalendarEvent
from caldav_gcal_sync.models import SourceAuthError
from caldav_gcal_sync.models import SourceNotFoundError
from caldav_gcal_sync.models import SourceParseError
from caldav_gcal_sync.models import SourceTransportError
from caldav_gcal_sync.utils import matches_filter

logger = logging.getLogger(__name__)

_AUTH_STATUSES = (401, 403)


def _is_remote(location: str) -> bool:
    return location.startswith(("http://", "https://", "webcal://"))


def overlaps(event: CalendarEvent, start: datetime, end: datetime) -> bool:
    """True if ``event`` intersects [start, end); zero-length events count at their instant."""
    if event.start == event.end:
        return start <= event.start < end
    return event.start < end and event.end > start


class IcsFeedSource:
    """Read-only source backed by a whole-calendar .ics document.

    The feed is downloaded (or read) again on every fetch. Recurring events
    are not expanded: a master VEVENT is one event at its first occurrence.
    """

    def __init__(
        self,
        location: str,
        origin_tag: str = DEFAULT_ORIGIN_TAG,
        default_tz: tzinfo = timezone.utc,
        timeout: float = 30.0,
    ):
        self.location = location
        self.origin_tag = origin_tag
        self.default_tz = default_tz
        self.timeout = timeout
        self.calendar_name: str | None = None

    def _read(self) -> bytes:
        if _is_remote(self.location):
            return self._download()
        path = Path(self.location).expanduser()
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise SourceNotFoundError(f"Calendar file {path} does not exist") from e
        except OSError as e:
            raise SourceTransportError(f"Cannot read calendar file {path}: {e}") from e

    def _download(self) -> bytes:
        url = self.location
        if url.startswith("webcal://"):
            url = "https://" + url[len("webcal://") :]
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status in _AUTH_STATUSES:
                raise SourceAuthError(f"Not authorized to read {url}: {e}") from e
            if status == 404:
                raise SourceNotFoundError(f"Calendar feed {url} not found") from e
            raise SourceTransportError(f"Failed to download {url}: {e}") from e
        except requests.RequestException as e:
            raise SourceTransportError(f"Failed to download {url}: {e}") from e
        return response.content

    def connect(self):
        """Read the feed once to verify it is reachable and parsable."""
        data = self._read()
        try:
            calendar = Calendar.from_ical(data)
        except ValueError as e:
            raise SourceParseError(f"{self.location} is not an iCalendar document: {e}") from e
        name = calendar.get("X-WR-CALNAME")
        self.calendar_name = str(name) if name is not None else None
        logger.info(f"Connected to iCalendar feed {self.location}")

    def close(self):
        pass

    def list_calendars(self) -> list[tuple[str, str]]:
        if self.calendar_name is None:
            self.connect()
        return [(self.calendar_name or "(unnamed)", self.location)]

    def fetch(
        self, start: datetime, end: datetime, text_filter: str | None = None
    ) -> list[CalendarEvent]:
        """Parse the whole feed and keep the events overlapping [start, end)."""
        data = self._read()
        try:
            events = parse_calendar_data(data, self.origin_tag, self.default_tz)
        except ValueError as e:
            raise SourceParseError(f"Unparsable event in {self.location}: {e}") from e

        in_window = [event for event in events if overlaps(event, start, end)]
        matched = [event for event in in_window if matches_filter(event, text_filter)]
        logger.debug(
            f"Feed {self.location}: {len(events)} events, {len(in_window)} in window, "
            f"{len(matched)} after filter"
        )
        return matched
