"""
CalDAV source calendar wrapper.
"""

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from datetime import tzinfo

import caldav
from caldav.lib import error as dav_error
from icalendar import Calendar

from caldav_gcal_sync.models import DEFAULT_ORIGIN_TAG
from caldav_gcal_sync.models import CalendarEvent
from caldav_gcal_sync.models import SourceAuthError
from caldav_gcal_sync.models import SourceNotFoundError
from caldav_gcal_sync.models import SourceParseError
from caldav_gcal_sync.models import SourceTransportError
from caldav_gcal_sync.utils import matches_filter
from caldav_gcal_sync.utils import to_utc

logger = logging.getLogger(__name__)


def _text(component, name: str) -> str | None:
    value = component.get(name)
    if value is None:
        return None
    return str(value)


def parse_vevent(
    component,
    origin_tag: str = DEFAULT_ORIGIN_TAG,
    default_tz: tzinfo = timezone.utc,
    fallback_uid: str | None = None,
) -> CalendarEvent:
    """
    Convert one icalendar VEVENT into a CalendarEvent.

    Expanded recurrence instances share the master's UID, so their uid is
    suffixed with the UTC RECURRENCE-ID to keep it unique within a fetch.

    Raises:
        ValueError: when the component has no usable UID or DTSTART, or its
            end precedes its start.
    """
    uid = _text(component, "UID") or fallback_uid
    if not uid:
        raise ValueError("VEVENT has no UID")
    if "DTSTART" not in component:
        raise ValueError(f"VEVENT {uid} has no DTSTART")

    raw_start = component.decoded("DTSTART")
    all_day = not isinstance(raw_start, datetime)
    start = to_utc(raw_start, default_tz)

    if "DTEND" in component:
        end = to_utc(component.decoded("DTEND"), default_tz)
    elif "DURATION" in component:
        end = start + component.decoded("DURATION")
    elif all_day:
        end = start + timedelta(days=1)
    else:
        end = start

    if "RECURRENCE-ID" in component:
        recurrence_id = to_utc(component.decoded("RECURRENCE-ID"), default_tz)
        uid = f"{uid}::{recurrence_id.isoformat()}"

    last_modified = None
    if "LAST-MODIFIED" in component:
        last_modified = to_utc(component.decoded("LAST-MODIFIED"), default_tz)

    return CalendarEvent(
        uid=uid,
        summary=_text(component, "SUMMARY") or "",
        start=start,
        end=end,
        description=_text(component, "DESCRIPTION"),
        location=_text(component, "LOCATION"),
        all_day=all_day,
        last_modified=last_modified,
        status=_text(component, "STATUS"),
        source=origin_tag,
    )


def parse_calendar_data(
    data: str | bytes,
    origin_tag: str = DEFAULT_ORIGIN_TAG,
    default_tz: tzinfo = timezone.utc,
    fallback_uid: str | None = None,
) -> list[CalendarEvent]:
    """Parse a VCALENDAR payload into events (one per VEVENT)."""
    calendar = Calendar.from_ical(data)
    return [
        parse_vevent(component, origin_tag, default_tz, fallback_uid)
        for component in calendar.walk("VEVENT")
    ]


class CalDAVSource:
    """Read-only access to a CalDAV calendar (all calendars of the principal by default)."""

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        calendar_name: str | None = None,
        origin_tag: str = DEFAULT_ORIGIN_TAG,
        default_tz: tzinfo = timezone.utc,
    ):
        self.url = url
        self.username = username
        self.password = password
        self.calendar_name = calendar_name
        self.origin_tag = origin_tag
        self.default_tz = default_tz
        self.client: caldav.DAVClient | None = None
        self.calendars: list = []

    def connect(self):
        """Authenticate and resolve the calendars to read."""
        client = caldav.DAVClient(url=self.url, username=self.username, password=self.password)
        try:
            principal = client.principal()
            calendars = principal.calendars()
        except dav_error.AuthorizationError as e:
            raise SourceAuthError(f"CalDAV authentication failed for {self.username}: {e}") from e
        except (dav_error.DAVError, OSError) as e:
            raise SourceTransportError(f"Failed to connect to {self.url}: {e}") from e

        if self.calendar_name:
            wanted = self.calendar_name.lower()
            calendars = [cal for cal in calendars if (cal.name or "").lower() == wanted]
            if not calendars:
                client.close()
                raise SourceNotFoundError(f"Calendar '{self.calendar_name}' not found at {self.url}")

        self.client = client
        self.calendars = calendars
        logger.info(f"Connected to CalDAV server ({len(calendars)} calendars)")

    def close(self):
        if self.client is not None:
            self.client.close()
            self.client = None
        self.calendars = []

    def list_calendars(self) -> list[tuple[str, str]]:
        """Return (name, url) for each calendar this source reads."""
        if self.client is None:
            self.connect()
        return [(cal.name or "(unnamed)", str(cal.url)) for cal in self.calendars]

    def fetch(
        self, start: datetime, end: datetime, text_filter: str | None = None
    ) -> list[CalendarEvent]:
        """Fetch events overlapping [start, end), expanded to single occurrences."""
        if self.client is None:
            self.connect()

        events: list[CalendarEvent] = []
        for calendar in self.calendars:
            try:
                objects = calendar.search(start=start, end=end, event=True, expand=True)
            except dav_error.AuthorizationError as e:
                raise SourceAuthError(f"Not authorized to read {calendar.url}: {e}") from e
            except (dav_error.DAVError, OSError) as e:
                raise SourceTransportError(f"Failed to fetch events from {calendar.url}: {e}") from e

            for obj in objects:
                try:
                    events.extend(
                        parse_calendar_data(obj.data, self.origin_tag, self.default_tz, str(obj.url))
                    )
                except ValueError as e:
                    raise SourceParseError(f"Unparsable event at {obj.url}: {e}") from e

        matched = [event for event in events if matches_filter(event, text_filter)]
        if text_filter:
            logger.debug(f"Filter {text_filter!r} kept {len(matched)} of {len(events)} events")
        return matched
