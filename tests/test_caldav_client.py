"""
Unit tests for the CalDAV source adapter.

Parsing runs against real icalendar components; the caldav client itself is
replaced with MagicMock objects.
"""

from datetime import datetime
from datetime import timedelta
from datetime import timezone
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest
from caldav.lib import error as dav_error

from caldav_gcal_sync import caldav_client
from caldav_gcal_sync.caldav_client import CalDAVSource
from caldav_gcal_sync.caldav_client import parse_calendar_data
from caldav_gcal_sync.models import SourceAuthError
from caldav_gcal_sync.models import SourceNotFoundError
from caldav_gcal_sync.models import SourceParseError
from caldav_gcal_sync.models import SourceTransportError
from tests.conftest import make_vevent

UTC = timezone.utc

# ---------------------------------------------------------------------------
# parse_calendar_data
# ---------------------------------------------------------------------------


class TestParse:
    def test_basic_event(self):
        (event,) = parse_calendar_data(
            make_vevent("u1", "Standup", ["LOCATION:Room 1", "DESCRIPTION:Daily"]),
            origin_tag="my-tag",
        )
        assert event.uid == "u1"
        assert event.summary == "Standup"
        assert event.location == "Room 1"
        assert event.description == "Daily"
        assert event.start == datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
        assert event.end == datetime(2026, 3, 1, 11, 0, tzinfo=UTC)
        assert event.all_day is False
        assert event.source == "my-tag"

    def test_status_and_last_modified_are_kept(self):
        (event,) = parse_calendar_data(
            make_vevent("u1", extra_lines=["STATUS:CONFIRMED", "LAST-MODIFIED:20260220T120000Z"])
        )
        assert event.status == "CONFIRMED"
        assert event.last_modified == datetime(2026, 2, 20, 12, 0, tzinfo=UTC)

    def test_all_day_without_dtend_lasts_one_day(self):
        (event,) = parse_calendar_data(make_vevent("u1", extra_lines=["DTSTART;VALUE=DATE:20260301"]))
        assert event.all_day is True
        assert event.start == datetime(2026, 3, 1, tzinfo=UTC)
        assert event.end == event.start + timedelta(days=1)

    def test_duration_sets_end(self):
        (event,) = parse_calendar_data(
            make_vevent("u1", extra_lines=["DTSTART:20260301T100000Z", "DURATION:PT30M"])
        )
        assert event.end == datetime(2026, 3, 1, 10, 30, tzinfo=UTC)

    def test_missing_end_and_duration_is_instant(self):
        (event,) = parse_calendar_data(make_vevent("u1", extra_lines=["DTSTART:20260301T100000Z"]))
        assert event.end == event.start

    def test_floating_time_uses_default_timezone(self):
        (event,) = parse_calendar_data(
            make_vevent("u1", extra_lines=["DTSTART:20260301T100000", "DTEND:20260301T110000"]),
            default_tz=ZoneInfo("Europe/Berlin"),
        )
        assert event.start == datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
        assert event.end == datetime(2026, 3, 1, 10, 0, tzinfo=UTC)

    def test_recurrence_instance_gets_unique_uid(self):
        (event,) = parse_calendar_data(
            make_vevent(
                "series-1",
                extra_lines=[
                    "DTSTART:20260302T100000Z",
                    "DTEND:20260302T110000Z",
                    "RECURRENCE-ID:20260302T100000Z",
                ],
            )
        )
        assert event.uid == "series-1::2026-03-02T10:00:00+00:00"

    def test_missing_uid_uses_fallback(self):
        data = make_vevent("x").replace("UID:x\r\n", "")
        (event,) = parse_calendar_data(data, fallback_uid="https://dav/cal/x.ics")
        assert event.uid == "https://dav/cal/x.ics"

    def test_missing_uid_without_fallback_is_rejected(self):
        data = make_vevent("x").replace("UID:x\r\n", "")
        with pytest.raises(ValueError):
            parse_calendar_data(data)

    def test_end_before_start_is_rejected(self):
        with pytest.raises(ValueError):
            parse_calendar_data(
                make_vevent(
                    "u1", extra_lines=["DTSTART:20260301T110000Z", "DTEND:20260301T100000Z"]
                )
            )


# ---------------------------------------------------------------------------
# CalDAVSource
# ---------------------------------------------------------------------------


def _dav_object(uid: str, summary: str = "Test Event", extra_lines: list[str] = ()):
    obj = MagicMock()
    obj.data = make_vevent(uid, summary, extra_lines)
    obj.url = f"https://dav.example.com/cal/{uid}.ics"
    return obj


def _calendar(name: str, objects=(), search_error: Exception | None = None):
    cal = MagicMock()
    cal.name = name
    cal.url = f"https://dav.example.com/{name}/"
    if search_error is not None:
        cal.search.side_effect = search_error
    else:
        cal.search.return_value = list(objects)
    return cal


@pytest.fixture
def dav_client(monkeypatch):
    client = MagicMock()
    monkeypatch.setattr(caldav_client.caldav, "DAVClient", MagicMock(return_value=client))
    return client


def _source(**kwargs) -> CalDAVSource:
    return CalDAVSource("https://dav.example.com", "alice", "secret", **kwargs)


def test_fetch_reads_all_calendars(dav_client, window):
    dav_client.principal.return_value.calendars.return_value = [
        _calendar("Home", [_dav_object("h1")]),
        _calendar("Work", [_dav_object("w1"), _dav_object("w2")]),
    ]

    events = _source().fetch(window.start, window.end)

    assert [event.uid for event in events] == ["h1", "w1", "w2"]


def test_fetch_searches_window_with_expansion(dav_client, window):
    cal = _calendar("Home", [_dav_object("h1")])
    dav_client.principal.return_value.calendars.return_value = [cal]

    _source().fetch(window.start, window.end)

    cal.search.assert_called_once_with(start=window.start, end=window.end, event=True, expand=True)


def test_fetch_applies_text_filter(dav_client, window):
    dav_client.principal.return_value.calendars.return_value = [
        _calendar("Home", [_dav_object("a", "Standup"), _dav_object("b", "Dentist")])
    ]

    events = _source().fetch(window.start, window.end, text_filter="standup")

    assert [event.uid for event in events] == ["a"]


def test_named_calendar_is_selected(dav_client, window):
    dav_client.principal.return_value.calendars.return_value = [
        _calendar("Home", [_dav_object("h1")]),
        _calendar("Work", [_dav_object("w1")]),
    ]

    events = _source(calendar_name="work").fetch(window.start, window.end)

    assert [event.uid for event in events] == ["w1"]


def test_unknown_calendar_name(dav_client):
    dav_client.principal.return_value.calendars.return_value = [_calendar("Home")]

    with pytest.raises(SourceNotFoundError):
        _source(calendar_name="Nope").connect()


def test_auth_failure(dav_client):
    dav_client.principal.side_effect = dav_error.AuthorizationError(reason="Unauthorized")

    with pytest.raises(SourceAuthError):
        _source().connect()


def test_connection_failure(dav_client):
    dav_client.principal.side_effect = ConnectionError("connection refused")

    with pytest.raises(SourceTransportError):
        _source().connect()


def test_search_failure_is_transport_error(dav_client, window):
    dav_client.principal.return_value.calendars.return_value = [
        _calendar("Home", search_error=dav_error.ReportError(reason="500"))
    ]

    with pytest.raises(SourceTransportError):
        _source().fetch(window.start, window.end)


def test_unparsable_event_is_parse_error(dav_client, window):
    bad = _dav_object("bad", extra_lines=["DTSTART:20260301T110000Z", "DTEND:20260301T100000Z"])
    dav_client.principal.return_value.calendars.return_value = [_calendar("Home", [bad])]

    with pytest.raises(SourceParseError):
        _source().fetch(window.start, window.end)


def test_list_calendars_and_close(dav_client):
    dav_client.principal.return_value.calendars.return_value = [_calendar("Home")]
    source = _source()

    assert source.list_calendars() == [("Home", "https://dav.example.com/Home/")]

    source.close()
    dav_client.close.assert_called_once()
    assert source.client is None
