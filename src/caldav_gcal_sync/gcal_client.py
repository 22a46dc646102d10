"""
Google Calendar destination wrapper.

Every event this tool writes carries private extended properties; the
``source`` property is the scoping marker used to find them again, so events
without it are never read, modified, or deleted.
"""

import logging
import uuid
from datetime import datetime
from datetime import timezone
from pathlib import Path

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from caldav_gcal_sync.models import DEFAULT_ORIGIN_TAG
from caldav_gcal_sync.models import CalendarEvent
from caldav_gcal_sync.models import LinkQueryError
from caldav_gcal_sync.models import RemoteOperationError
from caldav_gcal_sync.models import SyncLink
from caldav_gcal_sync.utils import compute_content_hash

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

# Google caps events.list pages at 2500 items.
_PAGE_SIZE = 2500

# Deleting an event that is already gone yields 404, or 410 once purged.
_GONE_STATUSES = (404, 410)

# httplib2 transport errors (DNS, redirects, decoding) do not derive from OSError.
_REMOTE_ERRORS = (HttpError, GoogleAuthError, httplib2.HttpLib2Error, OSError)


def build_service(credentials_file: Path, impersonate_user: str | None = None):
    """Build an authenticated Calendar v3 service from a service-account key file."""
    creds = service_account.Credentials.from_service_account_file(
        str(credentials_file), scopes=SCOPES
    )
    if impersonate_user:
        # Domain-wide delegation
        creds = creds.with_subject(impersonate_user)
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


def _http_status(e: Exception) -> int | None:
    if isinstance(e, HttpError):
        return e.resp.status
    return None


def _time_field(value: datetime, all_day: bool) -> dict[str, str]:
    if all_day:
        return {"date": value.date().isoformat()}
    return {"dateTime": value.isoformat(), "timeZone": "UTC"}


class GoogleCalendarDestination:
    """Mutable destination calendar holding the synced copies."""

    def __init__(self, service, calendar_id: str, origin_tag: str = DEFAULT_ORIGIN_TAG):
        self.service = service
        self.calendar_id = calendar_id
        self.origin_tag = origin_tag
        # Extra events sharing an already-linked sourceUid, from the last list_links()
        self.duplicate_links: list[SyncLink] = []

    def build_body(self, event: CalendarEvent, sync_id: str | None = None) -> dict:
        """Translate a CalendarEvent into an events resource with provenance stamped on."""
        provenance = {
            "sourceUid": event.uid,
            "source": self.origin_tag,
            "origin": event.source or self.origin_tag,
            "lastSynced": datetime.now(timezone.utc).isoformat(),
            "contentHash": compute_content_hash(event),
        }
        if sync_id:
            provenance["syncId"] = sync_id

        body = {
            "summary": event.summary,
            "start": _time_field(event.start, event.all_day),
            "end": _time_field(event.end, event.all_day),
            "extendedProperties": {"private": provenance},
        }
        if event.description is not None:
            body["description"] = event.description
        if event.location is not None:
            body["location"] = event.location
        return body

    def test_connection(self):
        try:
            calendar = self.service.calendars().get(calendarId=self.calendar_id).execute()
        except _REMOTE_ERRORS as e:
            raise LinkQueryError(f"Cannot access Google calendar {self.calendar_id}: {e}") from e
        logger.info(f"Connected to Google calendar '{calendar.get('summary', self.calendar_id)}'")

    def list_links(self) -> dict[str, SyncLink]:
        """Return sourceUid → SyncLink for every event carrying our marker."""
        links: dict[str, SyncLink] = {}
        duplicates: list[SyncLink] = []
        page_token = None
        try:
            while True:
                response = (
                    self.service.events()
                    .list(
                        calendarId=self.calendar_id,
                        privateExtendedProperty=f"source={self.origin_tag}",
                        showDeleted=False,
                        maxResults=_PAGE_SIZE,
                        pageToken=page_token,
                    )
                    .execute()
                )
                for item in response.get("items", []):
                    self._add_link(links, duplicates, item)
                page_token = response.get("nextPageToken")
                if not page_token:
                    break
        except _REMOTE_ERRORS as e:
            raise LinkQueryError(f"Failed to find synced events: {e}") from e

        self.duplicate_links = duplicates
        logger.debug(f"Found {len(links)} synced events in {self.calendar_id}")
        return links

    @staticmethod
    def _add_link(links: dict[str, SyncLink], duplicates: list[SyncLink], item: dict):
        props = item.get("extendedProperties", {}).get("private", {})
        source_uid = props.get("sourceUid")
        event_id = item.get("id")
        if not source_uid or not event_id:
            return
        link = SyncLink(
            source_uid=source_uid,
            destination_id=event_id,
            content_hash=props.get("contentHash"),
            last_synced=props.get("lastSynced"),
        )
        existing = links.get(source_uid)
        if existing is not None:
            logger.warning(
                f"Destination events {existing.destination_id} and {event_id} both carry "
                f"sourceUid {source_uid}; keeping {existing.destination_id}"
            )
            duplicates.append(link)
            return
        links[source_uid] = link

    def create(self, event: CalendarEvent) -> str:
        body = self.build_body(event, sync_id=str(uuid.uuid4()))
        try:
            created = (
                self.service.events().insert(calendarId=self.calendar_id, body=body).execute()
            )
        except _REMOTE_ERRORS as e:
            raise RemoteOperationError("create", event.uid, e) from e
        logger.info(f"Created event: {event.summary}")
        return created["id"]

    def update(self, destination_id: str, event: CalendarEvent) -> None:
        body = self.build_body(event)
        try:
            self.service.events().update(
                calendarId=self.calendar_id, eventId=destination_id, body=body
            ).execute()
        except _REMOTE_ERRORS as e:
            raise RemoteOperationError("update", destination_id, e) from e
        logger.info(f"Updated event: {event.summary}")

    def delete(self, destination_id: str) -> None:
        try:
            self.service.events().delete(
                calendarId=self.calendar_id, eventId=destination_id
            ).execute()
        except _REMOTE_ERRORS as e:
            if _http_status(e) in _GONE_STATUSES:
                logger.debug(f"Event {destination_id} already deleted")
                return
            raise RemoteOperationError("delete", destination_id, e) from e
        logger.info(f"Deleted event: {destination_id}")
