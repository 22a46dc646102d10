"""
Pure data models and adapter contracts, no CalDAV or Google imports.
"""

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from pathlib import Path
from typing import Protocol

DEFAULT_CONFIG = Path.home() / ".config/caldav-gcal-sync.conf"
DEFAULT_ORIGIN_TAG = "icloud-sync"
DEFAULT_WINDOW_DAYS = 30


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class ConfigError(CalendarSyncError):
    """Missing or invalid configuration."""


class FetchError(CalendarSyncError):
    """Source calendar could not be read. Fatal to the run."""


class SourceAuthError(FetchError):
    """Source server rejected the credentials."""


class SourceTransportError(FetchError):
    """Source server unreachable or returned a protocol error."""


class SourceParseError(FetchError):
    """Source returned data that could not be turned into events."""


class SourceNotFoundError(FetchError):
    """Configured source calendar does not exist."""


class LinkQueryError(CalendarSyncError):
    """Destination link lookup failed. Fatal to the run."""


class RemoteOperationError(CalendarSyncError):
    """A single create/update/delete against the destination failed."""

    def __init__(self, operation: str, target: str, cause: Exception):
        self.operation = operation
        self.target = target
        self.cause = cause
        super().__init__(f"{operation} {target} failed: {cause}")


@dataclass
class CalendarEvent:
    """One normalized event occurrence."""

    uid: str
    summary: str
    start: datetime
    end: datetime
    description: str | None = None
    location: str | None = None
    all_day: bool = False
    last_modified: datetime | None = None
    status: str | None = None
    source: str = ""

    def __post_init__(self):
        if not self.uid:
            raise ValueError("event uid must not be empty")
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError(f"event {self.uid}: start/end must be timezone-aware")
        if self.end < self.start:
            raise ValueError(f"event {self.uid}: end {self.end} is before start {self.start}")


@dataclass(frozen=True)
class SyncLink:
    """Association between a source uid and the destination event carrying it."""

    source_uid: str
    destination_id: str
    content_hash: str | None = None
    last_synced: str | None = None


@dataclass(frozen=True)
class SyncWindow:
    start: datetime
    end: datetime

    @classmethod
    def from_days(cls, days: int, now: datetime | None = None) -> "SyncWindow":
        if days < 0:
            raise ValueError(f"window days must be >= 0, got {days}")
        start = now or datetime.now(timezone.utc)
        return cls(start=start, end=start + timedelta(days=days))

    def describe(self) -> str:
        return f"{self.start:%Y-%m-%d %H:%M} to {self.end:%Y-%m-%d %H:%M} {self.start:%Z}"


@dataclass
class SyncResult:
    """Outcome of one reconciliation run."""

    processed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    duplicates: int = 0
    deferred: int = 0
    errors: list[str] = field(default_factory=list)
    fatal_error: str | None = None
    aborted: bool = False
    dry_run: bool = False

    @property
    def failed(self) -> bool:
        return self.fatal_error is not None

    @property
    def ok(self) -> bool:
        return not self.errors and not self.failed

    def summary(self) -> str:
        text = f"{self.created} created, {self.updated} updated, {self.deleted} deleted"
        if self.unchanged:
            text += f", {self.unchanged} unchanged"
        if self.errors:
            text += f", {len(self.errors)} errors"
        return text


@dataclass
class SyncPreview:
    source_events: int
    linked_events: int
    window: SyncWindow


@dataclass
class SyncConfig:
    """Configuration for a sync pair.

    The source is either a CalDAV server (``caldav_url`` + credentials) or an
    iCalendar feed (``ics_url``: an http(s) URL or a local file path).
    """

    google_credentials_file: Path
    google_calendar_id: str
    caldav_url: str | None = None
    caldav_username: str | None = None
    caldav_password: str | None = None
    ics_url: str | None = None
    caldav_calendar: str | None = None
    google_impersonate_user: str | None = None
    origin_tag: str = DEFAULT_ORIGIN_TAG
    window_days: int = DEFAULT_WINDOW_DAYS
    text_filter: str | None = None
    timezone: str = "UTC"
    dry_run: bool = False
    skip_unchanged: bool = False
    verbose: bool = False
    yes: bool = False  # Auto-confirm without prompting
    daily_at: str = "00:00"
    interval_minutes: int | None = None


class EventSource(Protocol):
    def fetch(
        self, start: datetime, end: datetime, text_filter: str | None = None
    ) -> list[CalendarEvent]: ...


class EventDestination(Protocol):
    duplicate_links: list[SyncLink]

    def list_links(self) -> dict[str, SyncLink]: ...

    def create(self, event: CalendarEvent) -> str: ...

    def update(self, destination_id: str, event: CalendarEvent) -> None: ...

    def delete(self, destination_id: str) -> None: ...
