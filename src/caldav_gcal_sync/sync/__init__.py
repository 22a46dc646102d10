"""
CalendarSynchronizer: thin orchestrator that wires adapters to the reconciler.
"""

import logging
import threading
from zoneinfo import ZoneInfo
from zoneinfo import ZoneInfoNotFoundError

from caldav_gcal_sync.caldav_client import CalDAVSource
from caldav_gcal_sync.gcal_client import GoogleCalendarDestination
from caldav_gcal_sync.gcal_client import build_service
from caldav_gcal_sync.ics_client import IcsFeedSource
from caldav_gcal_sync.models import CalendarSyncError
from caldav_gcal_sync.models import ConfigError
from caldav_gcal_sync.models import RemoteOperationError
from caldav_gcal_sync.models import SyncConfig
from caldav_gcal_sync.models import SyncPreview
from caldav_gcal_sync.models import SyncResult
from caldav_gcal_sync.models import SyncWindow
from caldav_gcal_sync.sync.reconciler import Reconciler


def _load_timezone(name: str):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown timezone {name!r}") from e


class CalendarSynchronizer:
    """Main synchronization engine for one CalDAV → Google Calendar pair.

    Adapters may be injected (tests, custom backends); otherwise they are
    built from the config on ``connect()``.
    """

    def __init__(self, config: SyncConfig, source=None, destination=None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.source = source
        self.destination = destination
        self.stop_event = threading.Event()

    def connect(self):
        """Build and connect the adapters that were not injected."""
        self.logger.info("Initializing calendar sync service...")
        if self.source is None:
            self.source = self._build_source()
            self.source.connect()
        if self.destination is None:
            try:
                service = build_service(
                    self.config.google_credentials_file, self.config.google_impersonate_user
                )
            except (OSError, ValueError) as e:
                raise ConfigError(
                    f"Cannot load Google credentials from {self.config.google_credentials_file}: {e}"
                ) from e
            self.destination = GoogleCalendarDestination(
                service, self.config.google_calendar_id, self.config.origin_tag
            )

    def _build_source(self):
        default_tz = _load_timezone(self.config.timezone)
        if self.config.ics_url:
            return IcsFeedSource(
                self.config.ics_url, origin_tag=self.config.origin_tag, default_tz=default_tz
            )
        if not (self.config.caldav_url and self.config.caldav_username):
            raise ConfigError("Either ics_url or caldav_url and caldav_username must be set")
        return CalDAVSource(
            url=self.config.caldav_url,
            username=self.config.caldav_username,
            password=self.config.caldav_password or "",
            calendar_name=self.config.caldav_calendar,
            origin_tag=self.config.origin_tag,
            default_tz=default_tz,
        )

    def shutdown(self):
        """Stop any in-flight run between events and release connections."""
        self.stop_event.set()
        close = getattr(self.source, "close", None)
        if close is not None:
            close()

    def _ensure_connected(self):
        if self.source is None or self.destination is None:
            self.connect()

    def _reconciler(self) -> Reconciler:
        return Reconciler(
            self.source,
            self.destination,
            text_filter=self.config.text_filter,
            skip_unchanged=self.config.skip_unchanged,
            stop_event=self.stop_event,
        )

    def run(self, window_days: int | None = None, dry_run: bool | None = None) -> SyncResult:
        """Execute one synchronization pass over the next ``window_days`` days."""
        days = self.config.window_days if window_days is None else window_days
        window = SyncWindow.from_days(days)
        dry_run = self.config.dry_run if dry_run is None else dry_run
        try:
            self._ensure_connected()
        except CalendarSyncError as e:
            message = f"Sync failed: {e}"
            self.logger.error(message)
            return SyncResult(dry_run=dry_run, errors=[message], fatal_error=message)
        self.logger.info("Starting calendar sync...")
        return self._reconciler().run(window, dry_run=dry_run)

    def preview(self, window_days: int | None = None) -> SyncPreview:
        """Counts of source events and linked destination events, without changes."""
        days = self.config.window_days if window_days is None else window_days
        window = SyncWindow.from_days(days)
        self._ensure_connected()
        events = self.source.fetch(window.start, window.end, self.config.text_filter)
        links = self.destination.list_links()
        return SyncPreview(source_events=len(events), linked_events=len(links), window=window)

    def list_links(self):
        self._ensure_connected()
        return self.destination.list_links()

    def test_connections(self):
        """Raise FetchError / LinkQueryError if either side is unusable."""
        self.logger.info("Testing calendar connections...")
        self._ensure_connected()
        self.destination.test_connection()
        self.logger.info("All calendar connections tested successfully")

    def clear(self, dry_run: bool | None = None) -> SyncResult:
        """Delete every destination event carrying our provenance marker.

        Extra events that share a sourceUid with a linked one are removed too.
        """
        dry_run = self.config.dry_run if dry_run is None else dry_run
        self.logger.warning("CLEAR MODE: Removing all synced events created by this tool...")
        self._ensure_connected()
        result = SyncResult(dry_run=dry_run)
        links = self.destination.list_links()
        targets = list(links.values()) + list(self.destination.duplicate_links)
        result.processed = len(targets)

        for link in targets:
            if dry_run:
                self.logger.info(f"[DRY RUN] Would DELETE event: {link.destination_id}")
                result.deleted += 1
                continue
            try:
                self.destination.delete(link.destination_id)
                result.deleted += 1
            except RemoteOperationError as e:
                message = f"Failed to delete event {link.destination_id}: {e.cause}"
                self.logger.error(message)
                result.errors.append(message)

        self.logger.info(f"Clear complete: {result.deleted} events removed")
        return result
