"""
Source → destination reconciliation: diff, apply, aggregate.
"""

import logging
import threading
from dataclasses import dataclass

from caldav_gcal_sync.models import CalendarEvent
from caldav_gcal_sync.models import EventDestination
from caldav_gcal_sync.models import EventSource
from caldav_gcal_sync.models import FetchError
from caldav_gcal_sync.models import LinkQueryError
from caldav_gcal_sync.models import RemoteOperationError
from caldav_gcal_sync.models import SyncLink
from caldav_gcal_sync.models import SyncResult
from caldav_gcal_sync.models import SyncWindow
from caldav_gcal_sync.utils import compute_content_hash
from caldav_gcal_sync.utils import describe_event

CREATE = "create"
UPDATE = "update"
DELETE = "delete"


@dataclass
class SyncAction:
    """One decided destination mutation."""

    kind: str
    source_uid: str
    event: CalendarEvent | None = None
    destination_id: str | None = None


@dataclass
class SyncPlan:
    upserts: list[SyncAction]
    deletions: list[SyncAction]
    unchanged: int = 0
    duplicates: int = 0

    @property
    def actions(self) -> list[SyncAction]:
        return self.upserts + self.deletions


def plan_actions(
    events: list[CalendarEvent],
    links: dict[str, SyncLink],
    skip_unchanged: bool = False,
    logger: logging.Logger | None = None,
) -> SyncPlan:
    """
    Decide the create/update/delete actions that make the destination match ``events``.

    Every source event yields exactly one upsert per uid: create when no link
    exists, update otherwise.  A uid seen twice in one fetch keeps its first
    slot but takes the later event's data, so a uid can never be both
    created and updated in the same run.  Links whose uid is absent from
    ``events`` are scheduled for deletion.
    """
    logger = logger or logging.getLogger(__name__)
    plan = SyncPlan(upserts=[], deletions=[])
    by_uid: dict[str, SyncAction] = {}
    skipped: set[str] = set()

    for event in events:
        previous = by_uid.get(event.uid)
        if previous is not None or event.uid in skipped:
            logger.warning(f"Duplicate source uid {event.uid}; last occurrence wins")
            plan.duplicates += 1
            if previous is not None:
                previous.event = event
                continue
            skipped.discard(event.uid)
            plan.unchanged -= 1

        link = links.get(event.uid)
        if link is None:
            action = SyncAction(CREATE, event.uid, event=event)
        elif skip_unchanged and link.content_hash == compute_content_hash(event):
            skipped.add(event.uid)
            plan.unchanged += 1
            continue
        else:
            action = SyncAction(UPDATE, event.uid, event=event, destination_id=link.destination_id)
        by_uid[event.uid] = action
        plan.upserts.append(action)

    seen = {event.uid for event in events}
    for source_uid, link in links.items():
        if source_uid not in seen:
            plan.deletions.append(
                SyncAction(DELETE, source_uid, destination_id=link.destination_id)
            )

    return plan


class Reconciler:
    """Drives one source/destination pair towards convergence."""

    def __init__(
        self,
        source: EventSource,
        destination: EventDestination,
        text_filter: str | None = None,
        skip_unchanged: bool = False,
        stop_event: threading.Event | None = None,
    ):
        self.source = source
        self.destination = destination
        self.text_filter = text_filter
        self.skip_unchanged = skip_unchanged
        self.stop_event = stop_event or threading.Event()
        self.logger = logging.getLogger(__name__)

    def run(
        self,
        window: SyncWindow,
        dry_run: bool = False,
        existing_links: dict[str, SyncLink] | None = None,
    ) -> SyncResult:
        """Execute one reconciliation pass. Never raises on sync errors."""
        result = SyncResult(dry_run=dry_run)
        self.logger.info(f"Syncing events from {window.describe()}")

        try:
            events = self.source.fetch(window.start, window.end, self.text_filter)
            if existing_links is None:
                existing_links = self.destination.list_links()
        except (FetchError, LinkQueryError) as e:
            self._record_fatal(result, e)
            return result

        result.processed = len(events)
        self.logger.info(
            f"Found {len(events)} source events, {len(existing_links)} linked destination events"
        )

        plan = plan_actions(events, existing_links, self.skip_unchanged, self.logger)
        result.unchanged = plan.unchanged
        result.duplicates = plan.duplicates
        if plan.deletions:
            self.logger.info(f"Found {len(plan.deletions)} events to delete from destination")

        actions = plan.actions
        for index, action in enumerate(actions):
            if self.stop_event.is_set():
                result.aborted = True
                result.deferred = len(actions) - index
                self.logger.warning(
                    f"Stop requested; deferring {result.deferred} remaining actions to next run"
                )
                break
            self._apply(action, result, dry_run)

        self.logger.info(f"Sync completed: {result.summary()}")
        if result.errors:
            self.logger.warning(f"Sync completed with {len(result.errors)} errors")
        return result

    def _record_fatal(self, result: SyncResult, error: Exception):
        message = f"Sync failed: {error}"
        self.logger.error(message)
        result.fatal_error = message
        result.errors.append(message)

    def _apply(self, action: SyncAction, result: SyncResult, dry_run: bool):
        if action.kind == DELETE:
            self._process_delete(action, result, dry_run)
        else:
            self._process_upsert(action, result, dry_run)

    def _process_upsert(self, action: SyncAction, result: SyncResult, dry_run: bool):
        label = describe_event(action.event)

        if dry_run:
            verb = "CREATE" if action.kind == CREATE else "UPDATE"
            self.logger.info(f"[DRY RUN] Would {verb} event: {label}")
            self._count(action, result)
            return

        try:
            if action.kind == CREATE:
                destination_id = self.destination.create(action.event)
                self.logger.debug(f"Created event {label} as {destination_id}")
            else:
                self.destination.update(action.destination_id, action.event)
                self.logger.debug(f"Updated event {label} ({action.destination_id})")
        except RemoteOperationError as e:
            message = f"Failed to {action.kind} event {label}: {e.cause}"
            self.logger.error(message)
            result.errors.append(message)
            return
        self._count(action, result)

    def _process_delete(self, action: SyncAction, result: SyncResult, dry_run: bool):
        if dry_run:
            self.logger.info(
                f"[DRY RUN] Would DELETE event: {action.destination_id} (source {action.source_uid})"
            )
            result.deleted += 1
            return

        try:
            self.destination.delete(action.destination_id)
        except RemoteOperationError as e:
            message = (
                f"Failed to delete event {action.destination_id} "
                f"(source {action.source_uid}): {e.cause}"
            )
            self.logger.error(message)
            result.errors.append(message)
            return
        result.deleted += 1
        self.logger.debug(f"Deleted event {action.destination_id} (source {action.source_uid})")

    @staticmethod
    def _count(action: SyncAction, result: SyncResult):
        if action.kind == CREATE:
            result.created += 1
        else:
            result.updated += 1
