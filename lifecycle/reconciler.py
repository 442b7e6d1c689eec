"""Reconciler: merges calendar snapshots into the registry and purges old events."""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from lifecycle.registry import EventRegistry
from processor.errors import SyncError, ValidationError
from processor.event_processor import EventProcessor
from processor.models import EventRecord, MergeResult, Scope, utc_now

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Keeps the registry in step with the calendar.

    Events missing from a snapshot are never removed: a calendar item
    dropping out of one fetch is not proof it is gone. Records are only
    deleted once their start time falls behind the retention window.
    """

    def __init__(
        self,
        registry: EventRegistry,
        calendar_source=None,
        processor: Optional[EventProcessor] = None,
        scope: Optional[Scope] = None,
        retention_days: int = 7,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Args:
            registry: Registry to merge into
            calendar_source: Object with fetch_upcoming(calendar_id), needed for refresh()
            processor: Normalizes raw calendar items into records
            scope: Platform destination for records built by refresh()
            retention_days: Days past start after which refresh() purges a record
            clock: Source of the current time
        """
        self.registry = registry
        self.calendar_source = calendar_source
        self.processor = processor or EventProcessor()
        self.scope = scope
        self.retention_days = retention_days
        self.clock = clock

    def merge(self, snapshot: List[EventRecord]) -> MergeResult:
        """
        Upsert every record of a fresh calendar snapshot.

        Returns:
            MergeResult with counts of added and updated events
        """
        added = 0
        updated = 0
        errors = []

        for record in snapshot:
            try:
                if self.registry.upsert(record):
                    added += 1
                else:
                    updated += 1
            except SyncError as e:
                error_msg = f"Failed to merge event '{getattr(record, 'id', None)}': {e}"
                logger.error(error_msg, extra={'error_type': type(e).__name__})
                errors.append(error_msg)
                continue

        logger.info(
            f"Calendar sync complete: {added} new events, {updated} updated events",
            extra={'events_added': added, 'events_updated': updated, 'errors': len(errors)}
        )
        return MergeResult(added=added, updated=updated, errors=errors)

    def sweep_expired(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """
        Remove every record whose start time is older than the retention window.

        Returns:
            Number of records removed
        """
        if isinstance(retention_days, bool) or not isinstance(retention_days, int) \
                or retention_days < 0:
            raise ValidationError(f"Retention days must be a non-negative integer, got {retention_days!r}")

        cutoff = (now or self.clock()) - timedelta(days=retention_days)
        removed = 0

        with self.registry.lock:
            expired = [r for r in self.registry.list_all() if r.start_time < cutoff]
            for record in expired:
                try:
                    if self.registry.remove(record.id):
                        removed += 1
                except SyncError as e:
                    logger.error(f"Failed to remove expired event '{record.id}': {e}")
                    continue

        if removed:
            logger.info(f"Cleaned up {removed} old events", extra={'events_deleted': removed})
        return removed

    def refresh(self, calendar_id: str) -> MergeResult:
        """
        Fetch the calendar, merge it and purge expired records.

        Fetch errors propagate; nothing is merged or removed in that case.
        """
        if self.calendar_source is None or self.scope is None:
            raise ValidationError("Reconciler needs a calendar source and scope to refresh")

        logger.info("Refreshing calendar events")
        items = self.calendar_source.fetch_upcoming(calendar_id)
        records = self.processor.process_items(items, self.scope)

        result = self.merge(records)
        self.sweep_expired(self.retention_days)

        logger.info(f"Calendar refresh complete. {len(self.registry)} active events.")
        return result
