"""In-memory event registry backed by an event store."""
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Union

from processor.errors import NotFoundError, PersistenceError, ValidationError
from processor.models import CALENDAR_FIELDS, EventRecord, FieldDelta, utc_now
from storage.event_store import EventStore

logger = logging.getLogger(__name__)


class EventRegistry:
    """
    Authoritative index of tracked events.

    Records handed out by the registry are copies; every mutation goes through
    a registry method, which updates memory first and then writes the record to
    the store. A failed write leaves memory ahead of disk and is re-raised as
    PersistenceError.
    """

    def __init__(self, store: EventStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock
        self.lock = threading.RLock()
        self._events: Dict[str, EventRecord] = {}

    def load(self) -> int:
        """
        Fill the registry from the store.

        Returns:
            Number of records loaded
        """
        records = self.store.load_all()
        with self.lock:
            for record in records:
                if record.id in self._events:
                    logger.warning(
                        f"Duplicate stored event '{record.id}' in scope "
                        f"{record.server_id}/{record.channel_id}; keeping the newest"
                    )
                    if record.last_updated < self._events[record.id].last_updated:
                        continue
                self._events[record.id] = record
            count = len(self._events)

        logger.info(f"EventRegistry initialized with {count} events from the store")
        return count

    def upsert(self, record: EventRecord) -> bool:
        """
        Add a record or merge calendar fields into an existing one.

        For a known id only title, description, start_time and location are
        taken from the incoming record; platform state is kept.

        Returns:
            True if the record was new

        Raises:
            ValidationError: If the record is malformed (nothing is applied)
            PersistenceError: If the store write failed (memory is updated)
        """
        if record is None:
            raise ValidationError("Cannot upsert an empty record")
        record.validate()

        with self.lock:
            existing = self._events.get(record.id)
            is_new = existing is None

            if is_new:
                merged = record.copy()
            else:
                merged = existing.copy()
                for name in CALENDAR_FIELDS:
                    setattr(merged, name, getattr(record, name))

            merged.touch(self.clock())
            self._events[record.id] = merged
            self._persist(merged)

        logger.debug(f"{'Added' if is_new else 'Updated'} event: {merged.title}")
        return is_new

    def get(self, event_id: str) -> Optional[EventRecord]:
        if not event_id:
            raise ValidationError("Event id is required")
        with self.lock:
            record = self._events.get(event_id)
            return record.copy() if record else None

    def find_by_platform_event_id(self, platform_event_id: str) -> Optional[EventRecord]:
        if not platform_event_id:
            return None
        return self._find(lambda r: r.platform_event_id == str(platform_event_id))

    def find_by_platform_thread_id(self, platform_thread_id: str) -> Optional[EventRecord]:
        if not platform_thread_id:
            return None
        return self._find(lambda r: r.platform_thread_id == str(platform_thread_id))

    def list_all(self) -> List[EventRecord]:
        """Return copies of all records ordered by start time."""
        with self.lock:
            records = [record.copy() for record in self._events.values()]
        return sorted(records, key=lambda r: (r.start_time, r.id))

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._events

    def apply_field_updates(
        self,
        event_id: str,
        updates: Union[FieldDelta, Mapping[str, object]]
    ) -> EventRecord:
        """
        Update a named subset of fields and persist the record.

        Unknown field names are logged and ignored.

        Returns:
            Copy of the updated record

        Raises:
            NotFoundError: If the event is not tracked
            ValidationError: If a value is invalid or the result breaks an invariant
            PersistenceError: If the store write failed (memory is updated)
        """
        if isinstance(updates, FieldDelta):
            delta = updates
        else:
            delta, unknown = FieldDelta.from_mapping(updates)
            for name in unknown:
                logger.warning(f"Field {name} not found on EventRecord - skipping")

        with self.lock:
            record = self._events.get(event_id)
            if record is None:
                raise NotFoundError(f"Event with ID {event_id} not found")

            if delta.is_empty():
                logger.info(f"No valid fields to update for event: {record.title}")
                return record.copy()

            updated = delta.apply_to(record)
            updated.touch(self.clock())
            self._events[event_id] = updated
            self._persist(updated)

        logger.debug(
            f"Updated {', '.join(delta.field_names())} for event: {updated.title}"
        )
        return updated.copy()

    def remove(self, event_id: str) -> bool:
        """
        Remove a record from memory and from the store.

        Returns:
            True if the record was tracked
        """
        with self.lock:
            record = self._events.pop(event_id, None)
            if record is None:
                return False
            try:
                self.store.delete(record.id, record.scope)
            except PersistenceError:
                logger.error(f"Removed event '{event_id}' but could not delete it from the store")
                raise
        logger.debug(f"Removed event: {record.title}")
        return True

    def _find(self, predicate) -> Optional[EventRecord]:
        with self.lock:
            for record in self._events.values():
                if predicate(record):
                    return record.copy()
        return None

    def _persist(self, record: EventRecord) -> None:
        try:
            self.store.put(record)
        except PersistenceError as e:
            logger.error(
                f"Event '{record.id}' updated in memory but not persisted: {e}",
                extra={'event_id': record.id, 'error_type': type(e).__name__}
            )
            raise
