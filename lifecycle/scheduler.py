"""Lifecycle scheduler: drives tracked events through their platform actions."""
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, List, Mapping, Optional

from chat_platform.client import PlatformClient
from lifecycle.registry import EventRegistry
from lifecycle.states import LifecycleState, LifecycleTiming, lifecycle_state
from processor.errors import (
    NotFoundError,
    PersistenceError,
    PlatformActionError,
    SyncError,
    ValidationError,
)
from processor.models import EventRecord, PlatformStatus, TickResult, utc_now

logger = logging.getLogger(__name__)

DEFAULT_EXTEND_MINUTES = 1440
EVENT_ANNOUNCEMENT = (
    "```Event created, click 'interested' if you want to be notified "
    "when the thread is created```"
)
THREAD_NOTIFICATION = "The event is starting soon!"
MESSAGE_LIMIT = 2000


def thread_name_for(record: EventRecord) -> str:
    return f"{record.title} - {record.start_time.strftime('%Y-%m-%d %H:%M')}"


def mention_messages(participants, limit: int = MESSAGE_LIMIT) -> List[str]:
    """
    Split the mentions for a thread notification into messages within the size limit.

    The notification text follows the last batch of mentions.
    """
    suffix = f" \n{THREAD_NOTIFICATION}"
    messages = []
    current = ''
    for user in sorted(participants):
        mention = f"<@{user}>"
        candidate = f"{current} {mention}" if current else mention
        if current and len(candidate) + len(suffix) > limit:
            messages.append(current)
            current = mention
        else:
            current = candidate
    if current:
        messages.append(current + suffix)
    return messages


class LifecycleScheduler:
    """
    Decides which platform action is due for each tracked event and applies it.

    Every transition runs under the registry lock and re-reads the record
    before acting, so a tick and a platform notification for the same event
    cannot both create its scheduled event or thread. Before creating anything
    the platform is asked whether the object already exists; an existing one is
    adopted instead of created again.
    """

    def __init__(
        self,
        registry: EventRegistry,
        platform: PlatformClient,
        timing: Optional[LifecycleTiming] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.registry = registry
        self.platform = platform
        self.timing = timing or LifecycleTiming()
        self.clock = clock
        self._tick_lock = threading.Lock()

    # Tick

    def run_tick(self, now: Optional[datetime] = None) -> TickResult:
        """
        Evaluate every tracked event and fire the transitions that are due.

        A tick that starts while another is still running is skipped.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous lifecycle tick still running - skipping this one")
            return TickResult(skipped=True)

        try:
            return self._tick(now or self.clock())
        finally:
            self._tick_lock.release()

    def _tick(self, now: datetime) -> TickResult:
        result = TickResult()

        for record in self.registry.list_all():
            if not self._in_lane(record, now):
                continue
            result.in_lane += 1

            try:
                self._process_lane(record.id, now, result)
            except SyncError as e:
                error_msg = f"Event '{record.title}' ({record.id}): {e}"
                logger.error(
                    f"Error processing event lane: {error_msg}",
                    extra={'event_id': record.id, 'error_type': type(e).__name__}
                )
                result.errors.append(error_msg)
                continue
            except Exception as e:
                error_msg = f"Event '{record.title}' ({record.id}): unexpected error: {e}"
                logger.error(
                    f"Unexpected error processing event lane: {error_msg}",
                    extra={'event_id': record.id, 'error_type': type(e).__name__},
                    exc_info=True
                )
                result.errors.append(error_msg)
                continue

        logger.info(
            f"Event lanes processed. {result.in_lane} events in active lanes.",
            extra={
                'events_in_lane': result.in_lane,
                'events_created': result.events_created,
                'threads_created': result.threads_created,
                'errors': len(result.errors)
            }
        )
        return result

    def _in_lane(self, record: EventRecord, now: datetime) -> bool:
        time_to_event = record.start_time - now
        if time_to_event <= timedelta(0) or time_to_event > self.timing.lookahead:
            return False
        return record.platform_status not in (PlatformStatus.CANCELLED, PlatformStatus.COMPLETED)

    def _process_lane(self, event_id: str, now: datetime, result: TickResult) -> None:
        with self.registry.lock:
            record = self._require(event_id)
            time_to_event = record.start_time - now

            if (not record.platform_event_created
                    and time_to_event <= self.timing.event_create_lead):
                if self.create_platform_event(event_id):
                    result.events_created += 1
                    logger.info(
                        f"Created platform event for {record.title} "
                        f"(starts in {time_to_event.total_seconds() / 3600:.1f} hours)"
                    )
                record = self._require(event_id)

            if (record.platform_event_created
                    and not record.thread_created
                    and time_to_event <= self.timing.thread_create_lead):
                if self.create_thread(event_id):
                    result.threads_created += 1
                    logger.info(
                        f"Created thread for {record.title} "
                        f"(starts in {time_to_event.total_seconds() / 3600:.1f} hours)"
                    )

    # Transitions

    def create_platform_event(self, event_id: str) -> bool:
        """
        Create the scheduled event for a record unless it already exists.

        Returns:
            True if the event was created or adopted by this call

        Raises:
            NotFoundError: If the record is not tracked
            PlatformActionError: If the platform call failed (nothing recorded)
            PersistenceError: If the outcome could not be written to the store
        """
        with self.registry.lock:
            record = self._require(event_id)
            if record.platform_event_created:
                logger.info(f"Event already created: {record.title}")
                return False

            scope = record.scope
            platform_event_id = self._existing_event_id(record)

            if platform_event_id is None:
                platform_event_id = self.platform.create_scheduled_event(
                    scope,
                    title=record.title,
                    start=record.start_time,
                    end=record.start_time + self.timing.event_duration,
                    description=record.description,
                    location=record.location
                )
                adopted = False
            else:
                logger.warning(
                    f"Adopting existing platform event {platform_event_id} for '{record.title}'",
                    extra={'event_id': record.id, 'platform_event_id': platform_event_id}
                )
                adopted = True

            persist_error = self._save(event_id, {
                'platform_event_created': True,
                'platform_event_id': platform_event_id,
            })

            if not adopted:
                self._announce_event(record, platform_event_id)

            if persist_error is not None:
                raise persist_error
            return True

    def create_thread(self, event_id: str) -> bool:
        """
        Open the discussion thread for a record and notify interested users.

        Returns:
            True if the thread was created or adopted by this call

        Raises:
            NotFoundError: If the record is not tracked
            ValidationError: If the record has no platform event yet
            PlatformActionError: If creating the thread failed (nothing recorded)
            PersistenceError: If the outcome could not be written to the store
        """
        with self.registry.lock:
            record = self._require(event_id)
            if record.thread_created:
                logger.info(f"Thread already created: {record.title}")
                return False
            if not record.platform_event_created:
                raise ValidationError(
                    f"Cannot create a thread for '{record.title}' before its platform event"
                )

            scope = record.scope
            name = thread_name_for(record)
            thread_id = self._existing_thread_id(record, name)

            if thread_id is None:
                thread_id = self.platform.create_thread(scope, name)
            else:
                logger.warning(
                    f"Adopting existing thread {thread_id} for '{record.title}'",
                    extra={'event_id': record.id, 'platform_thread_id': thread_id}
                )

            persist_error = self._save(event_id, {
                'thread_created': True,
                'platform_thread_id': thread_id,
                'archive_delay_minutes': self.timing.default_archive_delay_minutes,
            })

            try:
                participants = self.platform.get_interested_participants(
                    scope, record.platform_event_id
                )
            except PlatformActionError as e:
                logger.warning(f"Could not fetch interested users for '{record.title}': {e}")
                participants = set()
            else:
                persist_error = self._save(
                    event_id, {'interested_participants': participants}
                ) or persist_error

            for message in mention_messages(participants):
                self._post(thread_id, message)

            logger.info(
                f"Thread created for event '{record.title}' and notified "
                f"{len(participants)} users."
            )

            if persist_error is not None:
                raise persist_error
            return True

    # Platform notifications

    def on_event_started(self, platform_event_id: str) -> bool:
        """Handle a scheduled event that started, possibly before its thread was due."""
        logger.info(f"Platform event started: {platform_event_id}")
        with self.registry.lock:
            record = self._lookup_notification(platform_event_id)
            if record is None:
                return False

            updates = {'platform_status': PlatformStatus.ACTIVE}
            if not record.platform_event_created:
                # The platform just told us the event exists
                updates['platform_event_created'] = True
            ok = self._apply_logged(record, updates)

            if not record.thread_created:
                try:
                    self.create_thread(record.id)
                    logger.info(f"Thread created for early-started event: {record.title}")
                except SyncError as e:
                    logger.error(
                        f"Error creating thread for early-started event '{record.title}': {e}"
                    )
                    return False
            return ok

    def on_event_completed(self, platform_event_id: str) -> bool:
        """
        Handle a completed scheduled event.

        The thread stays open for post-event discussion; archiving it is left
        to the thread's auto archive or an administrator.
        """
        logger.info(f"Platform event completed: {platform_event_id}")
        with self.registry.lock:
            record = self._lookup_notification(platform_event_id)
            if record is None:
                return False
            return self._apply_logged(record, {'platform_status': PlatformStatus.COMPLETED})

    def on_event_cancelled(self, platform_event_id: str) -> bool:
        """Handle a cancelled scheduled event; the record is kept until it expires."""
        logger.info(f"Platform event cancelled: {platform_event_id}")
        with self.registry.lock:
            record = self._lookup_notification(platform_event_id)
            if record is None:
                return False
            return self._apply_logged(record, {'platform_status': PlatformStatus.CANCELLED})

    # Administrator actions

    def record_for_thread(self, platform_thread_id: str) -> EventRecord:
        """
        Resolve the event a thread belongs to.

        Raises:
            NotFoundError: If no tracked event owns the thread
        """
        record = self.registry.find_by_platform_thread_id(platform_thread_id)
        if record is None:
            raise NotFoundError(f"Could not find event with thread ID: {platform_thread_id}")
        return record

    def end_event(self, event_id: str) -> EventRecord:
        """End the platform event of a record."""
        with self.registry.lock:
            record = self._require(event_id)
            if not record.platform_event_created:
                raise NotFoundError(f"Event '{record.title}' has no platform event to end")
            self.platform.end_event(record.scope, record.platform_event_id)
            logger.info(f"Ended platform event for '{record.title}'")
            return self.registry.apply_field_updates(
                event_id, {'platform_status': PlatformStatus.COMPLETED}
            )

    def close_thread(self, event_id: str) -> EventRecord:
        """Archive and lock the discussion thread of a record."""
        with self.registry.lock:
            record = self._require(event_id)
            if not record.thread_created:
                raise NotFoundError(f"Event '{record.title}' has no thread to close")
            self.platform.archive_and_lock_thread(record.platform_thread_id)
            logger.info(f"Closed thread for '{record.title}'")
            return self.registry.apply_field_updates(event_id, {'thread_archived': True})

    def extend_archive_delay(self, event_id: str, minutes: int = DEFAULT_EXTEND_MINUTES) -> int:
        """
        Add minutes to a record's archive delay.

        Returns:
            The new archive delay in minutes
        """
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise ValidationError(f"Minutes to add must be a positive integer, got {minutes!r}")

        with self.registry.lock:
            record = self._require(event_id)
            archive_delay = record.archive_delay_minutes + minutes
            self.registry.apply_field_updates(
                event_id, {'archive_delay_minutes': archive_delay}
            )

        logger.info(f"Added {minutes} minutes to archive time for event '{record.title}'")
        if record.platform_thread_id:
            self._post(record.platform_thread_id, f"Added {minutes} minutes to the archive time.")
        return archive_delay

    def state_of(self, event_id: str, now: Optional[datetime] = None) -> LifecycleState:
        return lifecycle_state(self._require(event_id), now or self.clock(), self.timing)

    # Helpers

    def _require(self, event_id: str) -> EventRecord:
        record = self.registry.get(event_id)
        if record is None:
            raise NotFoundError(f"Event with ID {event_id} not found")
        return record

    def _existing_event_id(self, record: EventRecord) -> Optional[str]:
        if record.platform_event_id and self.platform.find_event(
                record.scope, record.platform_event_id):
            return record.platform_event_id
        return self.platform.search_event(record.scope, record.title, record.start_time)

    def _existing_thread_id(self, record: EventRecord, name: str) -> Optional[str]:
        if record.platform_thread_id and self.platform.find_thread(
                record.scope, record.platform_thread_id):
            return record.platform_thread_id
        return self.platform.search_thread(record.scope, name)

    def _save(self, event_id: str, updates: Mapping[str, object]) -> Optional[PersistenceError]:
        # Memory is updated even when the write fails; the caller decides when to raise
        try:
            self.registry.apply_field_updates(event_id, updates)
        except PersistenceError as e:
            return e
        return None

    def _apply_logged(self, record: EventRecord, updates: Mapping[str, object]) -> bool:
        try:
            self.registry.apply_field_updates(record.id, updates)
        except SyncError as e:
            logger.error(f"Error updating event '{record.title}': {e}")
            return False
        return True

    def _lookup_notification(self, platform_event_id: str) -> Optional[EventRecord]:
        record = self.registry.find_by_platform_event_id(platform_event_id)
        if record is None:
            logger.warning(
                f"Could not find calendar event for platform event ID: {platform_event_id}"
            )
        return record

    def _announce_event(self, record: EventRecord, platform_event_id: str) -> None:
        link = self.platform.event_link(record.scope, platform_event_id)
        header = link or f"**{record.title}**"
        self._post(record.channel_id, f"{header}\n {EVENT_ANNOUNCEMENT}")

    def _post(self, channel_id: str, text: str) -> None:
        try:
            self.platform.post_message(channel_id, text)
        except PlatformActionError as e:
            logger.warning(f"Could not post message to {channel_id}: {e}")
