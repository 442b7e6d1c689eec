"""Lifecycle states and timing thresholds for tracked events."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from processor.models import EventRecord, PlatformStatus


class LifecycleState(str, Enum):
    DISCOVERED = 'discovered'
    EVENT_CREATION_DUE = 'event_creation_due'
    EVENT_CREATED = 'event_created'
    THREAD_CREATION_DUE = 'thread_creation_due'
    THREAD_CREATED = 'thread_created'
    ARCHIVED = 'archived'
    CANCELLED = 'cancelled'
    EXPIRED = 'expired'


TERMINAL_STATES = frozenset({
    LifecycleState.ARCHIVED,
    LifecycleState.CANCELLED,
    LifecycleState.EXPIRED,
})


@dataclass(frozen=True)
class LifecycleTiming:
    """Lead times and windows that drive tick transitions."""
    event_create_lead: timedelta = timedelta(hours=48)
    thread_create_lead: timedelta = timedelta(hours=1)
    lookahead: timedelta = timedelta(days=14)
    default_archive_delay_minutes: int = 1440
    event_duration: timedelta = timedelta(hours=48)


def lifecycle_state(
    record: EventRecord,
    now: datetime,
    timing: LifecycleTiming,
    retention: Optional[timedelta] = None
) -> LifecycleState:
    """
    Derive the lifecycle state of a record at a point in time.

    Args:
        record: Tracked event
        now: Current time (aware)
        timing: Lead time configuration
        retention: Retention window; when given, records older than it are EXPIRED

    Returns:
        The record's LifecycleState
    """
    if record.platform_status == PlatformStatus.CANCELLED:
        return LifecycleState.CANCELLED

    if retention is not None and record.start_time < now - retention:
        return LifecycleState.EXPIRED

    if record.thread_archived:
        return LifecycleState.ARCHIVED

    if record.thread_created:
        return LifecycleState.THREAD_CREATED

    time_to_event = record.start_time - now

    if record.platform_event_created:
        if time_to_event <= timing.thread_create_lead:
            return LifecycleState.THREAD_CREATION_DUE
        return LifecycleState.EVENT_CREATED

    if time_to_event <= timing.event_create_lead:
        return LifecycleState.EVENT_CREATION_DUE
    return LifecycleState.DISCOVERED
