"""Data models for event tracking."""
import copy
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Set, Tuple

from processor.errors import ValidationError


class Scope(NamedTuple):
    """Destination on the chat platform."""
    server_id: str
    channel_id: str


class PlatformStatus(str, Enum):
    """Status of the scheduled event as reported by the chat platform."""
    SCHEDULED = 'scheduled'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an ISO 8601 string or datetime into an aware UTC datetime.

    Naive values are taken to be UTC.

    Raises:
        ValidationError: If the value is not a timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp: {value!r}") from e
    else:
        raise ValidationError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class CalendarItem:
    """Raw event as returned by the calendar source."""
    id: str
    title: str
    description: str
    start: str
    location: str


@dataclass
class EventRecord:
    """A calendar event tracked through its chat platform lifecycle."""
    id: str
    title: str
    description: str
    location: str
    start_time: datetime
    server_id: str = '0'
    channel_id: str = '0'
    platform_event_created: bool = False
    platform_event_id: Optional[str] = None
    thread_created: bool = False
    platform_thread_id: Optional[str] = None
    interested_participants: Set[str] = field(default_factory=set)
    archive_delay_minutes: int = 0
    platform_status: PlatformStatus = PlatformStatus.SCHEDULED
    thread_archived: bool = False
    last_updated: datetime = field(default_factory=utc_now)

    @property
    def scope(self) -> Scope:
        return Scope(self.server_id, self.channel_id)

    def copy(self) -> 'EventRecord':
        return copy.deepcopy(self)

    def touch(self, now: datetime) -> None:
        """Refresh last_updated without ever moving it backwards."""
        if now > self.last_updated:
            self.last_updated = now

    def validate(self) -> None:
        """
        Check the record invariants.

        Raises:
            ValidationError: If any invariant does not hold
        """
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValidationError("Event record requires a non-empty id")

        if not isinstance(self.start_time, datetime):
            raise ValidationError(f"Event '{self.id}' has no valid start time")

        if self.platform_event_created and self.platform_event_id is None:
            raise ValidationError(
                f"Event '{self.id}' is marked created without a platform event id"
            )

        if self.thread_created:
            if self.platform_thread_id is None:
                raise ValidationError(
                    f"Event '{self.id}' is marked thread created without a thread id"
                )
            if not self.platform_event_created:
                raise ValidationError(
                    f"Event '{self.id}' has a thread but no platform event"
                )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted JSON document."""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'location': self.location,
            'startTime': self.start_time.isoformat(),
            'serverId': self.server_id,
            'channelId': self.channel_id,
            'platformEventCreated': self.platform_event_created,
            'platformEventId': self.platform_event_id,
            'threadCreated': self.thread_created,
            'platformThreadId': self.platform_thread_id,
            'interestedParticipants': sorted(self.interested_participants),
            'archiveDelayMinutes': self.archive_delay_minutes,
            'platformStatus': self.platform_status.value,
            'threadArchived': self.thread_archived,
            'lastUpdated': self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'EventRecord':
        """
        Build a record from a persisted JSON document.

        Raises:
            ValidationError: If required keys are missing or values are malformed
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Event record document must be an object")

        try:
            record = cls(
                id=str(data['id']),
                title=data.get('title') or '',
                description=data.get('description') or '',
                location=data.get('location') or '',
                start_time=parse_timestamp(data['startTime']),
                server_id=str(data.get('serverId', '0')),
                channel_id=str(data.get('channelId', '0')),
                platform_event_created=bool(data.get('platformEventCreated', False)),
                platform_event_id=_optional_id(data.get('platformEventId')),
                thread_created=bool(data.get('threadCreated', False)),
                platform_thread_id=_optional_id(data.get('platformThreadId')),
                interested_participants={
                    str(user) for user in data.get('interestedParticipants') or []
                },
                archive_delay_minutes=int(data.get('archiveDelayMinutes', 0)),
                platform_status=PlatformStatus(
                    data.get('platformStatus', PlatformStatus.SCHEDULED.value)
                ),
                thread_archived=bool(data.get('threadArchived', False)),
                last_updated=parse_timestamp(data.get('lastUpdated') or utc_now()),
            )
        except KeyError as e:
            raise ValidationError(f"Event record is missing field {e}") from e
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Event record has an invalid value: {e}") from e

        record.validate()
        return record


def _optional_id(value: Any) -> Optional[str]:
    # Older documents used 0 for "no id yet"
    if value is None or value == 0 or value == '0' or value == '':
        return None
    return str(value)


class _Unset:
    def __repr__(self) -> str:
        return 'UNSET'

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def _as_str(value):
    if not isinstance(value, str):
        raise TypeError('expected a string')
    return value


def _as_bool(value):
    if not isinstance(value, bool):
        raise TypeError('expected a boolean')
    return value


def _as_int(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError('expected an integer')
    return value


def _as_optional_id(value):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise TypeError('expected an id or None')
    return str(value)


def _as_participants(value):
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise TypeError('expected a collection of user ids')
    return {str(user) for user in value}


def _as_status(value):
    return PlatformStatus(value)


def _as_timestamp(value):
    return parse_timestamp(value)


_FIELD_COERCERS = {
    'title': _as_str,
    'description': _as_str,
    'location': _as_str,
    'start_time': _as_timestamp,
    'platform_event_created': _as_bool,
    'platform_event_id': _as_optional_id,
    'thread_created': _as_bool,
    'platform_thread_id': _as_optional_id,
    'interested_participants': _as_participants,
    'archive_delay_minutes': _as_int,
    'platform_status': _as_status,
    'thread_archived': _as_bool,
}

_JSON_ALIASES = {
    'startTime': 'start_time',
    'platformEventCreated': 'platform_event_created',
    'platformEventId': 'platform_event_id',
    'threadCreated': 'thread_created',
    'platformThreadId': 'platform_thread_id',
    'interestedParticipants': 'interested_participants',
    'archiveDelayMinutes': 'archive_delay_minutes',
    'platformStatus': 'platform_status',
    'threadArchived': 'thread_archived',
}

CALENDAR_FIELDS = ('title', 'description', 'start_time', 'location')


@dataclass
class FieldDelta:
    """
    Partial update of an EventRecord.

    Only the fields listed here can be changed after creation; the identity
    fields (id, server_id, channel_id) and last_updated cannot. A field left
    as UNSET is not touched, so None is a legal new value for the optional ids.
    """
    title: Any = UNSET
    description: Any = UNSET
    location: Any = UNSET
    start_time: Any = UNSET
    platform_event_created: Any = UNSET
    platform_event_id: Any = UNSET
    thread_created: Any = UNSET
    platform_thread_id: Any = UNSET
    interested_participants: Any = UNSET
    archive_delay_minutes: Any = UNSET
    platform_status: Any = UNSET
    thread_archived: Any = UNSET

    def __post_init__(self):
        for name, value in self.items():
            try:
                setattr(self, name, _FIELD_COERCERS[name](value))
            except (TypeError, ValueError, ValidationError) as e:
                raise ValidationError(
                    f"Invalid value for field '{name}': {value!r} ({e})"
                ) from e

    def items(self) -> List[Tuple[str, Any]]:
        return [
            (f.name, getattr(self, f.name))
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        ]

    def field_names(self) -> List[str]:
        return [name for name, _ in self.items()]

    def is_empty(self) -> bool:
        return not self.items()

    def apply_to(self, record: EventRecord) -> EventRecord:
        """
        Return an updated copy of the record.

        Raises:
            ValidationError: If the result breaks a record invariant
        """
        updated = record.copy()
        for name, value in self.items():
            setattr(updated, name, copy.deepcopy(value))
        updated.validate()
        return updated

    @classmethod
    def from_mapping(cls, updates: Mapping[str, Any]) -> Tuple['FieldDelta', List[str]]:
        """
        Build a delta from {field name: new value}.

        Accepts both attribute names and persisted JSON names. Unrecognized
        names are returned rather than raised so callers can log and skip them.

        Returns:
            Tuple of (delta, unknown field names)
        """
        known = {}
        unknown = []
        for name, value in updates.items():
            attr = _JSON_ALIASES.get(name, name)
            if attr in _FIELD_COERCERS:
                known[attr] = value
            else:
                unknown.append(name)
        return cls(**known), unknown


@dataclass
class MergeResult:
    """Result of merging a calendar snapshot."""
    added: int
    updated: int
    errors: List[str]


@dataclass
class TickResult:
    """Result of one lifecycle tick."""
    in_lane: int = 0
    events_created: int = 0
    threads_created: int = 0
    errors: List[str] = field(default_factory=list)
    skipped: bool = False
