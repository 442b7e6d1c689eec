"""Shared fixtures for event sync tests."""
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from chat_platform.client import PlatformClient
from lifecycle.registry import EventRegistry
from processor.models import EventRecord
from storage.event_store import FileEventStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for deterministic tests."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_record(event_id='evt-1', hours_from_now=24, **overrides):
    """Build an EventRecord starting relative to NOW."""
    fields = {
        'id': event_id,
        'title': f'Race {event_id}',
        'description': 'Round of the championship',
        'location': 'Spa-Francorchamps',
        'start_time': NOW + timedelta(hours=hours_from_now),
        'server_id': '111',
        'channel_id': '222',
        'last_updated': NOW - timedelta(days=1),
    }
    fields.update(overrides)
    return EventRecord(**fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return FileEventStore(str(tmp_path / 'events'))


@pytest.fixture
def registry(store, clock):
    return EventRegistry(store, clock=clock)


@pytest.fixture
def platform():
    """PlatformClient mock where nothing exists yet."""
    client = Mock(spec=PlatformClient)
    client.create_scheduled_event.return_value = 'pe-1'
    client.create_thread.return_value = 'th-1'
    client.get_interested_participants.return_value = {'u2', 'u1'}
    client.find_event.return_value = False
    client.find_thread.return_value = False
    client.search_event.return_value = None
    client.search_thread.return_value = None
    client.event_link.return_value = 'https://discord.com/events/111/pe-1'
    return client
