"""Unit tests for Reconciler."""
from unittest.mock import Mock

import pytest
import requests

from conftest import make_record
from lifecycle.reconciler import Reconciler
from processor.errors import ValidationError
from processor.models import CalendarItem, Scope

SCOPE = Scope('111', '222')


@pytest.fixture
def reconciler(registry, clock):
    return Reconciler(registry, scope=SCOPE, clock=clock)


def test_merge_counts_new_and_updated(reconciler, registry):
    registry.upsert(make_record('a'))

    result = reconciler.merge([make_record('a', title='Changed'), make_record('b')])

    assert result.added == 1
    assert result.updated == 1
    assert result.errors == []
    assert registry.get('a').title == 'Changed'


def test_merge_preserves_thread_state(reconciler, registry):
    """A fresh snapshot changes the title but keeps the thread."""
    registry.upsert(make_record(
        platform_event_created=True,
        platform_event_id='pe-1',
        thread_created=True,
        platform_thread_id='T',
    ))

    reconciler.merge([make_record(title='New title')])

    record = registry.get('evt-1')
    assert record.title == 'New title'
    assert record.thread_created is True
    assert record.platform_thread_id == 'T'


def test_merge_never_removes_missing_events(reconciler, registry):
    registry.upsert(make_record('a'))
    registry.upsert(make_record('b'))

    reconciler.merge([make_record('a')])

    assert registry.get('b') is not None


def test_merge_isolates_bad_records(reconciler, registry):
    result = reconciler.merge([make_record(event_id=''), make_record('good')])

    assert result.added == 1
    assert len(result.errors) == 1
    assert registry.get('good') is not None


def test_sweep_expired(reconciler, registry, store):
    """10 days old is purged with a 7 day window, 5 days old is kept."""
    registry.upsert(make_record('old', hours_from_now=-24 * 10))
    registry.upsert(make_record('recent', hours_from_now=-24 * 5))
    registry.upsert(make_record('future', hours_from_now=24))

    removed = reconciler.sweep_expired(7)

    assert removed == 1
    assert registry.get('old') is None
    assert store.get('old', SCOPE) is None
    assert registry.get('recent') is not None
    assert store.get('recent', SCOPE) is not None
    assert registry.get('future') is not None


def test_sweep_expired_rejects_negative_days(reconciler):
    with pytest.raises(ValidationError):
        reconciler.sweep_expired(-1)


def test_refresh_fetches_merges_and_sweeps(registry, clock):
    source = Mock()
    source.fetch_upcoming.return_value = [
        CalendarItem(
            id='g1',
            title='Qualifying',
            description='<p>Saturday</p>',
            start='2026-03-03T14:00:00Z',
            location='Suzuka'
        )
    ]
    registry.upsert(make_record('ancient', hours_from_now=-24 * 30))
    reconciler = Reconciler(
        registry, calendar_source=source, scope=SCOPE, retention_days=7, clock=clock
    )

    result = reconciler.refresh('calendar@example.com')

    source.fetch_upcoming.assert_called_once_with('calendar@example.com')
    assert result.added == 1
    record = registry.get('g1')
    assert record.description == 'Saturday'
    assert record.scope == SCOPE
    assert registry.get('ancient') is None


def test_refresh_fetch_failure_changes_nothing(registry, clock):
    source = Mock()
    source.fetch_upcoming.side_effect = requests.ConnectionError('offline')
    registry.upsert(make_record('ancient', hours_from_now=-24 * 30))
    reconciler = Reconciler(registry, calendar_source=source, scope=SCOPE, clock=clock)

    with pytest.raises(requests.ConnectionError):
        reconciler.refresh('calendar@example.com')

    assert registry.get('ancient') is not None


def test_refresh_requires_source(reconciler):
    with pytest.raises(ValidationError):
        reconciler.refresh('calendar@example.com')
