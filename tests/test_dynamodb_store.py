"""Unit tests for the DynamoDB event store."""
import boto3
import pytest
from moto import mock_aws

from conftest import make_record
from processor.errors import NotFoundError
from processor.models import FieldDelta, Scope
from storage.dynamodb_store import DynamoDBEventStore, scope_key

SCOPE = Scope('111', '222')


@pytest.fixture
def dynamodb_table():
    """Create a mock DynamoDB table for testing."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        table = dynamodb.create_table(
            TableName='test-calendar-events',
            KeySchema=[
                {'AttributeName': 'scope', 'KeyType': 'HASH'},
                {'AttributeName': 'event_id', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'scope', 'AttributeType': 'S'},
                {'AttributeName': 'event_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield table


@pytest.fixture
def event_store(dynamodb_table):
    """Create DynamoDBEventStore instance with mock table."""
    return DynamoDBEventStore('test-calendar-events', region_name='us-east-1')


class TestDynamoDBEventStore:
    """Test cases for DynamoDBEventStore class."""

    def test_put_and_get(self, event_store, dynamodb_table):
        record = make_record(
            platform_event_created=True,
            platform_event_id='pe-1',
            interested_participants={'u1', 'u2'},
            archive_delay_minutes=1440,
        )

        event_store.put(record)

        item = dynamodb_table.get_item(Key={'scope': '111/222', 'event_id': 'evt-1'})['Item']
        assert item['title'] == 'Race evt-1'
        assert item['platformEventId'] == 'pe-1'

        loaded = event_store.get('evt-1', SCOPE)
        assert loaded.title == record.title
        assert loaded.start_time == record.start_time
        assert loaded.interested_participants == {'u1', 'u2'}
        assert loaded.archive_delay_minutes == 1440
        assert isinstance(loaded.archive_delay_minutes, int)

    def test_get_missing_returns_none(self, event_store):
        assert event_store.get('nope', SCOPE) is None

    def test_records_are_keyed_by_scope(self, event_store):
        event_store.put(make_record('a'))
        event_store.put(make_record('a', server_id='999', title='Elsewhere'))

        assert event_store.get('a', SCOPE).title == 'Race a'
        assert event_store.get('a', Scope('999', '222')).title == 'Elsewhere'

    def test_load_all_skips_malformed_items(self, event_store, dynamodb_table):
        event_store.put(make_record('a'))
        event_store.put(make_record('b'))
        dynamodb_table.put_item(Item={'scope': '111/222', 'event_id': 'broken', 'title': 'x'})

        records = event_store.load_all()

        assert sorted(r.id for r in records) == ['a', 'b']

    def test_delete(self, event_store):
        event_store.put(make_record())

        event_store.delete('evt-1', SCOPE)
        event_store.delete('evt-1', SCOPE)

        assert event_store.get('evt-1', SCOPE) is None

    def test_update_fields(self, event_store):
        event_store.put(make_record())

        updated = event_store.update_fields(
            'evt-1', SCOPE, FieldDelta(platform_event_created=True, platform_event_id='pe-9')
        )

        assert updated.platform_event_id == 'pe-9'
        assert event_store.get('evt-1', SCOPE).platform_event_created is True

    def test_update_fields_missing_record(self, event_store):
        with pytest.raises(NotFoundError):
            event_store.update_fields('missing', SCOPE, FieldDelta(title='x'))


def test_scope_key():
    assert scope_key(Scope('1', '2')) == '1/2'
