"""DynamoDB-backed event store."""
import logging
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.errors import NotFoundError, PersistenceError, ValidationError
from processor.models import EventRecord, FieldDelta, Scope
from storage.event_store import EventStore

logger = logging.getLogger(__name__)


def scope_key(scope: Scope) -> str:
    return f"{scope.server_id}/{scope.channel_id}"


class DynamoDBEventStore(EventStore):
    """
    Event store keeping one item per record.

    Table layout: hash key ``scope`` ("<server id>/<channel id>"),
    range key ``event_id``; the remaining attributes are the record's
    JSON document.
    """

    def __init__(self, table_name: str, region_name: Optional[str] = None):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region, defaults to the environment's
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBEventStore for table: {table_name}")

    def put(self, record: EventRecord) -> None:
        try:
            self.table.put_item(Item=self._record_to_item(record))
        except ClientError as e:
            raise PersistenceError(
                f"Failed to save event '{record.id}' to {self.table_name}: {e}"
            ) from e
        logger.debug(f"Saved event '{record.title}' to {self.table_name}")

    def get(self, event_id: str, scope: Scope) -> Optional[EventRecord]:
        try:
            response = self.table.get_item(
                Key={'scope': scope_key(scope), 'event_id': event_id}
            )
        except ClientError as e:
            raise PersistenceError(f"Failed to read event '{event_id}': {e}") from e

        item = response.get('Item')
        if item is None:
            return None

        try:
            return self._item_to_record(item)
        except ValidationError as e:
            raise PersistenceError(f"Stored event '{event_id}' is malformed: {e}") from e

    def load_all(self) -> List[EventRecord]:
        logger.info("Scanning DynamoDB table for all events")
        records = []

        try:
            response = self.table.scan()
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            raise PersistenceError(f"Error scanning {self.table_name}: {e}") from e

        for item in items:
            try:
                records.append(self._item_to_record(item))
            except ValidationError as e:
                logger.warning(
                    f"Skipping malformed item {item.get('scope')}:{item.get('event_id')}: {e}"
                )
                continue

        logger.info(f"Retrieved {len(records)} events from DynamoDB")
        return records

    def delete(self, event_id: str, scope: Scope) -> None:
        try:
            self.table.delete_item(
                Key={'scope': scope_key(scope), 'event_id': event_id}
            )
        except ClientError as e:
            raise PersistenceError(f"Failed to delete event '{event_id}': {e}") from e

    def update_fields(self, event_id: str, scope: Scope, delta: FieldDelta) -> EventRecord:
        record = self.get(event_id, scope)
        if record is None:
            raise NotFoundError(f"No stored event '{event_id}' in scope {scope_key(scope)}")

        updated = delta.apply_to(record)
        try:
            self.table.put_item(
                Item=self._record_to_item(updated),
                ConditionExpression='attribute_exists(event_id)'
            )
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                raise NotFoundError(
                    f"Event '{event_id}' was deleted while being updated"
                ) from e
            raise PersistenceError(f"Failed to update event '{event_id}': {e}") from e
        return updated

    def _record_to_item(self, record: EventRecord) -> dict:
        """
        Convert EventRecord to DynamoDB item.

        Args:
            record: EventRecord object

        Returns:
            DynamoDB item dictionary
        """
        item = record.to_dict()
        item['scope'] = scope_key(record.scope)
        item['event_id'] = record.id
        return item

    def _item_to_record(self, item: dict) -> EventRecord:
        data = {
            key: value for key, value in item.items()
            if key not in ('scope', 'event_id')
        }
        # Numbers come back from DynamoDB as Decimal
        if 'archiveDelayMinutes' in data:
            data['archiveDelayMinutes'] = int(data['archiveDelayMinutes'])
        return EventRecord.from_dict(data)
