"""DynamoDB-backed event store, ingestion log and source registry."""
import logging
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.date_parser import format_utc
from processor.models import CanonicalEvent, IngestionLog, SourceConfig
from scraper.sources import default_source_configs

logger = logging.getLogger(__name__)


class UniqueConstraintViolation(Exception):
    """An event with the same (source, source_id) already exists."""

    def __init__(self, source: str, source_id: str):
        super().__init__(f"Event already exists: {source}/{source_id}")
        self.source = source
        self.source_id = source_id


def event_key(source: str, source_id: str) -> str:
    """Primary key derived from the (source, source_id) upsert key."""
    return f"{source}:{source_id}"


def _to_dynamo(value: Any) -> Any:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, list):
        return [_to_dynamo(v) for v in value]
    return value


def _scan_all(table, **kwargs) -> List[Dict[str, Any]]:
    response = table.scan(**kwargs)
    items = response.get('Items', [])
    while 'LastEvaluatedKey' in response:
        response = table.scan(ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs)
        items.extend(response.get('Items', []))
    return items


class DynamoDBEventStore:
    """Keyed upsert interface over the events table."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(self, table_name: str, dynamodb=None):
        """
        Initialize DynamoDB table reference.

        Args:
            table_name: Name of the events table
            dynamodb: Optional boto3 DynamoDB resource
        """
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBEventStore for table: {table_name}")

    def find_by_key(self, source: str, source_id: str) -> Optional[Dict[str, Any]]:
        """Stored item for (source, source_id), or None."""
        try:
            response = self.table.get_item(Key={'id': event_key(source, source_id)})
        except ClientError as e:
            logger.error(f"Error reading event {source}/{source_id}: {e}")
            raise
        return response.get('Item')

    def insert(self, event: CanonicalEvent) -> str:
        """
        Insert a new event.

        Returns:
            The derived event id

        Raises:
            UniqueConstraintViolation: If the key already exists
            ClientError: On any other DynamoDB failure
        """
        item = self._event_to_item(event)
        try:
            self.table.put_item(
                Item=item,
                ConditionExpression='attribute_not_exists(#id)',
                ExpressionAttributeNames={'#id': 'id'}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise UniqueConstraintViolation(event.source, event.source_id) from e
            logger.error(f"Error inserting event {item['id']}: {e}")
            raise
        return item['id']

    def update(self, event_id: str, fields: Dict[str, Any]) -> None:
        """Overwrite the given attributes of an existing event."""
        fields = {k: v for k, v in fields.items() if k != 'id'}
        if not fields:
            return

        names = {}
        values = {}
        assignments = []
        for i, (name, value) in enumerate(fields.items()):
            names[f"#f{i}"] = name
            values[f":v{i}"] = _to_dynamo(value)
            assignments.append(f"#f{i} = :v{i}")

        try:
            self.table.update_item(
                Key={'id': event_id},
                UpdateExpression='SET ' + ', '.join(assignments),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values
            )
        except ClientError as e:
            logger.error(f"Error updating event {event_id}: {e}")
            raise

    def delete_stale(self, cutoff: int) -> int:
        """
        Delete events whose last_seen_at is older than ``cutoff``.

        Args:
            cutoff: Epoch seconds; strictly older records are removed

        Returns:
            Count of deleted events
        """
        try:
            items = _scan_all(
                self.table,
                FilterExpression=Attr('last_seen_at').lt(cutoff),
                ProjectionExpression='#id',
                ExpressionAttributeNames={'#id': 'id'}
            )
        except ClientError as e:
            logger.error(f"Error scanning for stale events: {e}")
            raise

        event_ids = [item['id'] for item in items]
        if not event_ids:
            return 0

        logger.info(f"Deleting {len(event_ids)} stale events")
        deleted = 0
        for i in range(0, len(event_ids), self.BATCH_SIZE):
            batch = event_ids[i:i + self.BATCH_SIZE]
            try:
                with self.table.batch_writer() as writer:
                    for event_id in batch:
                        writer.delete_item(Key={'id': event_id})
                deleted += len(batch)
            except ClientError as e:
                logger.error(f"Error deleting batch {i // self.BATCH_SIZE + 1}: {e}")
                continue
        return deleted

    def _event_to_item(self, event: CanonicalEvent) -> Dict[str, Any]:
        item = {k: _to_dynamo(v) for k, v in asdict(event).items() if v is not None}
        item['id'] = event_key(event.source, event.source_id)
        return item


class IngestionLogStore:
    """Append-only ingestion log table."""

    def __init__(self, table_name: str, dynamodb=None):
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)

    def append(self, source_id: str, status: str, message: str) -> IngestionLog:
        entry = IngestionLog(
            source_id=source_id,
            status=status,
            message=message,
            timestamp=format_utc(datetime.now(timezone.utc))
        )
        try:
            self.table.put_item(Item={'log_id': str(uuid.uuid4()), **asdict(entry)})
        except ClientError as e:
            logger.error(f"Error writing ingestion log for {source_id}: {e}")
            raise
        return entry


class SourceRegistry:
    """Read-only view of the configured sources."""

    def __init__(self, table_name: Optional[str] = None, dynamodb=None):
        """
        Args:
            table_name: Sources table; without one the built-in catalog is used
            dynamodb: Optional boto3 DynamoDB resource
        """
        self.table = None
        if table_name:
            self.table = (dynamodb or boto3.resource('dynamodb')).Table(table_name)

    def get_active_sources(self, source_filter: Optional[Sequence[str]] = None) -> List[SourceConfig]:
        """
        Active sources, optionally restricted to the given ids.

        Raises:
            ClientError: If the sources table cannot be read
        """
        if self.table is None:
            configs = default_source_configs()
        else:
            try:
                items = _scan_all(self.table)
            except ClientError as e:
                logger.error(f"Error scanning sources table: {e}")
                raise
            configs = [c for c in (self._item_to_config(item) for item in items) if c]

        configs = [c for c in configs if c.active]
        if source_filter:
            wanted = set(source_filter)
            unknown = wanted - {c.id for c in configs}
            if unknown:
                logger.warning(f"Ignoring unknown or inactive sources: {', '.join(sorted(unknown))}")
            configs = [c for c in configs if c.id in wanted]
        return configs

    def _item_to_config(self, item: Dict[str, Any]) -> Optional[SourceConfig]:
        try:
            return SourceConfig(
                id=item['id'],
                name=item.get('name', item['id']),
                url=item['url'],
                active=bool(item.get('active', True)),
                requests_per_second=float(item.get('requests_per_second', 1.0)),
                max_retries=int(item.get('max_retries', 3)),
                retry_delay_ms=int(item.get('retry_delay_ms', 1500))
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Skipping malformed source entry: {e}")
            return None
