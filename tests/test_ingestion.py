"""Unit tests for IngestionEngine."""
from unittest.mock import Mock

import boto3
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError
from moto import mock_aws

from processor.models import ScrapingResult, SourceOutcome
from storage.dynamodb_store import DynamoDBEventStore, IngestionLogStore, UniqueConstraintViolation
from storage.ingestion import IngestionEngine
from tests.test_dynamodb_store import create_table, make_event

DAY = 86400
NOW = 1760000000


@pytest.fixture
def dynamodb():
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')
        create_table(resource, 'test-macau-events', 'id')
        create_table(resource, 'test-ingestion-logs', 'log_id')
        yield resource


@pytest.fixture
def store(dynamodb):
    return DynamoDBEventStore('test-macau-events', dynamodb=dynamodb)


@pytest.fixture
def log_store(dynamodb):
    return IngestionLogStore('test-ingestion-logs', dynamodb=dynamodb)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestIngest:
    """Test cases for IngestionEngine.ingest."""

    def test_new_events_are_added(self, store):
        engine = IngestionEngine(store, clock=Clock(NOW))

        result = engine.ingest([make_event(source_id='a'), make_event(source_id='b')])

        assert (result.processed, result.added, result.updated) == (2, 2, 0)
        assert result.errors == []

    def test_reingestion_is_idempotent(self, store):
        clock = Clock(NOW)
        engine = IngestionEngine(store, clock=clock)
        engine.ingest([make_event()])

        clock.now = NOW + 3600
        result = engine.ingest([make_event()])

        assert (result.added, result.updated) == (0, 1)
        items = store.table.scan()['Items']
        assert len(items) == 1
        assert items[0]['last_seen_at'] == NOW + 3600

    def test_changed_description_updates_in_place(self, store):
        engine = IngestionEngine(store, clock=Clock(NOW))
        engine.ingest([make_event()])
        original_id = store.table.scan()['Items'][0]['id']

        result = engine.ingest([make_event(description='Now with special guests.')])

        items = store.table.scan()['Items']
        assert result.updated == 1
        assert len(items) == 1
        assert items[0]['id'] == original_id
        assert items[0]['description'] == 'Now with special guests.'

    def test_same_event_from_two_domains_is_stored_twice(self, store):
        engine = IngestionEngine(store, clock=Clock(NOW))

        result = engine.ingest([
            make_event(source='mgto', source_id='macaotourism.gov.mo-1111111111aaaaaaaaaa'),
            make_event(source='galaxy', source_id='galaxymacau.com-2222222222bbbbbbbbbb'),
        ])

        assert result.added == 2
        assert len(store.table.scan()['Items']) == 2

    def test_missing_categories_default_to_local_events(self, store):
        IngestionEngine(store, clock=Clock(NOW)).ingest([make_event(categories=[])])

        assert store.table.scan()['Items'][0]['categories'] == ['local_events']

    def test_unique_violation_is_a_soft_duplicate(self):
        fake_store = Mock()
        fake_store.find_by_key.return_value = None
        fake_store.insert.side_effect = [UniqueConstraintViolation('galaxy', 'x'), 'galaxy:y']
        engine = IngestionEngine(fake_store)

        result = engine.ingest([make_event(source_id='x'), make_event(source_id='y')])

        assert result.processed == 2
        assert result.added == 1
        assert result.duplicates == 1
        assert result.errors == []

    def test_storage_error_does_not_abort_batch(self):
        fake_store = Mock()
        fake_store.find_by_key.side_effect = [
            ClientError({'Error': {'Code': 'ProvisionedThroughputExceededException', 'Message': 'slow down'}}, 'GetItem'),
            None,
        ]
        engine = IngestionEngine(fake_store)

        result = engine.ingest([make_event(source_id='x'), make_event(source_id='y')])

        assert result.added == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith('galaxy/x: ')

    def test_connection_error_does_not_abort_batch(self):
        fake_store = Mock()
        fake_store.find_by_key.side_effect = [
            EndpointConnectionError(endpoint_url='https://dynamodb.us-east-1.amazonaws.com'),
            None,
        ]
        fake_store.insert.side_effect = [ReadTimeoutError(endpoint_url='https://dynamodb.us-east-1.amazonaws.com')]
        engine = IngestionEngine(fake_store)

        result = engine.ingest([make_event(source_id='x'), make_event(source_id='y')])

        assert result.processed == 2
        assert result.added == 0
        assert [e.split(':')[0] for e in result.errors] == ['galaxy/x', 'galaxy/y']

    def test_batches(self):
        fake_store = Mock()
        fake_store.find_by_key.return_value = {'id': 'existing'}
        engine = IngestionEngine(fake_store, batch_size=3)

        result = engine.ingest([make_event(source_id=str(i)) for i in range(7)])

        assert result.updated == 7
        assert fake_store.update.call_count == 7


class TestEvictStale:
    """Test cases for IngestionEngine.evict_stale."""

    def test_retention_window(self, store):
        store.insert(make_event(source_id='old', last_seen_at=NOW - 31 * DAY))
        store.insert(make_event(source_id='recent', last_seen_at=NOW - 29 * DAY))
        engine = IngestionEngine(store, clock=Clock(NOW))

        removed = engine.evict_stale(retention_days=30)

        assert removed == 1
        assert store.find_by_key('galaxy', 'old') is None
        assert store.find_by_key('galaxy', 'recent') is not None


class TestIngestRun:
    """Test cases for IngestionEngine.ingest_run."""

    def test_logs_started_and_terminal_entry_per_source(self, store, log_store):
        scraping_result = ScrapingResult(
            success=True,
            events=[make_event(source_id='a')],
            errors=['mice: HTTP 500'],
            metadata={},
            outcomes=[
                SourceOutcome(source_id='galaxy', events=[make_event(source_id='a')], raw_count=1),
                SourceOutcome(source_id='mice', error='mice: HTTP 500'),
            ]
        )
        engine = IngestionEngine(store, log_store=log_store, clock=Clock(NOW))

        result = engine.ingest_run(scraping_result)

        assert result.added == 1
        entries = log_store.table.scan()['Items']
        by_source = {}
        for entry in entries:
            by_source.setdefault(entry['source_id'], []).append(entry['status'])
        assert sorted(by_source['galaxy']) == ['started', 'success']
        assert sorted(by_source['mice']) == ['failed', 'started']

    def test_log_failures_are_not_raised(self, store):
        broken_log = Mock()
        broken_log.append.side_effect = ClientError({'Error': {'Code': 'ResourceNotFoundException', 'Message': 'x'}}, 'PutItem')
        scraping_result = ScrapingResult(
            success=True,
            events=[],
            errors=[],
            metadata={},
            outcomes=[SourceOutcome(source_id='galaxy', events=[make_event()])]
        )

        result = IngestionEngine(store, log_store=broken_log, clock=Clock(NOW)).ingest_run(scraping_result)

        assert result.added == 1

    def test_without_outcomes_ingests_events(self, store):
        scraping_result = ScrapingResult(success=True, events=[make_event()], errors=[], metadata={})

        assert IngestionEngine(store, clock=Clock(NOW)).ingest_run(scraping_result).added == 1

    def test_concurrent_duplicate_does_not_fail_source(self, log_store):
        racing_store = Mock()
        racing_store.find_by_key.return_value = None
        racing_store.insert.side_effect = UniqueConstraintViolation('galaxy', 'a')
        scraping_result = ScrapingResult(
            success=True,
            events=[],
            errors=[],
            metadata={},
            outcomes=[SourceOutcome(source_id='galaxy', events=[make_event(source_id='a')])]
        )

        result = IngestionEngine(racing_store, log_store=log_store, clock=Clock(NOW)).ingest_run(scraping_result)

        assert result.errors == []
        assert result.duplicates == 1
        statuses = sorted(entry['status'] for entry in log_store.table.scan()['Items'])
        assert statuses == ['started', 'success']
