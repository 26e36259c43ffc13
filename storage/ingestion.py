"""Upsert of canonical events into storage, plus stale-record eviction."""
import logging
import time
from dataclasses import asdict, replace
from typing import Callable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from processor.models import CanonicalEvent, IngestionResult, ScrapingResult
from storage.dynamodb_store import DynamoDBEventStore, IngestionLogStore, UniqueConstraintViolation

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = 'local_events'
KEY_FIELDS = ('id', 'source', 'source_id')

STATUS_STARTED = 'started'
STATUS_SUCCESS = 'success'
STATUS_FAILED = 'failed'


class IngestionEngine:
    """Idempotent upsert of events keyed by (source, source_id)."""

    def __init__(
        self,
        store: DynamoDBEventStore,
        log_store: Optional[IngestionLogStore] = None,
        batch_size: int = 10,
        clock: Callable[[], float] = time.time
    ):
        self.store = store
        self.log_store = log_store
        self.batch_size = batch_size
        self.clock = clock

    def ingest(self, events: List[CanonicalEvent]) -> IngestionResult:
        """
        Insert new events and refresh existing ones.

        Failures are recorded per event and never abort the batch.

        Args:
            events: Canonical events to upsert

        Returns:
            IngestionResult with processed/added/updated counts and errors
        """
        result = IngestionResult()
        for i in range(0, len(events), self.batch_size):
            batch = events[i:i + self.batch_size]
            logger.debug(f"Ingesting batch {i // self.batch_size + 1} ({len(batch)} events)")
            for event in batch:
                self._ingest_one(event, result)

        logger.info(
            f"Ingestion complete: {result.processed} processed, {result.added} added, "
            f"{result.updated} updated, {result.duplicates} duplicates, {len(result.errors)} errors"
        )
        return result

    def ingest_run(self, scraping_result: ScrapingResult) -> IngestionResult:
        """
        Ingest a coordinator run, logging one started and one terminal entry per source.
        """
        if not scraping_result.outcomes:
            return self.ingest(scraping_result.events)

        total = IngestionResult()
        for outcome in scraping_result.outcomes:
            self._log(outcome.source_id, STATUS_STARTED, f"Ingestion started for {outcome.source_id}")
            if outcome.error:
                self._log(outcome.source_id, STATUS_FAILED, outcome.error)
                continue

            result = self.ingest(outcome.events)
            total.merge(result)
            message = (
                f"Processed {result.processed} events: {result.added} added, "
                f"{result.updated} updated, {len(result.errors)} errors"
            )
            failed = bool(result.errors) and not (result.added or result.updated)
            self._log(outcome.source_id, STATUS_FAILED if failed else STATUS_SUCCESS, message)
        return total

    def evict_stale(self, retention_days: int) -> int:
        """
        Delete events not seen within the retention window.

        Returns:
            Count of deleted events
        """
        cutoff = int(self.clock()) - retention_days * 86400
        deleted = self.store.delete_stale(cutoff)
        logger.info(f"Evicted {deleted} events unseen for more than {retention_days} days")
        return deleted

    def _ingest_one(self, event: CanonicalEvent, result: IngestionResult) -> None:
        result.processed += 1
        try:
            existing = self.store.find_by_key(event.source, event.source_id)
            if existing:
                fields = {k: v for k, v in asdict(event).items() if k not in KEY_FIELDS}
                fields['last_seen_at'] = int(self.clock())
                self.store.update(existing['id'], fields)
                result.updated += 1
            else:
                if not event.categories:
                    event = replace(event, categories=[DEFAULT_CATEGORY])
                self.store.insert(event)
                result.added += 1
        except UniqueConstraintViolation as e:
            logger.warning(f"Duplicate event {e.source}/{e.source_id} inserted concurrently; skipping")
            result.duplicates += 1
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to ingest {event.source}/{event.source_id}: {e}")
            result.errors.append(f"{event.source}/{event.source_id}: {e}")

    def _log(self, source_id: str, status: str, message: str) -> None:
        if self.log_store is None:
            return
        try:
            self.log_store.append(source_id, status, message)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Could not write ingestion log for {source_id}: {e}")
