"""AWS Lambda handler for Macau Events Sync."""
import hmac
import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from processor.date_parser import format_utc
from scraper.ai_extraction import FirecrawlExtractor
from scraper.coordinator import ScraperCoordinator
from scraper.render import PlaywrightRenderer
from storage.dynamodb_store import DynamoDBEventStore, IngestionLogStore, SourceRegistry
from storage.ingestion import IngestionEngine


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    RESERVED = set(vars(logging.makeLogRecord({})).keys()) | {'message', 'asctime'}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any ``extra`` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }
        for key, value in vars(record).items():
            if key not in self.RESERVED:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class Settings:
    """Runtime configuration read from the environment."""
    events_table: str
    ingestion_log_table: Optional[str]
    sources_table: Optional[str]
    log_level: str
    retention_days: int
    run_deadline_seconds: float
    max_workers: int
    cron_secret: Optional[str]
    firecrawl_api_key: Optional[str]
    enable_browser_render: bool
    render_pool_size: int


def load_settings() -> Settings:
    """Read configuration from environment variables."""
    return Settings(
        events_table=os.environ.get('EVENTS_TABLE', 'macau-events'),
        ingestion_log_table=os.environ.get('INGESTION_LOG_TABLE') or None,
        sources_table=os.environ.get('SOURCES_TABLE') or None,
        log_level=os.environ.get('LOG_LEVEL', 'INFO'),
        retention_days=int(os.environ.get('RETENTION_DAYS', '30')),
        run_deadline_seconds=float(os.environ.get('RUN_DEADLINE_SECONDS', '240')),
        max_workers=int(os.environ.get('MAX_WORKERS', '6')),
        cron_secret=os.environ.get('CRON_SECRET') or None,
        firecrawl_api_key=os.environ.get('FIRECRAWL_API_KEY') or None,
        enable_browser_render=os.environ.get('ENABLE_BROWSER_RENDER', 'false').lower() in ('1', 'true', 'yes'),
        render_pool_size=int(os.environ.get('RENDER_POOL_SIZE', '2'))
    )


def is_scheduled_invocation(event: Dict[str, Any]) -> bool:
    return event.get('source') == 'aws.events'


def is_authorized(event: Dict[str, Any], cron_secret: Optional[str]) -> bool:
    """Check the bearer token of an HTTP invocation."""
    if not cron_secret:
        return False
    headers = {k.lower(): v for k, v in (event.get('headers') or {}).items()}
    return hmac.compare_digest(headers.get('authorization', ''), f"Bearer {cron_secret}")


def requested_sources(event: Dict[str, Any]) -> Optional[List[str]]:
    """Source filter from the query string (comma-separated) or the JSON body."""
    query = event.get('queryStringParameters') or {}
    if query.get('sources'):
        return [s.strip() for s in query['sources'].split(',') if s.strip()]

    body = event.get('body')
    if body:
        try:
            payload = json.loads(body) if isinstance(body, str) else body
        except ValueError:
            return None
        sources = payload.get('sources') if isinstance(payload, dict) else None
        if isinstance(sources, list):
            return [str(s) for s in sources]
        if isinstance(sources, str):
            return [s.strip() for s in sources.split(',') if s.strip()]
    return None


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body)
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for Macau Events Sync.

    Args:
        event: API Gateway request or EventBridge schedule payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and run summary
    """
    settings = load_settings()

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    event = event or {}
    if not is_scheduled_invocation(event) and not is_authorized(event, settings.cron_secret):
        logger.warning("Rejected unauthorized ingestion request")
        return _response(401, {'error': 'Unauthorized'})

    start_time = time.time()
    source_filter = requested_sources(event)
    logger.info(
        "Ingestion run started",
        extra={
            'events_table': settings.events_table,
            'sources': source_filter or 'all',
            'scheduled': is_scheduled_invocation(event)
        }
    )

    try:
        registry = SourceRegistry(settings.sources_table)
        sources = registry.get_active_sources(source_filter)

        coordinator = ScraperCoordinator(
            sources=sources,
            renderer=PlaywrightRenderer(pool_size=settings.render_pool_size) if settings.enable_browser_render else None,
            ai_extractor=FirecrawlExtractor(settings.firecrawl_api_key) if settings.firecrawl_api_key else None,
            max_workers=settings.max_workers,
            deadline=settings.run_deadline_seconds
        )
        scraping_result = coordinator.run_all(sources)

        store = DynamoDBEventStore(settings.events_table)
        log_store = IngestionLogStore(settings.ingestion_log_table) if settings.ingestion_log_table else None
        engine = IngestionEngine(store, log_store=log_store)
        ingestion_result = engine.ingest_run(scraping_result)
        removed = engine.evict_stale(settings.retention_days)

        errors = scraping_result.errors + ingestion_result.errors
        duration = time.time() - start_time
        body = {
            'success': scraping_result.success,
            'executionTime': round(duration, 2),
            'eventsProcessed': ingestion_result.processed,
            'eventsAdded': ingestion_result.added,
            'eventsUpdated': ingestion_result.updated,
            'staleEventsRemoved': removed,
            'errors': errors,
            'timestamp': format_utc(datetime.now(timezone.utc))
        }

        if not scraping_result.success:
            status_code = 500
        elif errors:
            status_code = 207
        else:
            status_code = 200

        logger.info(
            "Ingestion run completed",
            extra={
                'status_code': status_code,
                'duration_seconds': round(duration, 2),
                'events_added': ingestion_result.added,
                'events_updated': ingestion_result.updated,
                'stale_events_removed': removed,
                'error_count': len(errors)
            }
        )
        return _response(status_code, body)

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Ingestion run failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'success': False,
            'executionTime': round(duration, 2),
            'eventsProcessed': 0,
            'eventsAdded': 0,
            'eventsUpdated': 0,
            'staleEventsRemoved': 0,
            'errors': [str(e)],
            'timestamp': format_utc(datetime.now(timezone.utc))
        })
