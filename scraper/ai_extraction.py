"""AI-assisted structured extraction via Firecrawl."""
import logging
from typing import Any, Dict, List, Optional

from firecrawl import Firecrawl
from pydantic import BaseModel, Field, ValidationError, field_validator

from scraper.errors import AIExtractionError, ScraperTimeoutError

logger = logging.getLogger(__name__)

EVENT_SCHEMA: Dict[str, Any] = {
    'type': 'object',
    'properties': {
        'events': {
            'type': 'array',
            'items': {
                'type': 'object',
                'properties': {
                    'title': {'type': 'string', 'description': 'The event title or name'},
                    'description': {'type': 'string', 'description': 'Event description or summary'},
                    'startDate': {
                        'type': 'string',
                        'description': "Event start date in any recognizable format (e.g. 'Sep 5-28', 'September 27')",
                    },
                    'endDate': {'type': 'string', 'description': 'Event end date if different from start date'},
                    'venue': {'type': 'string', 'description': 'Event venue or location'},
                    'category': {
                        'type': 'string',
                        'description': 'Event category (festival, concert, exhibition, cultural, etc.)',
                    },
                    'url': {'type': 'string', 'description': 'Direct URL to event details page if available'},
                    'imageUrl': {'type': 'string', 'description': 'URL to event image or poster'},
                    'tags': {
                        'type': 'array',
                        'items': {'type': 'string'},
                        'description': 'Relevant tags or keywords for the event',
                    },
                },
                'required': ['title', 'startDate'],
            },
        },
    },
    'required': ['events'],
}

BASE_PROMPT = """Extract all event information from this webpage. Focus on finding:
- Event titles and names
- Start and end dates (keep compact formats like 'Sep 5-28' or 'Sep 6, 13, 20, Oct 1 & 6' as written)
- Event descriptions and summaries
- Venue or location information
- Event categories (festivals, concerts, exhibitions, etc.)
- Any direct links to event detail pages
- Event images or posters
Only extract actual events, never navigation links, language selectors or generic UI text."""


class AIEvent(BaseModel):
    """One event as returned by the extraction service."""
    title: str = Field(min_length=1)
    startDate: str = Field(min_length=1)
    description: Optional[str] = None
    endDate: Optional[str] = None
    venue: Optional[str] = None
    category: Optional[str] = None
    url: Optional[str] = None
    imageUrl: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator('title', 'startDate')
    @classmethod
    def strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('must not be blank')
        return value


def build_prompt(source_name: str, hints: List[str]) -> str:
    """Source-tailored extraction prompt."""
    lines = [BASE_PROMPT, f"Source: {source_name}"]
    lines.extend(f"- {hint}" for hint in hints)
    return '\n'.join(lines)


def validate_events(payload: Any) -> List[AIEvent]:
    """
    Validate a raw extraction payload against the fixed schema.

    Malformed entries are dropped one by one; a payload without an
    ``events`` list is rejected outright.

    Raises:
        AIExtractionError: If the payload shape is unusable
    """
    if not isinstance(payload, dict) or not isinstance(payload.get('events'), list):
        raise AIExtractionError("AI extraction returned no events list")

    events = []
    for index, entry in enumerate(payload['events']):
        try:
            events.append(AIEvent.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Dropping malformed AI event #{index}: {e.error_count()} validation errors")
    return events


class FirecrawlExtractor:
    """Structured extraction through the Firecrawl API."""

    def __init__(self, api_key: str, timeout: float = 60.0, client: Optional[Firecrawl] = None):
        self.timeout = timeout
        self._client = client or Firecrawl(api_key=api_key)
        logger.info("AI extraction enabled with Firecrawl")

    def extract(self, url: str, schema: Dict[str, Any], prompt: str,
                timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Run structured extraction on a URL.

        Args:
            url: Page to extract from
            schema: JSON schema of the expected payload
            prompt: Extraction instructions
            timeout: Seconds before the call is abandoned

        Returns:
            Raw JSON payload as returned by the service

        Raises:
            ScraperTimeoutError: The service did not answer in time
            AIExtractionError: Any other service failure
        """
        timeout = timeout or self.timeout
        try:
            document = self._client.scrape(
                url,
                formats=[{'type': 'json', 'schema': schema, 'prompt': prompt}],
                timeout=int(timeout * 1000)
            )
        except Exception as e:
            if 'timeout' in type(e).__name__.lower():
                raise ScraperTimeoutError(f"AI extraction timed out for {url}", cause=e) from e
            raise AIExtractionError(f"AI extraction failed for {url}: {e}", cause=e) from e

        payload = document.get('json') if isinstance(document, dict) else getattr(document, 'json', None)
        if payload is None:
            raise AIExtractionError(f"AI extraction returned no structured data for {url}")
        return payload
