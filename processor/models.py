"""Data models for event acquisition and ingestion."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


HIGH_CONFIDENCE = 'high'
LOW_CONFIDENCE = 'low'


@dataclass
class ParsedInterval:
    """UTC interval resolved from free-form date text."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @property
    def unparseable(self) -> bool:
        return self.start is None


@dataclass
class RawEvent:
    """Unnormalized event as extracted from a source page."""
    source: str
    source_id: str
    title: str
    url: str
    city: str
    description: Optional[str] = None
    date_text: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    venue: Optional[str] = None
    ticket_url: Optional[str] = None
    image_url: Optional[str] = None
    price_min: Optional[float] = None
    categories: List[str] = field(default_factory=list)
    confidence: str = HIGH_CONFIDENCE
    extraction_stage: str = 'structured'


@dataclass
class CanonicalEvent:
    """Normalized, persisted event."""
    source: str
    source_id: str
    title: str
    description: str
    long_description: str
    start_time_utc: str
    end_time_utc: Optional[str]
    timezone: str
    venue_name: Optional[str]
    city: str
    country: str
    lat: float
    lng: float
    categories: List[str]
    tags: List[str]
    image_url: Optional[str]
    organizer_name: str
    external_url: str
    last_seen_at: int
    id: Optional[str] = None


@dataclass
class SourceConfig:
    """Registry entry for one event source."""
    id: str
    name: str
    url: str
    active: bool = True
    requests_per_second: float = 1.0
    max_retries: int = 3
    retry_delay_ms: int = 1500


@dataclass
class IngestionLog:
    """Operational log entry for one source run."""
    source_id: str
    status: str
    message: str
    timestamp: str


@dataclass
class SourceOutcome:
    """Result of one source pipeline."""
    source_id: str
    events: List[CanonicalEvent] = field(default_factory=list)
    error: Optional[str] = None
    raw_count: int = 0


@dataclass
class ScrapingResult:
    """Aggregated result of a coordinator run."""
    success: bool
    events: List[CanonicalEvent]
    errors: List[str]
    metadata: Dict[str, object]
    outcomes: List[SourceOutcome] = field(default_factory=list)


@dataclass
class IngestionResult:
    """Result of an ingestion pass."""
    processed: int = 0
    added: int = 0
    updated: int = 0
    duplicates: int = 0
    errors: List[str] = field(default_factory=list)

    def merge(self, other: 'IngestionResult') -> None:
        self.processed += other.processed
        self.added += other.added
        self.updated += other.updated
        self.duplicates += other.duplicates
        self.errors.extend(other.errors)
