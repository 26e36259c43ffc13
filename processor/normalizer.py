"""Normalization of raw events into the canonical schema."""
import logging
import time
from typing import Callable, Iterable, List, Optional

from processor.date_parser import format_utc
from processor.images import default_image_url
from processor.models import LOW_CONFIDENCE, CanonicalEvent, RawEvent
from scraper.sources import SourceSpec

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = 'local_events'


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


class SourceNormalizer:
    """Maps one source's raw events to CanonicalEvent records."""

    def __init__(
        self,
        spec: SourceSpec,
        accept_low_confidence: bool = False,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the normalizer.

        Args:
            spec: Source the raw events came from
            accept_low_confidence: Keep fallback events with placeholder dates
            clock: Epoch-seconds clock used for last_seen_at
        """
        self.spec = spec
        self.accept_low_confidence = accept_low_confidence
        self.clock = clock

    def normalize(self, raw: RawEvent) -> Optional[CanonicalEvent]:
        """
        Normalize one raw event.

        Returns:
            CanonicalEvent, or None when the event lacks a title, source id
            or start, or is low-confidence and those are not accepted
        """
        if not raw.title or not raw.source_id or raw.start is None:
            logger.debug(f"{raw.source}: skipping event with missing required fields: '{raw.title}'")
            return None
        if raw.confidence == LOW_CONFIDENCE and not self.accept_low_confidence:
            logger.debug(f"{raw.source}: skipping low-confidence event '{raw.title}'")
            return None

        spec = self.spec
        description = raw.description or ''
        content = f"{raw.title} {description}"

        categories = _dedupe(
            list(raw.categories or [DEFAULT_CATEGORY])
            + spec.categorizer(content)
            + [spec.region_tag]
        )
        tags = _dedupe([spec.region_tag, *spec.tags])

        venue = raw.venue
        if venue and spec.city.lower() not in venue.lower():
            venue = f"{venue}, {spec.city}"

        long_description = '\n\n'.join(
            part for part in (
                description,
                f"Source: {spec.name}",
                f"Tickets: {raw.ticket_url}" if raw.ticket_url else '',
            ) if part
        )

        end = raw.end if raw.end and raw.end > raw.start else None

        return CanonicalEvent(
            source=raw.source,
            source_id=raw.source_id,
            title=raw.title,
            description=description,
            long_description=long_description,
            start_time_utc=format_utc(raw.start),
            end_time_utc=format_utc(end),
            timezone=spec.timezone,
            venue_name=venue,
            city=spec.city,
            country=spec.country,
            lat=spec.lat,
            lng=spec.lng,
            categories=categories,
            tags=tags,
            image_url=raw.image_url or default_image_url(categories, venue, raw.title),
            organizer_name=spec.organizer,
            external_url=raw.url,
            last_seen_at=int(self.clock()),
        )

    def normalize_all(self, raws: Iterable[RawEvent]) -> List[CanonicalEvent]:
        events = []
        dropped = 0
        for raw in raws:
            event = self.normalize(raw)
            if event is None:
                dropped += 1
            else:
                events.append(event)
        if dropped:
            logger.info(f"{self.spec.id}: dropped {dropped} events during normalization")
        return events
