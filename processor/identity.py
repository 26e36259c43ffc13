"""Stable, content-derived event identifiers."""
import hashlib
import re
from datetime import datetime
from typing import Optional

from processor.date_parser import format_utc

ID_VERSION = 'v1'
NO_DATE = 'no-date'


def normalize_title(title: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    stripped = re.sub(r'[^\w\s]', '', title.lower())
    return re.sub(r'\s+', ' ', stripped).strip()


def stable_event_id(
    title: str,
    start: Optional[datetime],
    venue: Optional[str],
    domain: str
) -> str:
    """
    Generate the upsert identifier for an event.

    The payload layout is pinned as ``v1|title|start|venue|domain`` so the
    same logical event hashes to the same id across runs and across
    implementations.

    Args:
        title: Event title as extracted
        start: Parsed start instant, or None when the date was unparseable
        venue: Venue name, if known
        domain: Source host domain (e.g. galaxymacau.com)

    Returns:
        Identifier of the form ``<domain>-<20 hex chars>``
    """
    payload = '|'.join([
        ID_VERSION,
        normalize_title(title),
        format_utc(start) if start else NO_DATE,
        (venue or '').strip().lower(),
        domain.lower(),
    ])
    digest = hashlib.sha256(payload.encode('utf-8')).hexdigest()
    return f"{domain}-{digest[:20]}"
