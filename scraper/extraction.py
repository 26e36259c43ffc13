"""Ordered extraction chain turning listing HTML into raw events."""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Tag

from processor.date_parser import DEFAULT_DURATION, parse_date_interval, parse_end_boundary
from processor.identity import stable_event_id
from processor.models import HIGH_CONFIDENCE, LOW_CONFIDENCE, RawEvent
from scraper.ai_extraction import EVENT_SCHEMA, build_prompt, validate_events
from scraper.errors import (
    AIExtractionError,
    ConfigurationError,
    ParseError,
    ScraperError,
    ScraperTimeoutError,
)
from scraper.fetcher import FetchOptions, RateLimitedFetcher, absolute_url
from scraper.sources import SourceSpec

logger = logging.getLogger(__name__)

AI_TIMEOUT = 60.0
MAX_TITLE_LENGTH = 200
MIN_BLOCK_LENGTH = 10
MAX_BLOCK_LENGTH = 300
MIN_FALLBACK_LENGTH = 20

BLOCK_TAGS = ['article', 'li', 'tr', 'div', 'p', 'a', 'h2', 'h3', 'h4']

LANGUAGE_CODES = {'en', 'eng', 'zh', 'pt', 'fr', 'es', 'de', 'it', 'ru', 'jp', 'ja', 'ko', 'kr'}
LANGUAGE_NAMES = (
    'english', 'chinese', '繁體中文', '简体中文', '中文', 'portuguese', 'português',
    'ภาษาไทย', 'ไทย', 'thai', 'bahasa indonesia', 'indonesian', 'indonesia',
    'français', 'french', 'español', 'spanish', 'deutsch', 'german',
    'italiano', 'italian', 'русский', 'russian', '日本語', 'japanese',
    '한국어', 'korean',
)
NAVIGATION_WORDS = {
    'entertainment', 'shows', 'tickets', 'calendar', 'schedule', 'booking',
    'home', 'about', 'contact', 'menu', 'search', 'login', 'register',
    'privacy', 'terms', 'policy', 'cookies', 'loading', 'error', 'close',
    'open', 'toggle', 'expand', 'collapse', 'events', 'more', 'back', 'next',
}
NAVIGATION_PHRASES = (
    'see details', 'see more', 'view details', 'learn more', 'click here',
    'read more', 'more info', 'tickets & shows', 'sign in', 'sign up',
    'please wait', 'book now', 'buy now',
)
_NAVIGATION_PHRASE_RE = re.compile(
    r'\b(?:' + '|'.join(re.escape(p) for p in NAVIGATION_PHRASES) + r')\b'
)
_TOKEN_SPLIT_RE = re.compile(r'[\s|/,·•&]+')
_SYMBOLS_ONLY_RE = re.compile(r'^[\d\W_]+$')

_MONTH_WORD = (
    r'(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?'
    r'|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?(?![a-z])'
)
_DAY = r'\d{1,2}(?:st|nd|rd|th)?(?!\d)'
DATE_SCAN_RE = re.compile(
    r'(?:'
    rf'(?<![a-z]){_MONTH_WORD}\s+{_DAY}(?:\s*[-–,&]\s*(?:{_MONTH_WORD}\s+)?{_DAY})*(?:,?\s+\d{{4}})?'
    rf'|(?<!\d){_DAY}(?:\s*[-–]\s*{_DAY})?\s+{_MONTH_WORD}(?:,?\s+\d{{4}})?'
    r'|\d{4}-\d{1,2}-\d{1,2}'
    r'|\d{1,2}/\d{1,2}/\d{4}'
    r'|(?:\d{4}\s*年\s*)?\d{1,2}\s*月\s*\d{1,2}\s*日'
    r')'
    r'(?:\s*(?:,|at|@)?\s*\d{1,2}:\d{2}(?:\s*[ap]\.?m\.?)?)?',
    re.IGNORECASE
)
PRICE_RE = re.compile(r'(?:MOP|HK\$|US\$|\$)\s*([\d,]+(?:\.\d+)?)', re.IGNORECASE)
BACKGROUND_URL_RE = re.compile(r'background-image\s*:\s*url\(\s*[\'"]?([^\'")]+)[\'"]?\s*\)', re.IGNORECASE)
PLACEHOLDER_MARKERS = ('placeholder', 'logo', 'icon', 'spacer', 'blank', 'sprite')


@dataclass
class SourceContext:
    """Everything a stage needs besides the page itself."""
    spec: SourceSpec
    fetcher: Optional[RateLimitedFetcher] = None
    ai_extractor: Optional[object] = None
    now: Optional[datetime] = None
    page_url: Optional[str] = None

    @property
    def listing_url(self) -> str:
        return self.page_url or self.spec.url

    @property
    def reference_time(self) -> datetime:
        return self.now or datetime.now(timezone.utc)


Stage = Callable[[BeautifulSoup, SourceContext], List[RawEvent]]


def is_valid_event_title(title: Optional[str]) -> bool:
    """
    Reject titles that are UI chrome rather than events.

    Language selectors and navigation words only disqualify a title made
    up entirely of them, so "French Film Festival" survives while
    "English | 繁體中文" does not. Navigation phrases such as "read more"
    disqualify a title wherever they appear as whole words.
    """
    if not title:
        return False
    cleaned = title.strip().lower()
    if len(cleaned) < 3 or _SYMBOLS_ONLY_RE.match(cleaned):
        return False
    if _NAVIGATION_PHRASE_RE.search(cleaned):
        return False

    remainder = cleaned
    for name in LANGUAGE_NAMES:
        remainder = remainder.replace(name, ' ')
    tokens = [t for t in _TOKEN_SPLIT_RE.split(remainder) if t]
    if not tokens:
        return False
    return not all(t in LANGUAGE_CODES or t in NAVIGATION_WORDS for t in tokens)


def split_labelled_title(text: str, prefixes: Sequence[str] = ()) -> Tuple[str, Optional[str]]:
    """
    Split "Major Event Sep 5-28 23rd Macao City Fringe Festival" style text.

    Returns:
        (title, date_text) with the label prefix stripped; date_text is None
        when the text holds no date
    """
    text = _collapse(text)
    for prefix in prefixes:
        if text.lower().startswith(prefix.lower()):
            text = text[len(prefix):].strip()
            break

    match = DATE_SCAN_RE.search(text)
    if not match:
        return text, None

    date_text = match.group(0).strip()
    title = (text[:match.start()] + ' ' + text[match.end():]).strip()
    title = re.sub(r'^[\s\-–|:·]+|[\s\-–|:·]+$', '', _collapse(title))
    return title, date_text


def scan_date_text(text: str) -> Optional[str]:
    """First date-like substring of a text block."""
    match = DATE_SCAN_RE.search(text or '')
    return match.group(0).strip() if match else None


def structured_stage(soup: BeautifulSoup, context: SourceContext) -> List[RawEvent]:
    """Per-source container selectors with ordered field sub-selectors."""
    spec = context.spec
    elements = _select_first(soup, spec.container_selectors)
    if not elements:
        logger.debug(f"{spec.id}: no container selector matched")
        return []

    events = []
    for element in elements[:spec.max_events]:
        try:
            event = _event_from_element(element, context)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"{spec.id}: failed to parse event element: {e}")
            continue
        if event:
            events.append(event)
    return events


def heuristic_stage(soup: BeautifulSoup, context: SourceContext) -> List[RawEvent]:
    """Scan text blocks for a date next to an event-like phrase."""
    spec = context.spec
    keywords = tuple(k.lower() for k in spec.lexical_keywords)
    prefixes = tuple(p.lower() for p in spec.label_prefixes)

    candidates: List[Tuple[Tag, str, str]] = []
    for block in soup.find_all(BLOCK_TAGS):
        text = _collapse(block.get_text(' '))
        if not MIN_BLOCK_LENGTH <= len(text) <= MAX_BLOCK_LENGTH:
            continue
        lowered = text.lower()
        if not (any(k in lowered for k in keywords) or lowered.startswith(prefixes)):
            continue
        title, date_text = split_labelled_title(text, spec.label_prefixes)
        if date_text and is_valid_event_title(title):
            candidates.append((block, title, date_text))

    events = []
    for block, title, date_text in _innermost(candidates)[:spec.max_events]:
        events.append(_build_event(
            context,
            stage='heuristic',
            title=title,
            date_text=date_text,
            url=_element_link(block, spec.base_url),
            image_url=_extract_image(block, spec.image_selectors, spec.base_url),
        ))
    return events


def ai_stage(soup: BeautifulSoup, context: SourceContext) -> List[RawEvent]:
    """Schema-driven extraction through the injected AI capability."""
    spec = context.spec
    if context.ai_extractor is None:
        logger.debug(f"{spec.id}: AI extraction not configured, skipping")
        return []

    prompt = build_prompt(spec.name, list(spec.ai_prompt_hints))
    try:
        payload = context.ai_extractor.extract(context.listing_url, EVENT_SCHEMA, prompt, timeout=AI_TIMEOUT)
        ai_events = validate_events(payload)
    except (AIExtractionError, ConfigurationError, ScraperTimeoutError) as e:
        logger.warning(f"{spec.id}: AI extraction unavailable: {e}")
        return []

    events = []
    for item in ai_events[:spec.max_events]:
        if not is_valid_event_title(item.title):
            continue
        categories = [c.strip().lower() for c in [item.category or ''] + item.tags if c and c.strip()]
        event = _build_event(
            context,
            stage='ai',
            title=item.title,
            date_text=item.startDate,
            description=item.description,
            venue=item.venue,
            url=absolute_url(spec.base_url, item.url),
            image_url=absolute_url(spec.base_url, item.imageUrl),
            categories=categories,
        )
        if item.endDate and event.start:
            end = parse_end_boundary(item.endDate, spec.timezone, context.reference_time)
            if end and end > event.start:
                event.end = end
        events.append(event)
    return events


def fallback_stage(soup: BeautifulSoup, context: SourceContext) -> List[RawEvent]:
    """Last resort: plausible text blocks as low-confidence events with placeholder dates."""
    spec = context.spec
    keywords = tuple(k.lower() for k in spec.lexical_keywords)

    candidates: List[Tuple[Tag, str, str]] = []
    seen = set()
    for block in soup.find_all(BLOCK_TAGS):
        text = _collapse(block.get_text(' '))
        if not MIN_FALLBACK_LENGTH <= len(text) <= MAX_BLOCK_LENGTH or text in seen:
            continue
        if not any(k in text.lower() for k in keywords):
            continue
        title = _truncate(re.split(r'(?<=[.!?])\s', text, maxsplit=1)[0])
        if is_valid_event_title(title):
            seen.add(text)
            candidates.append((block, title, text))

    now = context.reference_time
    events = []
    for i, (block, title, text) in enumerate(_innermost(candidates)[:spec.max_events]):
        start = now + timedelta(days=i + 1)
        event = _build_event(
            context,
            stage='fallback',
            title=title,
            date_text=None,
            description=text if text != title else None,
            url=_element_link(block, spec.base_url),
            confidence=LOW_CONFIDENCE,
        )
        event.start = start
        event.end = start + DEFAULT_DURATION
        events.append(event)
    return events


STAGES: List[Tuple[str, Stage]] = [
    ('structured', structured_stage),
    ('heuristic', heuristic_stage),
    ('ai', ai_stage),
    ('fallback', fallback_stage),
]


def is_plausible(event: RawEvent) -> bool:
    if event.confidence == LOW_CONFIDENCE:
        return True
    return is_valid_event_title(event.title) and event.start is not None


def extract(html: str, context: SourceContext, stages: Iterable[Tuple[str, Stage]] = None) -> List[RawEvent]:
    """
    Run the extraction chain over a listing page.

    Stages run in order and lazily; the first one that yields at least one
    plausible event wins. Winning events are then enriched from their
    detail pages when the source asks for it.

    Args:
        html: Listing page HTML
        context: Source spec plus injected capabilities
        stages: Override of the stage chain

    Returns:
        List of RawEvent objects

    Raises:
        ParseError: If no stage produced anything
    """
    soup = BeautifulSoup(html, 'html.parser')
    spec = context.spec

    for name, stage in stages or STAGES:
        events = [e for e in stage(soup, context) if is_plausible(e)]
        if not events:
            logger.debug(f"{spec.id}: stage '{name}' produced no events")
            continue

        events = _dedupe(events)
        logger.info(f"{spec.id}: stage '{name}' extracted {len(events)} events")
        if spec.enrich_details and context.fetcher is not None:
            for event in events:
                enrich_from_detail(event, context)
        return events

    raise ParseError(f"No events found on {context.listing_url}", source=spec.id)


def enrich_from_detail(event: RawEvent, context: SourceContext) -> None:
    """
    Fill an event from its detail page, keeping whichever value is better.

    The event id is left alone so a failed detail fetch never changes it.
    """
    spec = context.spec
    if not event.url or event.url.rstrip('/') == context.listing_url.rstrip('/'):
        return

    try:
        html = context.fetcher.fetch(event.url, FetchOptions(timeout=spec.timeout))
    except ScraperError as e:
        logger.warning(f"{spec.id}: detail enrichment failed for {event.url}: {e}")
        return

    details = parse_detail_page(html, spec)
    if _longer(details.get('description'), event.description):
        event.description = details['description']
    if details.get('venue') and (
        not event.venue or event.venue == spec.default_venue or _longer(details['venue'], event.venue)
    ):
        event.venue = details['venue']
    if _longer(details.get('ticket_url'), event.ticket_url):
        event.ticket_url = details['ticket_url']
    if details.get('image_url'):
        event.image_url = details['image_url']


def parse_detail_page(html: str, spec: SourceSpec) -> Dict[str, Optional[str]]:
    """Best description, venue, ticket link and image of a detail page."""
    soup = BeautifulSoup(html, 'html.parser')

    description = None
    for selector in spec.detail_description_selectors:
        element = soup.select_one(selector)
        if element is None:
            continue
        value = element.get('content') if element.name == 'meta' else element.get_text(' ')
        value = _collapse(value or '')
        if len(value) > 20:
            description = value
            break

    og_image = soup.select_one('meta[property="og:image"]')
    image_url = None
    if og_image and og_image.get('content') and not _is_placeholder_image(og_image['content']):
        image_url = absolute_url(spec.base_url, og_image['content'])
    else:
        image_url = _extract_image(soup, spec.image_selectors, spec.base_url)

    ticket = _first_attr(soup, spec.ticket_selectors, 'href')
    return {
        'description': description,
        'venue': _first_text(soup, spec.detail_venue_selectors),
        'ticket_url': absolute_url(spec.base_url, ticket),
        'image_url': image_url,
    }


def _event_from_element(element: Tag, context: SourceContext) -> Optional[RawEvent]:
    spec = context.spec
    element_text = _collapse(element.get_text(' '))

    raw_title = _first_text(element, spec.title_selectors) or element_text
    title, split_date = split_labelled_title(raw_title, spec.label_prefixes)
    title = _truncate(title)
    if not is_valid_event_title(title):
        logger.debug(f"{spec.id}: rejected title '{title}'")
        return None

    date_text = _first_text(element, spec.date_selectors) or split_date or scan_date_text(element_text)
    description = _first_text(element, spec.description_selectors)
    if description == raw_title:
        description = None

    prices = [float(p.replace(',', '')) for p in PRICE_RE.findall(element_text)]

    return _build_event(
        context,
        stage='structured',
        title=title,
        date_text=date_text,
        description=description,
        venue=_first_text(element, spec.venue_selectors),
        url=_element_link(element, spec.base_url),
        ticket_url=absolute_url(spec.base_url, _first_attr(element, spec.ticket_selectors, 'href')),
        image_url=_extract_image(element, spec.image_selectors, spec.base_url),
        price_min=min(prices) if prices else None,
    )


def _build_event(
    context: SourceContext,
    stage: str,
    title: str,
    date_text: Optional[str],
    url: Optional[str] = None,
    description: Optional[str] = None,
    venue: Optional[str] = None,
    ticket_url: Optional[str] = None,
    image_url: Optional[str] = None,
    price_min: Optional[float] = None,
    categories: Optional[List[str]] = None,
    confidence: str = HIGH_CONFIDENCE,
) -> RawEvent:
    spec = context.spec
    title = _collapse(title)
    venue = _collapse(venue) if venue else spec.default_venue
    if venue and spec.venue_suffix and spec.venue_suffix.lower() not in venue.lower():
        venue = f"{venue}, {spec.venue_suffix}"
    interval = parse_date_interval(date_text, spec.timezone, context.reference_time)

    return RawEvent(
        source=spec.id,
        source_id=stable_event_id(title, interval.start, venue, spec.domain),
        title=title,
        url=url or context.listing_url,
        city=spec.city,
        description=_collapse(description) if description else None,
        date_text=date_text,
        start=interval.start,
        end=interval.end,
        venue=venue,
        ticket_url=ticket_url,
        image_url=image_url,
        price_min=price_min,
        categories=categories or [],
        confidence=confidence,
        extraction_stage=stage,
    )


def _select_first(soup: Tag, selectors: Sequence[str]) -> List[Tag]:
    for selector in selectors:
        found = [el for el in soup.select(selector) if len(el.get_text(strip=True)) >= 3]
        if found:
            logger.debug(f"Container selector '{selector}' matched {len(found)} elements")
            return found
    return []


def _first_text(element: Tag, selectors: Sequence[str]) -> Optional[str]:
    for selector in selectors:
        found = element.select_one(selector)
        if found is not None:
            text = _collapse(found.get_text(' '))
            if text:
                return text
    return None


def _first_attr(element: Tag, selectors: Sequence[str], attr: str) -> Optional[str]:
    for selector in selectors:
        found = element.select_one(selector)
        if found is not None and found.get(attr):
            return found[attr]
    return None


def _element_link(element: Tag, base_url: str) -> Optional[str]:
    if element.name == 'a' and element.get('href'):
        href = element['href']
    else:
        link = element.select_one('a[href]')
        href = link['href'] if link else None
    if not href or href.startswith(('#', 'javascript:', 'mailto:')):
        return None
    return absolute_url(base_url, href)


def _extract_image(element: Tag, selectors: Sequence[str], base_url: str) -> Optional[str]:
    for selector in selectors:
        for found in element.select(selector):
            src = found.get('src') or found.get('data-src')
            if not src:
                match = BACKGROUND_URL_RE.search(found.get('style', ''))
                src = match.group(1) if match else None
            if src and not _is_placeholder_image(src):
                return absolute_url(base_url, src)
    return None


def _is_placeholder_image(src: str) -> bool:
    lowered = src.lower()
    if lowered.startswith('data:') or lowered.split('?')[0].endswith('.svg'):
        return True
    return any(marker in lowered for marker in PLACEHOLDER_MARKERS)


def _innermost(candidates: List[Tuple[Tag, str, str]]) -> List[Tuple[Tag, str, str]]:
    """Drop candidates that merely wrap another candidate."""
    wrappers = set()
    for block, _, _ in candidates:
        wrappers.update(id(parent) for parent in block.parents)
    return [c for c in candidates if id(c[0]) not in wrappers]


def _dedupe(events: List[RawEvent]) -> List[RawEvent]:
    seen = set()
    unique = []
    for event in events:
        if event.source_id not in seen:
            seen.add(event.source_id)
            unique.append(event)
    return unique


def _longer(candidate: Optional[str], current: Optional[str]) -> bool:
    return bool(candidate) and len(candidate) > len(current or '')


def _collapse(text: str) -> str:
    return re.sub(r'\s+', ' ', text or '').strip()


def _truncate(text: str) -> str:
    return text if len(text) <= MAX_TITLE_LENGTH else text[:MAX_TITLE_LENGTH].rsplit(' ', 1)[0]
