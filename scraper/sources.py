"""Catalog of event sources and their extraction parameters.

Every source is described by a ``SourceSpec`` value: where to fetch, which
selectors to try, how to categorize content and where the venue sits on the
map. One parametrized pipeline runs over these values instead of one scraper
class per venue.
"""
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from processor.models import SourceConfig

DEFAULT_TIMEZONE = 'Asia/Macau'

Categorizer = Callable[[str], List[str]]

GENERIC_CONTAINERS = ['.event-item', '.event', '[data-event]', '.event-card', 'article']
GENERIC_TITLES = ['h1', 'h2', 'h3', '.event-title', '.title', '[class*="title"]', '.name']
GENERIC_DESCRIPTIONS = ['.description', '.summary', '.event-description', '.content', '.excerpt', 'p']
GENERIC_DATES = ['.date', '.event-date', '[data-date]', '[class*="date"]', '.when', '.time', '.datetime']
GENERIC_VENUES = ['.venue', '.location', '.event-venue', '.where', '[class*="venue"]', '[class*="location"]']
GENERIC_IMAGES = [
    'img[src]', '.image img[src]', '.event-image img[src]', '.thumbnail img[src]',
    '.poster img[src]', '[style*="background-image"]',
]
GENERIC_TICKETS = ['a[href*="ticket"]', 'a[href*="booking"]', 'a[href*="purchase"]', '.buy-ticket']
DETAIL_DESCRIPTIONS = [
    '.event-description', '.show-description', '.content-main', '.details',
    '.description', 'meta[property="og:description"]',
]
DETAIL_VENUES = ['.venue-info', '.location-info', '.where', '.venue']


def keyword_categorizer(base: Sequence[str], rules: Sequence[Tuple[str, Sequence[str]]]) -> Categorizer:
    """Build a categorizer that tags content by keyword presence."""
    def categorize(content: str) -> List[str]:
        lowered = content.lower()
        categories = list(base)
        for category, keywords in rules:
            if category not in categories and any(k in lowered for k in keywords):
                categories.append(category)
        return categories
    return categorize


CULTURAL_RULES = [
    ('exhibitions', ('exhibition', 'museum', 'gallery')),
    ('festivals', ('festival', 'celebration', 'carnival')),
    ('music', ('concert', 'music', 'performance')),
    ('performing_arts', ('show', 'theatre', 'theater')),
    ('food', ('food', 'dining', 'culinary')),
    ('cultural', ('cultural', 'heritage', 'traditional')),
    ('sports', ('sport', 'race', 'game')),
]

ENTERTAINMENT_RULES = [
    ('concert', ('concert', 'music', 'singer', 'tour')),
    ('show', ('show', 'performance', 'theatre', 'musical')),
    ('comedy', ('comedy', 'comedian', 'standup')),
    ('magic', ('magic', 'illusion')),
    ('dance', ('dance', 'ballet', 'dancing')),
    ('dining', ('dining', 'food', 'culinary')),
    ('family', ('family', 'kids', 'children')),
    ('sports', ('sport', 'tournament', 'boxing', 'match')),
]

BUSINESS_RULES = [
    ('exhibitions', ('exhibition', 'expo', 'fair')),
    ('conference', ('conference', 'convention', 'forum', 'summit')),
    ('meeting', ('meeting', 'seminar')),
]


@dataclass(frozen=True)
class SourceSpec:
    """Extraction parameters for one source."""
    id: str
    name: str
    url: str
    base_url: str
    organizer: str
    lat: float
    lng: float
    tags: Tuple[str, ...] = ()
    timezone: str = DEFAULT_TIMEZONE
    city: str = 'Macau'
    country: str = 'China'
    region_tag: str = 'macau'
    default_venue: Optional[str] = None
    venue_suffix: Optional[str] = None
    container_selectors: Tuple[str, ...] = tuple(GENERIC_CONTAINERS)
    title_selectors: Tuple[str, ...] = tuple(GENERIC_TITLES)
    description_selectors: Tuple[str, ...] = tuple(GENERIC_DESCRIPTIONS)
    date_selectors: Tuple[str, ...] = tuple(GENERIC_DATES)
    venue_selectors: Tuple[str, ...] = tuple(GENERIC_VENUES)
    image_selectors: Tuple[str, ...] = tuple(GENERIC_IMAGES)
    ticket_selectors: Tuple[str, ...] = tuple(GENERIC_TICKETS)
    detail_description_selectors: Tuple[str, ...] = tuple(DETAIL_DESCRIPTIONS)
    detail_venue_selectors: Tuple[str, ...] = tuple(DETAIL_VENUES)
    label_prefixes: Tuple[str, ...] = ()
    lexical_keywords: Tuple[str, ...] = (
        'concert', 'show', 'exhibition', 'festival', 'performance', 'live',
        'tour', 'fair', 'expo', 'conference', 'display', 'parade', 'gala',
    )
    enrich_details: bool = False
    script_rendered: bool = False
    force_render: bool = False
    wait_selector: Optional[str] = None
    min_expected_elements: int = 0
    min_content_length: int = 500
    max_events: int = 20
    timeout: float = 12.0
    ai_prompt_hints: Tuple[str, ...] = ()
    categorizer: Categorizer = field(
        default=keyword_categorizer(['local_events'], CULTURAL_RULES), compare=False
    )

    @property
    def domain(self) -> str:
        return domain_of(self.base_url)


def domain_of(url: str) -> str:
    """Host of a URL without a leading www."""
    host = urlparse(url).hostname or ''
    return host[4:] if host.startswith('www.') else (host or 'unknown-domain')


MGTO = SourceSpec(
    id='mgto',
    name='Macau Government Tourism Office',
    url='https://www.macaotourism.gov.mo/en/events/calendar',
    base_url='https://www.macaotourism.gov.mo',
    organizer='Macau Government Tourism Office',
    lat=22.1987,
    lng=113.5439,
    tags=('government', 'tourism'),
    container_selectors=(
        '.cx-col-xl-3.cx-col-lg-4.cx-div',
        'div[class*="cx-col"]',
        'article',
        '.calendar-event',
        '.event-item',
    ),
    label_prefixes=('Major Event', 'Public Holiday'),
    timeout=15.0,
    ai_prompt_hints=(
        "Look for events with prefixes like: Major Event, Public Holiday",
        "Dates use compact forms such as 'Sep 5-28' and 'Sep 6, 13, 20, Oct 1 & 6'",
    ),
)

LONDONER = SourceSpec(
    id='londoner',
    name='The Londoner Macao',
    url='https://www.londonermacao.com/macau-events-shows',
    base_url='https://www.londonermacao.com',
    organizer='The Londoner Macao',
    lat=22.1430,
    lng=113.5571,
    tags=('londoner', 'sands', 'resort'),
    default_venue='The Londoner Macao',
    container_selectors=('.event-card', '.event-item', '.show-item', '.entertainment-item', '[data-event]'),
    enrich_details=True,
    max_events=15,
    categorizer=keyword_categorizer(['entertainment'], ENTERTAINMENT_RULES),
)

VENETIAN = replace(
    LONDONER,
    id='venetian',
    name='The Venetian Macao',
    url='https://www.venetianmacao.com/entertainment.html',
    base_url='https://www.venetianmacao.com',
    organizer='The Venetian Macao',
    lat=22.1435,
    lng=113.5586,
    tags=('venetian', 'sands', 'resort'),
    default_venue='The Venetian Macao',
)

GALAXY = SourceSpec(
    id='galaxy',
    name='Galaxy Macau',
    url='https://www.galaxymacau.com/ticketing/event-list/',
    base_url='https://www.galaxymacau.com',
    organizer='Galaxy Macau',
    lat=22.1390,
    lng=113.5560,
    tags=('galaxy', 'resort'),
    default_venue='Galaxy Macau',
    venue_suffix='Galaxy Macau',
    container_selectors=(
        '.event-card', '.event-item', '.event-list-item', '.show-card',
        '.ticket-item', '[data-event]', '.event-block', '.card[data-event-id]',
    ),
    ticket_selectors=('a[href*="galaxyticketing"]',) + tuple(GENERIC_TICKETS),
    enrich_details=True,
    max_events=15,
    categorizer=keyword_categorizer(['entertainment', 'galaxy'], ENTERTAINMENT_RULES),
)

MICE = SourceSpec(
    id='mice',
    name='Macau MICE Portal',
    url='https://www.mice.gov.mo/en/events.aspx',
    base_url='https://www.mice.gov.mo',
    organizer='Macau MICE',
    lat=22.1580,
    lng=113.5500,
    tags=('business', 'professional'),
    container_selectors=('.event-row', '.event-item', '.event-list tr', '.events-table tr', 'tr[data-event]', 'tbody tr'),
    title_selectors=('.event-name', '.title', 'td a', 'a', 'td'),
    date_selectors=('.event-date', '.date', 'td.date', '[class*="date"]'),
    timeout=15.0,
    lexical_keywords=('exhibition', 'convention', 'conference', 'meeting', 'expo', 'fair', 'forum', 'summit'),
    categorizer=keyword_categorizer(['business'], BUSINESS_RULES),
)

BROADWAY = SourceSpec(
    id='broadway',
    name='Broadway Macau',
    url='https://www.broadwaymacau.com.mo/upcoming-events-and-concerts/',
    base_url='https://www.broadwaymacau.com.mo',
    organizer='Broadway Macau',
    lat=22.1420,
    lng=113.5540,
    tags=('broadway', 'entertainment', 'theater'),
    default_venue='Broadway Theatre',
    container_selectors=(
        '.events-grid [href*="/event/"]',
        '.events-grid > *',
        '.event-card',
        '.event-item',
        '.show-item',
        '.concert-item',
        '[data-event]',
        'article.event',
    ),
    script_rendered=True,
    force_render=True,
    wait_selector='[href*="/event/"], .events-grid',
    min_expected_elements=15,
    timeout=30.0,
    max_events=15,
    categorizer=keyword_categorizer(['entertainment'], ENTERTAINMENT_RULES),
)

CATALOG: Dict[str, SourceSpec] = {
    spec.id: spec for spec in (MGTO, LONDONER, VENETIAN, GALAXY, MICE, BROADWAY)
}

RATE_LIMITS: Dict[str, Tuple[float, int, int]] = {
    'mgto': (0.5, 3, 2000),
    'mice': (0.5, 3, 2000),
    'londoner': (1.0, 3, 1500),
    'venetian': (1.0, 3, 1500),
    'galaxy': (1.0, 3, 1500),
    'broadway': (1.0, 3, 1500),
}


def default_source_configs() -> List[SourceConfig]:
    """Registry entries for the built-in catalog."""
    configs = []
    for spec in CATALOG.values():
        rps, retries, delay = RATE_LIMITS.get(spec.id, (1.0, 3, 1500))
        configs.append(SourceConfig(
            id=spec.id,
            name=spec.name,
            url=spec.url,
            active=True,
            requests_per_second=rps,
            max_retries=retries,
            retry_delay_ms=delay
        ))
    return configs


def spec_for(config: SourceConfig) -> SourceSpec:
    """
    Resolve the SourceSpec for a registry entry.

    Catalog sources keep their tuned selectors but honor the registry URL.
    Unknown sources get the generic selector set.
    """
    spec = CATALOG.get(config.id)
    if spec:
        return replace(spec, url=config.url) if config.url else spec

    parsed = urlparse(config.url)
    return SourceSpec(
        id=config.id,
        name=config.name,
        url=config.url,
        base_url=f"{parsed.scheme}://{parsed.netloc}",
        organizer=config.name,
        lat=22.1987,
        lng=113.5439,
    )
