"""Category and venue based default images for events without one."""
import re
from typing import Iterable, Optional, Tuple

UNSPLASH_PARAMS = '?w=800&h=400&fit=crop&crop=center&auto=format&q=80'

# First matching rule wins; keywords match at word starts.
DEFAULT_IMAGE_RULES: Tuple[Tuple[str, Tuple[str, ...], str], ...] = (
    ('theater', ('broadway', 'theater', 'theatre', 'musical'), 'photo-1507003211169-0a1dd7228f2d'),
    ('concert', ('concert', 'music', 'orchestra', 'singer'), 'photo-1493225457124-a3eb161ffa5f'),
    ('show', ('show', 'entertainment', 'performance'), 'photo-1516450360452-9312f5e86fc7'),
    ('comedy', ('comedy', 'comedian', 'standup'), 'photo-1576267423445-b2e0074d68a4'),
    ('magic', ('magic', 'illusion', 'magician'), 'photo-1578662996442-48f60103fc96'),
    ('dance', ('dance', 'ballet', 'dancing'), 'photo-1508700929628-666bc8bd84ea'),
    ('exhibition', ('exhibition', 'museum', 'gallery', 'art'), 'photo-1541961017774-22349e4a1262'),
    ('festival', ('festival', 'cultural', 'celebration', 'carnival'), 'photo-1492684223066-81342ee5ff30'),
    ('dining', ('food', 'dining', 'culinary', 'restaurant'), 'photo-1414235077428-338989a2e8c0'),
    ('sports', ('sport', 'game', 'tournament', 'race'), 'photo-1461896836934-ffe607ba8211'),
    ('business', ('business', 'professional', 'mice', 'conference'), 'photo-1540575467063-178a50c2df87'),
    ('casino', ('galaxy', 'venetian', 'londoner', 'sands'), 'photo-1596838132731-3301c3fd4317'),
    ('tourism', ('government', 'tourism', 'mgto'), 'photo-1564501049412-61c2a3083791'),
    ('family', ('family', 'kids', 'children'), 'photo-1511688878353-3a2f5be94cd7'),
    ('nightlife', ('nightlife', 'club', 'bar'), 'photo-1571019613454-1cb2f99b2d8b'),
)
DEFAULT_IMAGE_PHOTO = 'photo-1551918120-9739cb430c6d'

_RULE_PATTERNS = tuple(
    (name, re.compile(r'\b(?:' + '|'.join(keywords) + r')'), photo)
    for name, keywords, photo in DEFAULT_IMAGE_RULES
)


def _unsplash(photo: str) -> str:
    return f"https://images.unsplash.com/{photo}{UNSPLASH_PARAMS}"


def default_image_kind(categories: Iterable[str], venue: Optional[str] = None, title: Optional[str] = None) -> str:
    """Name of the first rule matching the event's categories, venue and title."""
    content = ' '.join([*categories, venue or '', title or '']).lower()
    for name, pattern, _ in _RULE_PATTERNS:
        if pattern.search(content):
            return name
    return 'default'


def default_image_url(categories: Iterable[str], venue: Optional[str] = None, title: Optional[str] = None) -> str:
    """Stock image URL for an event that has no image of its own."""
    kind = default_image_kind(categories, venue, title)
    photos = {name: photo for name, _, photo in DEFAULT_IMAGE_RULES}
    return _unsplash(photos.get(kind, DEFAULT_IMAGE_PHOTO))
