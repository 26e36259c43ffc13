"""Unit tests for SourceNormalizer."""
from datetime import datetime, timedelta, timezone

import pytest

from processor.images import default_image_url
from processor.models import LOW_CONFIDENCE, RawEvent
from processor.normalizer import SourceNormalizer
from scraper.sources import BROADWAY, GALAXY, MGTO

START = datetime(2025, 9, 26, 16, 0, tzinfo=timezone.utc)


def raw_event(**overrides):
    fields = dict(
        source='galaxy',
        source_id='galaxymacau.com-0123456789abcdef0123',
        title='Jacky Cheung Live Concert',
        url='https://www.galaxymacau.com/event/jacky',
        city='Macau',
        description='Legendary singer returns to Macau.',
        start=START,
        end=START + timedelta(hours=3),
        venue='Galaxy Arena',
        ticket_url='https://www.galaxyticketing.com/jacky',
        image_url='https://www.galaxymacau.com/jacky.jpg',
    )
    fields.update(overrides)
    return RawEvent(**fields)


@pytest.fixture
def normalizer():
    return SourceNormalizer(GALAXY, clock=lambda: 1760000000.4)


class TestSourceNormalizer:
    """Test cases for SourceNormalizer."""

    def test_maps_all_fields(self, normalizer):
        event = normalizer.normalize(raw_event())

        assert event.source == 'galaxy'
        assert event.source_id == 'galaxymacau.com-0123456789abcdef0123'
        assert event.start_time_utc == '2025-09-26T16:00:00Z'
        assert event.end_time_utc == '2025-09-26T19:00:00Z'
        assert event.timezone == 'Asia/Macau'
        assert event.city == 'Macau'
        assert event.country == 'China'
        assert (event.lat, event.lng) == (GALAXY.lat, GALAXY.lng)
        assert event.organizer_name == 'Galaxy Macau'
        assert event.external_url == 'https://www.galaxymacau.com/event/jacky'
        assert event.last_seen_at == 1760000000
        assert event.id is None

    def test_venue_gains_city_suffix(self, normalizer):
        assert normalizer.normalize(raw_event()).venue_name == 'Galaxy Arena, Macau'
        assert normalizer.normalize(raw_event(venue='Galaxy Macau')).venue_name == 'Galaxy Macau'
        assert normalizer.normalize(raw_event(venue=None)).venue_name is None

    def test_long_description_has_source_and_tickets(self, normalizer):
        event = normalizer.normalize(raw_event())

        assert event.long_description == (
            'Legendary singer returns to Macau.\n\n'
            'Source: Galaxy Macau\n\n'
            'Tickets: https://www.galaxyticketing.com/jacky'
        )

    def test_long_description_without_description_or_ticket(self, normalizer):
        event = normalizer.normalize(raw_event(description=None, ticket_url=None))

        assert event.description == ''
        assert event.long_description == 'Source: Galaxy Macau'

    def test_categories_and_tags(self, normalizer):
        event = normalizer.normalize(raw_event())

        assert event.categories == ['local_events', 'entertainment', 'galaxy', 'concert', 'macau']
        assert event.tags == ['macau', 'galaxy', 'resort']

    def test_raw_categories_are_kept_and_deduplicated(self):
        normalizer = SourceNormalizer(BROADWAY)

        event = normalizer.normalize(raw_event(source='broadway', categories=['concert', 'macau']))

        assert event.categories == ['concert', 'macau', 'entertainment']
        assert event.tags == ['macau', 'broadway', 'entertainment', 'theater']

    def test_cultural_categorizer(self):
        normalizer = SourceNormalizer(MGTO)

        event = normalizer.normalize(raw_event(
            source='mgto', title='Macao Food Festival', description=None, venue='Sai Van Lake'
        ))

        assert event.categories == ['local_events', 'festivals', 'food', 'macau']

    @pytest.mark.parametrize('overrides', [
        {'title': ''},
        {'source_id': ''},
        {'start': None},
    ])
    def test_incomplete_events_are_dropped(self, normalizer, overrides):
        assert normalizer.normalize(raw_event(**overrides)) is None

    def test_low_confidence_dropped_by_default(self, normalizer):
        assert normalizer.normalize(raw_event(confidence=LOW_CONFIDENCE)) is None

    def test_low_confidence_kept_when_accepted(self):
        normalizer = SourceNormalizer(GALAXY, accept_low_confidence=True)

        assert normalizer.normalize(raw_event(confidence=LOW_CONFIDENCE)) is not None

    def test_end_not_after_start_is_dropped(self, normalizer):
        assert normalizer.normalize(raw_event(end=START)).end_time_utc is None

    def test_normalize_all_skips_invalid(self, normalizer):
        events = normalizer.normalize_all([raw_event(), raw_event(start=None), raw_event(title='Other Show')])

        assert [e.title for e in events] == ['Jacky Cheung Live Concert', 'Other Show']

    def test_own_image_is_kept(self, normalizer):
        assert normalizer.normalize(raw_event()).image_url == 'https://www.galaxymacau.com/jacky.jpg'

    def test_missing_image_gets_category_default(self):
        normalizer = SourceNormalizer(MGTO)

        event = normalizer.normalize(raw_event(
            source='mgto', title='Macao Food Festival', description=None, venue='Sai Van Lake', image_url=None
        ))

        assert event.image_url == default_image_url(['festival'])
        assert 'photo-1492684223066-81342ee5ff30' in event.image_url
