"""Unit tests for the source catalog."""
from processor.models import SourceConfig
from scraper.sources import (
    BROADWAY,
    CATALOG,
    GALAXY,
    MICE,
    default_source_configs,
    domain_of,
    keyword_categorizer,
    spec_for,
)


def test_catalog_ids():
    assert set(CATALOG) == {'mgto', 'londoner', 'venetian', 'galaxy', 'mice', 'broadway'}


def test_domains_are_distinct():
    domains = [spec.domain for spec in CATALOG.values()]

    assert len(set(domains)) == len(domains)
    assert GALAXY.domain == 'galaxymacau.com'


def test_domain_of():
    assert domain_of('https://www.mice.gov.mo/en/events.aspx') == 'mice.gov.mo'
    assert domain_of('not a url') == 'unknown-domain'


def test_default_configs_carry_rate_limits():
    configs = {c.id: c for c in default_source_configs()}

    assert configs['mice'].requests_per_second == 0.5
    assert configs['galaxy'].max_retries == 3
    assert configs['galaxy'].url == GALAXY.url


def test_spec_for_catalog_source_honors_registry_url():
    spec = spec_for(SourceConfig(id='mice', name='MICE', url='https://www.mice.gov.mo/zh/events.aspx'))

    assert spec.url == 'https://www.mice.gov.mo/zh/events.aspx'
    assert spec.container_selectors == MICE.container_selectors


def test_spec_for_unknown_source_is_generic():
    spec = spec_for(SourceConfig(id='newvenue', name='New Venue', url='https://events.newvenue.mo/list'))

    assert spec.base_url == 'https://events.newvenue.mo'
    assert spec.domain == 'events.newvenue.mo'
    assert '.event-item' in spec.container_selectors


def test_broadway_is_rendered():
    assert BROADWAY.force_render and BROADWAY.script_rendered
    assert BROADWAY.min_expected_elements == 15


def test_keyword_categorizer():
    categorize = keyword_categorizer(['business'], [('conference', ('summit', 'forum'))])

    assert categorize('Asia Gaming Summit') == ['business', 'conference']
    assert categorize('Wine Expo') == ['business']
