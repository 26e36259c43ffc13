"""Unit tests for ScraperCoordinator."""
import time
from unittest.mock import patch

import pytest
import requests
import responses

from processor.models import SourceConfig, SourceOutcome
from scraper.coordinator import ScraperCoordinator
from scraper.errors import ConfigurationError


def config(source_id, url=None):
    return SourceConfig(
        id=source_id,
        name=f"Source {source_id}",
        url=url or f"https://www.{source_id}-venue.com/events",
        requests_per_second=100,
        max_retries=1,
        retry_delay_ms=1
    )


def listing(title):
    return f"""
    <html><body>
        <div class="event-item">
            <h3>{title}</h3>
            <span class="date">15 March 2025</span>
        </div>
    </body></html>
    """


@pytest.fixture
def no_sleep():
    with patch('scraper.fetcher.time.sleep'):
        yield


class TestScraperCoordinator:
    """Test cases for ScraperCoordinator."""

    @responses.activate
    def test_one_source_timing_out_does_not_affect_others(self, no_sleep):
        sources = [config('one'), config('two'), config('three')]
        responses.add(responses.GET, sources[0].url, body=listing('Harbour Concert'), status=200)
        responses.add(responses.GET, sources[1].url, body=requests.Timeout('read timed out'))
        responses.add(responses.GET, sources[1].url, body=requests.Timeout('read timed out'))
        responses.add(responses.GET, sources[2].url, body=listing('Lantern Festival'), status=200)

        result = ScraperCoordinator(sources, max_workers=3).run_all()

        assert result.success is True
        assert sorted(e.title for e in result.events) == ['Harbour Concert', 'Lantern Festival']
        assert len(result.errors) == 1
        assert result.errors[0].startswith('two: ')
        assert result.metadata['total_found'] == 2
        assert result.metadata['processed_count'] == 2
        assert [o.source_id for o in result.outcomes] == ['one', 'two', 'three']

    @responses.activate
    def test_events_carry_source_identity(self, no_sleep):
        source = config('one')
        responses.add(responses.GET, source.url, body=listing('Harbour Concert'), status=200)

        result = ScraperCoordinator([source]).run_all()

        event = result.events[0]
        assert event.source == 'one'
        assert event.source_id.startswith('one-venue.com-')
        assert event.start_time_utc == '2025-03-14T16:00:00Z'

    @responses.activate
    def test_all_sources_failing_is_unsuccessful(self, no_sleep):
        sources = [config('one'), config('two')]
        responses.add(responses.GET, sources[0].url, status=404)
        responses.add(responses.GET, sources[1].url, body='<html><body><div>Nothing</div></body></html>', status=200)

        result = ScraperCoordinator(sources).run_all()

        assert result.success is False
        assert result.events == []
        assert len(result.errors) == 2

    def test_no_sources_is_successful(self):
        result = ScraperCoordinator([]).run_all()

        assert result.success is True
        assert result.metadata['total_found'] == 0

    def test_inactive_sources_are_skipped_by_default(self):
        inactive = config('two')
        inactive.active = False

        with patch.object(ScraperCoordinator, '_run_source') as run_source:
            run_source.side_effect = lambda c: SourceOutcome(source_id=c.id)
            ScraperCoordinator([config('one'), inactive]).run_all()

        assert [call.args[0].id for call in run_source.call_args_list] == ['one']

    def test_deadline_abandons_pending_sources(self):
        def run_source(c):
            if c.id == 'slow':
                time.sleep(1.0)
            return SourceOutcome(source_id=c.id)

        with patch.object(ScraperCoordinator, '_run_source', side_effect=run_source):
            result = ScraperCoordinator([config('fast'), config('slow')], deadline=0.2).run_all()

        assert result.errors == ['slow: timed out after 0.2s']
        assert result.success is False

    @responses.activate
    def test_run_one_uses_same_pipeline(self, no_sleep):
        source = config('one')
        responses.add(responses.GET, source.url, body=listing('Harbour Concert'), status=200)

        result = ScraperCoordinator([source, config('two')]).run_one('one')

        assert [e.title for e in result.events] == ['Harbour Concert']
        assert len(responses.calls) == 1

    def test_run_one_unknown_source(self):
        with pytest.raises(ConfigurationError):
            ScraperCoordinator([config('one')]).run_one('nope')
