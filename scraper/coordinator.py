"""Runs every active source pipeline and aggregates the results."""
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from processor.date_parser import format_utc
from processor.models import ScrapingResult, SourceConfig, SourceOutcome
from processor.normalizer import SourceNormalizer
from scraper.errors import ConfigurationError
from scraper.extraction import SourceContext, extract
from scraper.fetcher import FetchOptions, RateLimitedFetcher
from scraper.sources import default_source_configs, spec_for

logger = logging.getLogger(__name__)


class ScraperCoordinator:
    """
    Fan-out over sources on a thread pool.

    Each source runs fetch, extract and normalize in isolation: whatever it
    raises becomes a ``"<source>: <message>"`` error string and never
    affects the other sources.
    """

    def __init__(
        self,
        sources: Optional[Sequence[SourceConfig]] = None,
        renderer=None,
        ai_extractor=None,
        max_workers: int = 6,
        deadline: Optional[float] = None,
        accept_low_confidence: bool = False,
        now: Optional[datetime] = None
    ):
        """
        Initialize the coordinator.

        Args:
            sources: Known source configs (defaults to the built-in catalog)
            renderer: Optional headless render capability
            ai_extractor: Optional AI extraction capability
            max_workers: Thread pool size
            deadline: Seconds after which still-pending sources are abandoned
            accept_low_confidence: Keep fallback events with placeholder dates
            now: Reference time for date resolution (defaults to the current time)
        """
        self.sources = list(sources) if sources is not None else default_source_configs()
        self.renderer = renderer
        self.ai_extractor = ai_extractor
        self.max_workers = max_workers
        self.deadline = deadline
        self.accept_low_confidence = accept_low_confidence
        self.now = now

    def run_all(self, active_sources: Optional[Sequence[SourceConfig]] = None) -> ScrapingResult:
        """
        Scrape all active sources concurrently.

        Args:
            active_sources: Sources to run (defaults to the active known sources)

        Returns:
            ScrapingResult aggregating every source outcome
        """
        configs = list(active_sources) if active_sources is not None else [s for s in self.sources if s.active]
        logger.info(f"Starting scrape of {len(configs)} sources: {', '.join(c.id for c in configs)}")
        if not configs:
            return self._aggregate([])

        outcomes = {}
        executor = ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(configs))))
        try:
            futures = {executor.submit(self._run_isolated, config): config for config in configs}
            done, pending = wait(futures, timeout=self.deadline)

            for future in done:
                outcome = future.result()
                outcomes[outcome.source_id] = outcome
            for future in pending:
                config = futures[future]
                future.cancel()
                logger.error(f"{config.id}: abandoned after {self.deadline}s run deadline")
                outcomes[config.id] = SourceOutcome(
                    source_id=config.id,
                    error=f"{config.id}: timed out after {self.deadline}s"
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return self._aggregate([outcomes[c.id] for c in configs])

    def run_one(self, source_id: str) -> ScrapingResult:
        """
        Scrape a single source through the same pipeline as ``run_all``.

        Raises:
            ConfigurationError: If the source id is unknown
        """
        config = next((s for s in self.sources if s.id == source_id), None)
        if config is None:
            raise ConfigurationError(f"Unknown source: {source_id}", source=source_id)
        return self._aggregate([self._run_isolated(config)])

    def _run_isolated(self, config: SourceConfig) -> SourceOutcome:
        try:
            return self._run_source(config)
        except Exception as e:
            logger.error(f"{config.id}: scrape failed: {e}", extra={'error_type': type(e).__name__}, exc_info=True)
            return SourceOutcome(source_id=config.id, error=f"{config.id}: {e}")

    def _run_source(self, config: SourceConfig) -> SourceOutcome:
        spec = spec_for(config)
        options = FetchOptions(
            timeout=spec.timeout,
            script_rendered=spec.script_rendered,
            force_render=spec.force_render,
            wait_selector=spec.wait_selector,
            min_content_length=spec.min_content_length,
            min_expected_elements=spec.min_expected_elements,
            render_timeout=max(spec.timeout, 30.0)
        )

        with RateLimitedFetcher(
            config.id,
            requests_per_second=config.requests_per_second,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay_ms / 1000.0,
            renderer=self.renderer
        ) as fetcher:
            html = fetcher.fetch(spec.url, options)
            context = SourceContext(
                spec=spec,
                fetcher=fetcher,
                ai_extractor=self.ai_extractor,
                now=self.now
            )
            raw_events = extract(html, context)

        normalizer = SourceNormalizer(spec, accept_low_confidence=self.accept_low_confidence)
        events = normalizer.normalize_all(raw_events)
        logger.info(f"{config.id}: {len(raw_events)} raw events, {len(events)} normalized")
        return SourceOutcome(source_id=config.id, events=events, raw_count=len(raw_events))

    def _aggregate(self, outcomes: List[SourceOutcome]) -> ScrapingResult:
        events = [event for outcome in outcomes for event in outcome.events]
        errors = [outcome.error for outcome in outcomes if outcome.error]
        success = any(outcome.events for outcome in outcomes) or not errors

        return ScrapingResult(
            success=success,
            events=events,
            errors=errors,
            metadata={
                'scraped_at': format_utc(datetime.now(timezone.utc)),
                'total_found': sum(outcome.raw_count for outcome in outcomes),
                'processed_count': len(events),
            },
            outcomes=outcomes
        )
