"""Rate-limited HTTP fetcher with retry and headless-render escalation."""
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from scraper.errors import (
    InvalidResponseError,
    NetworkError,
    RateLimitExceededError,
    ScraperTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'User-Agent': (
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
    ),
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9,zh-TW;q=0.8,zh;q=0.7',
}


@dataclass
class FetchOptions:
    """Per-request fetch options."""
    timeout: float = 10.0
    script_rendered: bool = False
    force_render: bool = False
    wait_selector: Optional[str] = None
    min_content_length: int = 0
    min_expected_elements: int = 0
    render_timeout: float = 30.0


class _FifoGate:
    """Serializes callers in arrival order and spaces their turns."""

    def __init__(self, interval: float):
        self.interval = interval
        self._condition = threading.Condition()
        self._next_ticket = 0
        self._now_serving = 0
        self._last_turn = 0.0

    @contextmanager
    def turn(self) -> Iterator[None]:
        with self._condition:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._now_serving:
                self._condition.wait()
        try:
            wait = self._last_turn + self.interval - time.monotonic()
            if wait > 0:
                time.sleep(wait)
            self._last_turn = time.monotonic()
            yield
        finally:
            with self._condition:
                self._now_serving += 1
                self._condition.notify_all()


class RateLimitedFetcher:
    """HTTP client for one source instance."""

    def __init__(
        self,
        source_id: str,
        requests_per_second: float = 1.0,
        max_retries: int = 3,
        retry_delay: float = 1.5,
        renderer=None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the fetcher.

        Args:
            source_id: Source this fetcher belongs to (used in errors and logs)
            requests_per_second: Maximum request rate for this source
            max_retries: Retries after the first attempt for retryable failures
            retry_delay: Base backoff delay in seconds
            renderer: Optional object with a ``render(url, wait_selector, timeout)`` method
            session: Optional requests session to reuse
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.source_id = source_id
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.renderer = renderer
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        self._gate = _FifoGate(1.0 / requests_per_second)

    def __enter__(self) -> 'RateLimitedFetcher':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def fetch(self, url: str, options: Optional[FetchOptions] = None) -> str:
        """
        Fetch a page, escalating to the renderer when static HTML is thin.

        Args:
            url: Page URL
            options: Fetch options (timeout, render escalation settings)

        Returns:
            HTML content as string

        Raises:
            NetworkError: Transport failure or 5xx after all retries
            ScraperTimeoutError: Timeout after all retries
            InvalidResponseError: Non-retryable 4xx response
            RateLimitExceededError: Source answered 429
        """
        options = options or FetchOptions()

        if options.force_render and self.renderer is not None:
            return self._render(url, options)

        html = self._fetch_static(url, options.timeout)

        if options.script_rendered and not self.is_sufficient(html, options):
            if self.renderer is None:
                logger.warning(
                    f"{self.source_id}: static HTML for {url} looks incomplete "
                    f"and no renderer is configured"
                )
                return html
            logger.info(f"{self.source_id}: escalating {url} to headless render")
            return self._render(url, options)

        return html

    @staticmethod
    def is_sufficient(html: str, options: FetchOptions) -> bool:
        """Content-sufficiency check for static HTML."""
        if len(html) < options.min_content_length:
            return False
        if options.wait_selector and options.min_expected_elements:
            soup = BeautifulSoup(html, 'html.parser')
            return len(soup.select(options.wait_selector)) >= options.min_expected_elements
        return True

    def _render(self, url: str, options: FetchOptions) -> str:
        with self._gate.turn():
            return self._render_with_retry(url, options)

    def _render_with_retry(self, url: str, options: FetchOptions) -> str:
        """Render with the same backoff as static requests on timeouts and browser failures."""
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                logger.debug(f"{self.source_id}: render {url} (attempt {attempt + 1}/{attempts})")
                return self.renderer.render(
                    url,
                    wait_selector=options.wait_selector,
                    timeout=options.render_timeout
                )
            except (ScraperTimeoutError, NetworkError) as e:
                if not e.source:
                    e.source = self.source_id
                if attempt == attempts - 1:
                    logger.error(f"{self.source_id}: all {attempts} render attempts failed. Last error: {e}")
                    raise
                delay = self.retry_delay * (2 ** attempt)
                logger.warning(
                    f"{self.source_id}: render failed (attempt {attempt + 1}/{attempts}): "
                    f"{e}. Retrying in {delay} seconds..."
                )
                time.sleep(delay)

    def _fetch_static(self, url: str, timeout: float) -> str:
        with self._gate.turn():
            return self._request_with_retry(url, timeout)

    def _request_with_retry(self, url: str, timeout: float) -> str:
        """
        GET with exponential backoff on retryable failures.

        4xx responses fail immediately; 5xx, timeouts and connection errors
        are retried ``max_retries`` times with ``retry_delay * 2 ** attempt``
        between attempts.
        """
        attempts = self.max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                logger.debug(f"{self.source_id}: GET {url} (attempt {attempt + 1}/{attempts})")
                response = self.session.get(url, timeout=timeout)

                if response.status_code == 429:
                    raise RateLimitExceededError(
                        f"HTTP 429 from {url}", source=self.source_id
                    )
                if 400 <= response.status_code < 500:
                    raise InvalidResponseError(
                        f"HTTP {response.status_code}: {response.reason}", source=self.source_id
                    )
                response.raise_for_status()
                return response.text

            except requests.RequestException as e:
                last_error = e

            if attempt < attempts - 1:
                delay = self.retry_delay * (2 ** attempt)
                logger.warning(
                    f"{self.source_id}: request failed (attempt {attempt + 1}/{attempts}): "
                    f"{last_error}. Retrying in {delay} seconds..."
                )
                time.sleep(delay)

        logger.error(f"{self.source_id}: all {attempts} attempts failed. Last error: {last_error}")
        if isinstance(last_error, requests.Timeout):
            raise ScraperTimeoutError(
                f"Request timeout after {attempts} attempts: {url}",
                source=self.source_id,
                cause=last_error
            )
        raise NetworkError(
            f"Failed after {attempts} attempts: {last_error}",
            source=self.source_id,
            cause=last_error
        )


def absolute_url(base_url: str, href: Optional[str]) -> Optional[str]:
    """Resolve a possibly relative link against a base URL."""
    if not href:
        return None
    href = href.strip()
    if href.startswith(('http://', 'https://')):
        return href
    return urljoin(base_url if base_url.endswith('/') else base_url + '/', href)
