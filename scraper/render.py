"""Headless browser rendering for script-heavy pages."""
import logging
import threading
from typing import Callable, Optional, Tuple, Type

from scraper.errors import ConfigurationError, NetworkError, ScraperTimeoutError

logger = logging.getLogger(__name__)

USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)


class PlaywrightRenderer:
    """
    Pooled Playwright renderer.

    At most ``pool_size`` browsers run at once. Each ``render`` call holds one
    pool slot for its whole lifetime and releases the page, the browser and
    the slot on every exit path.
    """

    def __init__(
        self,
        pool_size: int = 2,
        settle_ms: int = 1000,
        playwright_factory: Optional[Callable] = None,
        timeout_error: Optional[Type[Exception]] = None
    ):
        """
        Initialize the renderer.

        Args:
            pool_size: Maximum concurrent browsers
            settle_ms: Extra wait after load for late scripts
            playwright_factory: ``sync_playwright`` replacement (defaults to Playwright's)
            timeout_error: Exception type the factory's pages raise on timeout
        """
        self.pool_size = pool_size
        self.settle_ms = settle_ms
        self._playwright_factory = playwright_factory
        self._timeout_error = timeout_error
        self._slots = threading.BoundedSemaphore(pool_size)

    def _load_playwright(self) -> Tuple[Callable, Type[Exception]]:
        if self._playwright_factory is not None:
            return self._playwright_factory, self._timeout_error or TimeoutError
        try:
            from playwright.sync_api import sync_playwright
            from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
        except ImportError as e:
            raise ConfigurationError(
                "Playwright is missing. Install it with: pip install -e '.[browser]'",
                cause=e
            ) from e
        return sync_playwright, PlaywrightTimeoutError

    def render(self, url: str, wait_selector: Optional[str] = None, timeout: float = 30.0) -> str:
        """
        Render a page and return its HTML.

        Args:
            url: Page URL
            wait_selector: CSS selector to wait for before capturing content
            timeout: Overall navigation/wait budget in seconds

        Returns:
            Rendered HTML

        Raises:
            ScraperTimeoutError: Navigation or selector wait timed out
            NetworkError: Browser failed for any other reason
            ConfigurationError: Playwright is not installed
        """
        sync_playwright, timeout_error = self._load_playwright()

        timeout_ms = int(timeout * 1000)
        with self._slots:
            logger.info(f"Rendering {url} with headless Chromium")
            try:
                with sync_playwright() as p:
                    browser = p.chromium.launch(headless=True)
                    try:
                        page = browser.new_page(user_agent=USER_AGENT)
                        try:
                            page.goto(url, wait_until='networkidle', timeout=timeout_ms)
                            if wait_selector:
                                try:
                                    page.wait_for_selector(wait_selector, timeout=timeout_ms)
                                except timeout_error:
                                    logger.warning(
                                        f"Selector '{wait_selector}' did not appear on {url}; "
                                        f"using content rendered so far"
                                    )
                            page.wait_for_timeout(self.settle_ms)
                            return page.content()
                        finally:
                            page.close()
                    finally:
                        browser.close()
            except timeout_error as e:
                raise ScraperTimeoutError(f"Render timeout for {url}", cause=e) from e
            except Exception as e:
                raise NetworkError(f"Render failed for {url}: {e}", cause=e) from e
