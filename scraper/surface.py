"""Playwright-backed rendering surface for listing pages."""
import logging
from contextlib import contextmanager
from typing import Iterator, List

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from scraper.extractors import ListingAnchor

logger = logging.getLogger(__name__)

LISTING_LINK_SELECTOR = 'a[href*="/events/"]'
USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)
VIEWPORT = {'width': 1920, 'height': 1080}
BROWSER_ARGS = [
    '--disable-blink-features=AutomationControlled',
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-infobars',
]


class ScrapeError(Exception):
    """The listing page could not be loaded or rendered."""


class PlaywrightSurface:
    """Scroll, count and read listing links on a live Playwright page."""

    def __init__(self, page, link_selector: str = LISTING_LINK_SELECTOR):
        self.page = page
        self.link_selector = link_selector

    def scroll_y(self) -> int:
        return int(self.page.evaluate("() => window.scrollY"))

    def viewport_height(self) -> int:
        return int(self.page.evaluate("() => window.innerHeight"))

    def content_height(self) -> int:
        return int(self.page.evaluate("() => document.body.scrollHeight"))

    def scroll_to(self, y: int) -> None:
        self.page.evaluate("(y) => window.scrollTo({top: y, behavior: 'smooth'})", y)

    def count_links(self) -> int:
        return self.page.locator(self.link_selector).count()

    def html(self) -> str:
        return self.page.content()

    def listing_anchors(self) -> List[ListingAnchor]:
        """
        Read every listing link with its rendered text and card image.

        Links that detach or fail to render mid-read are skipped.
        """
        anchors = []
        for link in self.page.locator(self.link_selector).all():
            try:
                href = link.get_attribute('href') or ''
                text = link.inner_text()
                image = link.locator('img').first
                image_src = ''
                if image.count():
                    image_src = image.get_attribute('src') or ''
            except PlaywrightError as e:
                logger.warning(f"Failed to read listing link: {e}")
                continue
            anchors.append(ListingAnchor(href=href, text=text, image_src=image_src))
        return anchors


@contextmanager
def open_playwright_surface(
    url: str,
    timeout_ms: int = 120000,
    headless: bool = True,
    initial_wait_ms: int = 3000
) -> Iterator[PlaywrightSurface]:
    """
    Launch Chromium, load a page and yield it as a rendering surface.

    Args:
        url: Page to load
        timeout_ms: Browser launch and page load timeout
        headless: Run the browser without a window
        initial_wait_ms: Pause after DOMContentLoaded before yielding

    Raises:
        ScrapeError: If the browser fails to start, the page fails to load,
            or the page breaks while in use
    """
    with sync_playwright() as p:
        try:
            browser = p.chromium.launch(
                headless=headless,
                timeout=timeout_ms,
                args=BROWSER_ARGS
            )
        except PlaywrightError as e:
            raise ScrapeError(f"Failed to launch browser: {e}") from e

        try:
            context = browser.new_context(user_agent=USER_AGENT, viewport=VIEWPORT)
            page = context.new_page()

            logger.info(f"Loading {url} (timeout {timeout_ms}ms, headless={headless})")
            try:
                page.goto(url, wait_until='domcontentloaded', timeout=timeout_ms)
            except PlaywrightError as e:
                raise ScrapeError(f"Failed to load {url}: {e}") from e

            page.wait_for_timeout(initial_wait_ms)

            try:
                yield PlaywrightSurface(page)
            except PlaywrightError as e:
                raise ScrapeError(f"Page failed while scraping {url}: {e}") from e
        finally:
            browser.close()
