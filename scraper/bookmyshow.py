"""Event scraper for BookMyShow city explore pages."""
import logging
import time
from datetime import date
from functools import partial
from typing import Callable, List, Optional, Sequence

from processor.extraction_merger import ExtractionMerger, to_event_records
from processor.models import CandidateRecord, EventRecord
from scraper.extractors import DEFAULT_EXTRACTORS, PageSnapshot
from scraper.stabilizer import ScrollConfig, StabilizationController
from scraper.surface import open_playwright_surface

logger = logging.getLogger(__name__)


class BookMyShowScraper:
    """Scraper for the lazily loaded BookMyShow events listing of one city."""

    BASE_URL = "https://in.bookmyshow.com"

    def __init__(
        self,
        timeout_ms: int = 120000,
        headless: bool = True,
        scroll_config: Optional[ScrollConfig] = None,
        surface_factory: Optional[Callable] = None,
        extractors: Sequence = DEFAULT_EXTRACTORS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the scraper.

        Args:
            timeout_ms: Browser launch and page load timeout (default: 120000)
            headless: Run Chromium without a window (default: True)
            scroll_config: Scroll loop tunables (default: ScrollConfig())
            surface_factory: Callable taking a URL and returning a context
                manager that yields a rendering surface (default: Playwright)
            extractors: Extraction strategies, each run independently
            clock: Monotonic clock for the scroll loop
            sleep: Sleep function for the scroll loop
        """
        self.timeout_ms = timeout_ms
        self.surface_factory = surface_factory or partial(
            open_playwright_surface,
            timeout_ms=timeout_ms,
            headless=headless
        )
        self.stabilizer = StabilizationController(
            config=scroll_config,
            clock=clock,
            sleep=sleep
        )
        self.extractors = list(extractors)
        self.merger = ExtractionMerger()

    def build_url(self, city: str) -> str:
        return f"{self.BASE_URL}/explore/events-{city}"

    def fetch_events(self, city: str, today: Optional[date] = None) -> List[EventRecord]:
        """
        Scrape, merge and normalize the event listings of one city.

        Args:
            city: City slug as used in the explore URL
            today: Reference day for date normalization (default: today)

        Returns:
            Deduplicated, quality-gated EventRecords

        Raises:
            ScrapeError: If the page cannot be loaded or breaks mid-scrape
        """
        city = city.strip().lower()
        url = self.build_url(city)
        started = time.time()
        logger.info(f"Scraping events for {city} from {url}")

        with self.surface_factory(url) as surface:
            stabilization = self.stabilizer.run(surface)
            if not stabilization.stable:
                logger.warning(
                    f"Listing for {city} did not stabilize; extracting "
                    f"{stabilization.link_count} loaded links"
                )
            snapshot = PageSnapshot(
                base_url=self.BASE_URL,
                html=surface.html(),
                anchors=surface.listing_anchors()
            )

        candidates = self._run_extractors(snapshot, city)
        merged = self.merger.merge(candidates)
        events = to_event_records(merged, city, today=today)

        logger.info(
            f"Scraped {len(events)} events for {city} in {time.time() - started:.1f}s"
        )
        return events

    def _run_extractors(self, snapshot: PageSnapshot, city: str) -> List[CandidateRecord]:
        """Run every strategy; a failing strategy contributes nothing."""
        candidates = []
        for extractor in self.extractors:
            name = type(extractor).__name__
            try:
                found = extractor.extract(snapshot, city)
            except Exception as e:
                logger.warning(f"Extractor {name} failed: {e}", exc_info=True)
                continue
            logger.debug(f"Extractor {name} returned {len(found)} candidates")
            candidates.extend(found)
        return candidates
