"""AWS Lambda handler for the city events refresh."""
import json
import logging
import os
import time
from typing import Any, Dict, List

from processor.models import (
    SOURCE_CACHE,
    SOURCE_SCRAPE,
    STATUS_EXPIRED,
    STATUS_TODAY,
    STATUS_UPCOMING,
    CityRefresh,
)
from processor.reconciliation import EventReconciler
from scraper.bookmyshow import BookMyShowScraper
from scraper.stabilizer import ScrollConfig
from storage.dynamodb_store import DynamoDBEventStore, StorageWriteError

DEFAULT_CITIES = ['jaipur', 'mumbai', 'delhi', 'chandigarh', 'lucknow']

logger = logging.getLogger(__name__)


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        city = getattr(record, 'city', None)
        if city:
            log_data['city'] = city

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def load_scroll_config() -> ScrollConfig:
    """Build scroll loop tunables from environment variables (milliseconds)."""
    defaults = ScrollConfig()
    return ScrollConfig(
        step_px=_env_int('SCROLL_STEP_PX', defaults.step_px),
        step_delay=_env_int('SCROLL_DELAY_MS', int(defaults.step_delay * 1000)) / 1000,
        settle_interval=_env_int(
            'STABLE_INTERVAL_MS', int(defaults.settle_interval * 1000)
        ) / 1000,
        max_duration=_env_int(
            'MAX_SCROLL_TIME_MS', int(defaults.max_duration * 1000)
        ) / 1000,
    )


def load_cities(event: Dict[str, Any]) -> List[str]:
    """Cities from the invocation payload, else CITIES, else the defaults."""
    cities = event.get('cities') if isinstance(event, dict) else None
    if isinstance(cities, str):
        cities = cities.split(',')
    cities = [c.strip().lower() for c in cities or [] if c and c.strip()]
    if not cities:
        configured = os.environ.get('CITIES', '')
        cities = [c.strip().lower() for c in configured.split(',') if c.strip()]
    return cities or list(DEFAULT_CITIES)


def refresh_city_events(
    city: str,
    scraper: BookMyShowScraper,
    store: DynamoDBEventStore,
    reconciler: EventReconciler
) -> CityRefresh:
    """
    Scrape one city and upsert the result, falling back to stored events.

    A failed scrape returns the city's stored events with freshly derived
    status and ``source="cache"``. A failed write returns the reconciled
    events with ``persisted=False``; nothing is lost and the write can be
    retried without scraping again.

    Args:
        city: Lower-case city slug
        scraper: Scraper producing EventRecords for a city
        store: Storage backend
        reconciler: Merges the scraped batch into stored state

    Returns:
        CityRefresh with the city's events and their provenance
    """
    log_extra = {'city': city}

    try:
        scraped = scraper.fetch_events(city)
    except Exception as e:
        logger.error(
            f"Scrape failed for {city}, serving stored events: {e}",
            extra={**log_extra, 'error_type': type(e).__name__},
            exc_info=True
        )
        cached = store.get_events_for_city(city)
        return CityRefresh(city=city, source=SOURCE_CACHE, events=cached, error=str(e))

    prior = store.get_all_events()
    result = reconciler.reconcile(scraped, prior)
    city_events = [e for e in result.records if e.city.lower() == city]

    try:
        store.put_events(result.touched)
    except StorageWriteError as e:
        logger.error(
            f"Failed to persist {len(e.events)} events for {city}: {e}",
            extra=log_extra,
            exc_info=True
        )
        return CityRefresh(
            city=city,
            source=SOURCE_SCRAPE,
            events=city_events,
            persisted=False,
            error=str(e)
        )

    logger.info(
        f"Refreshed {city}: {len(scraped)} scraped, {len(city_events)} stored",
        extra=log_extra
    )
    return CityRefresh(city=city, source=SOURCE_SCRAPE, events=city_events)


def summarize_refresh(refresh: CityRefresh) -> Dict[str, Any]:
    statuses = [e.status for e in refresh.events]
    return {
        'source': refresh.source,
        'events': len(refresh.events),
        'upcoming': statuses.count(STATUS_UPCOMING),
        'today': statuses.count(STATUS_TODAY),
        'expired': statuses.count(STATUS_EXPIRED),
        'persisted': refresh.persisted,
        'error': refresh.error,
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler: refresh every configured city in turn.

    Cities are processed one at a time; a failure for one city is recorded
    and the run moves on to the next.

    Args:
        event: EventBridge event payload, optionally {"cities": [...]}
        context: Lambda context object

    Returns:
        Response dict with statusCode and per-city summaries
    """
    table_name = os.environ.get('TABLE_NAME', 'city-events')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_ms = _env_int('SCRAPE_TIMEOUT_MS', 120000)
    headless = os.environ.get('HEADLESS', 'true').lower() != 'false'

    setup_logging(log_level)

    start_time = time.time()
    cities = load_cities(event)
    logger.info(
        "Lambda execution started",
        extra={
            'table_name': table_name,
            'cities': cities,
            'timeout_ms': timeout_ms
        }
    )

    try:
        scraper = BookMyShowScraper(
            timeout_ms=timeout_ms,
            headless=headless,
            scroll_config=load_scroll_config()
        )
        store = DynamoDBEventStore(table_name=table_name)
        reconciler = EventReconciler()
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Refresh failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }

    summaries = {}
    failures = {}
    for city in cities:
        try:
            refresh = refresh_city_events(city, scraper, store, reconciler)
        except Exception as e:
            logger.error(
                f"Refresh failed for {city}: {str(e)}",
                extra={'city': city, 'error_type': type(e).__name__},
                exc_info=True
            )
            failures[city] = {'error': str(e), 'error_type': type(e).__name__}
            continue
        summaries[city] = summarize_refresh(refresh)

    duration = time.time() - start_time
    status_code = 500 if failures and not summaries else 200

    logger.info(
        "Lambda execution completed",
        extra={
            'duration_seconds': round(duration, 2),
            'refreshed_cities': list(summaries),
            'failed_cities': list(failures)
        }
    )

    return {
        'statusCode': status_code,
        'body': json.dumps({
            'message': 'Refresh completed' if status_code == 200 else 'Refresh failed',
            'cities': summaries,
            'failed_cities': failures,
            'duration_seconds': round(duration, 2)
        })
    }
