"""DynamoDB storage backend for event records."""
import logging
import time
from datetime import date
from typing import Callable, List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.date_normalizer import compute_status
from processor.models import UNKNOWN_DATE, EventRecord

logger = logging.getLogger(__name__)


class StorageWriteError(Exception):
    """
    Events could not be written after every retry.

    Attributes:
        events: Records that were not written, for the caller to retry
    """

    def __init__(self, message: str, events: List[EventRecord]):
        super().__init__(message)
        self.events = events


class DynamoDBEventStore:
    """Event storage keyed by source_url. Records are upserted, never deleted."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(
        self,
        table_name: str,
        max_attempts: int = 5,
        base_delay: float = 0.2,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            max_attempts: Write attempts per batch before giving up (default: 5)
            base_delay: First retry delay in seconds, doubled per attempt
            sleep: Sleep function used between attempts
        """
        self.table_name = table_name
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBEventStore for table: {table_name}")

    def get_all_events(self, today: Optional[date] = None) -> List[EventRecord]:
        """
        Retrieve all events using a paginated Scan.

        Status is derived from each record's date against ``today``; the
        table holds no status.

        Returns:
            List of EventRecords across all cities
        """
        logger.info("Scanning DynamoDB table for all events")

        try:
            response = self.table.scan()
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise

        events = []
        for item in items:
            event = self._item_to_event(item, today)
            if event:
                events.append(event)

        logger.info(f"Retrieved {len(events)} events from DynamoDB")
        return events

    def get_events_for_city(self, city: str, today: Optional[date] = None) -> List[EventRecord]:
        """Retrieve the stored events of one city."""
        city = city.strip().lower()
        return [e for e in self.get_all_events(today) if e.city.lower() == city]

    def put_events(self, events: List[EventRecord]) -> int:
        """
        Upsert events in batches of 25, retrying each batch with backoff.

        Args:
            events: Records to write

        Returns:
            Count of written events

        Raises:
            StorageWriteError: If a batch still fails after max_attempts;
                carries that batch and every later one
        """
        if not events:
            return 0

        logger.info(f"Writing {len(events)} events to DynamoDB")
        written = 0

        for i in range(0, len(events), self.BATCH_SIZE):
            batch = events[i:i + self.BATCH_SIZE]
            batch_number = i // self.BATCH_SIZE + 1
            try:
                self._write_batch(batch, batch_number)
            except ClientError as e:
                raise StorageWriteError(
                    f"Failed to write batch {batch_number} after "
                    f"{self.max_attempts} attempts: {e}",
                    events=events[i:]
                ) from e
            written += len(batch)

        logger.info(f"Successfully wrote {written} events")
        return written

    def _write_batch(self, batch: List[EventRecord], batch_number: int) -> None:
        for attempt in range(self.max_attempts):
            try:
                with self.table.batch_writer(overwrite_by_pkeys=['source_url']) as writer:
                    for event in batch:
                        writer.put_item(Item=self._event_to_item(event))
                return
            except ClientError as e:
                if attempt < self.max_attempts - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Batch {batch_number} write failed "
                        f"(attempt {attempt + 1}/{self.max_attempts}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    self.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_attempts} attempts for batch {batch_number} "
                        f"failed. Last error: {e}"
                    )
                    raise

    def _item_to_event(self, item: dict, today: Optional[date] = None) -> Optional[EventRecord]:
        """
        Convert DynamoDB item to EventRecord.

        Returns:
            EventRecord or None if the item lacks required attributes
        """
        try:
            event_date = item.get('date') or UNKNOWN_DATE
            return EventRecord(
                name=item['name'],
                date=event_date,
                venue=item.get('venue', ''),
                city=item.get('city', ''),
                category=item.get('category', ''),
                source_url=item['source_url'],
                last_seen=item.get('last_seen', ''),
                status=compute_status(event_date, today),
            )
        except KeyError as e:
            logger.warning(f"Failed to convert item to EventRecord: missing {e}")
            return None

    def _event_to_item(self, event: EventRecord) -> dict:
        return {
            'source_url': event.source_url,
            'name': event.name,
            'date': event.date or UNKNOWN_DATE,
            'venue': event.venue,
            'city': event.city,
            'category': event.category,
            'last_seen': event.last_seen,
        }
