"""Reconciliation of freshly extracted events with persisted state."""
import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional

from processor.date_normalizer import compute_status
from processor.models import UNKNOWN_DATE, EventRecord, ReconcileResult

logger = logging.getLogger(__name__)

# Fields an incoming observation may overwrite when it has a value; the
# stored source_url is kept so the storage key never changes
MERGEABLE_FIELDS = ('name', 'date', 'venue', 'city', 'category')


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _is_empty(field_name: str, value: Optional[str]) -> bool:
    if not value or not value.strip():
        return True
    return field_name == 'date' and value == UNKNOWN_DATE


def refresh_statuses(records: Iterable[EventRecord], today: Optional[date] = None) -> List[EventRecord]:
    """Return copies of the records with status derived from their dates."""
    today = today or date.today()
    return [replace(record, status=compute_status(record.date, today)) for record in records]


class EventReconciler:
    """
    Merges one city's extracted batch into the full persisted set.

    Identity is the normalized source_url. Records absent from the batch are
    kept as they are: a city that was not scraped, or a listing that did not
    render this run, is never evidence that an event was removed.
    """

    def __init__(self, clock: Callable[[], datetime] = _local_now):
        """
        Args:
            clock: Returns the current time; stamps last_seen and fixes the
                day statuses are computed against
        """
        self.clock = clock

    def reconcile(
        self,
        incoming: Iterable[EventRecord],
        prior: Iterable[EventRecord]
    ) -> ReconcileResult:
        """
        Upsert incoming records over prior state.

        Args:
            incoming: Deduplicated records from one scrape run
            prior: Every previously persisted record, all cities

        Returns:
            ReconcileResult holding the complete new persisted set
        """
        now = self.clock()
        last_seen = now.isoformat(timespec='seconds')
        today = now.date()

        index: Dict[str, EventRecord] = {}
        for record in prior:
            if record.key:
                index[record.key] = record
        prior_keys = set(index)

        outcome: Dict[str, str] = {}
        for record in incoming:
            key = record.key
            if not key:
                logger.warning(f"Skipping record without source_url: {record.name!r}")
                continue

            existing = index.get(key)
            if existing is None:
                index[key] = replace(record, last_seen=last_seen)
                outcome[key] = 'added'
                continue

            merged = self._merge(existing, record, last_seen)
            index[key] = merged
            if outcome.get(key) == 'added':
                continue
            if key in prior_keys and self._content_differs(merged, existing):
                outcome[key] = 'updated'
            else:
                outcome.setdefault(key, 'reobserved')

        records = refresh_statuses(index.values(), today)
        by_key = {record.key: record for record in records}

        result = ReconcileResult(
            records=records,
            added=[by_key[k] for k, v in outcome.items() if v == 'added'],
            updated=[by_key[k] for k, v in outcome.items() if v == 'updated'],
            reobserved=[by_key[k] for k, v in outcome.items() if v == 'reobserved'],
            retained=len(prior_keys - set(outcome)),
        )

        logger.info(
            f"Reconciled {len(outcome)} incoming records: "
            f"{len(result.added)} added, {len(result.updated)} updated, "
            f"{len(result.reobserved)} re-observed, {result.retained} retained"
        )
        return result

    def _merge(self, existing: EventRecord, incoming: EventRecord, last_seen: str) -> EventRecord:
        """
        Overlay the non-empty incoming fields on the existing record.

        An empty or unknown incoming value never replaces captured detail.
        """
        changes = {}
        for field_name in MERGEABLE_FIELDS:
            value = getattr(incoming, field_name)
            if not _is_empty(field_name, value):
                changes[field_name] = value
        return replace(existing, last_seen=last_seen, **changes)

    def _content_differs(self, merged: EventRecord, existing: EventRecord) -> bool:
        return any(
            getattr(merged, field_name) != getattr(existing, field_name)
            for field_name in MERGEABLE_FIELDS
        )
