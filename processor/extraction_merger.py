"""Merging of candidate records from all extraction strategies."""
import logging
from datetime import date
from typing import Dict, Iterable, List, Optional

from processor.date_normalizer import compute_status, normalize_date
from processor.line_classifier import passes_quality_gate
from processor.models import (
    STRATEGY_PRIORITY,
    CandidateRecord,
    EventRecord,
    identity_key,
)

logger = logging.getLogger(__name__)

MERGED_FIELDS = ('name', 'date_raw', 'venue', 'category')


class ExtractionMerger:
    """Combines one scrape run's candidates into a deduplicated batch."""

    def merge(self, candidates: Iterable[CandidateRecord]) -> List[CandidateRecord]:
        """
        Deduplicate candidates by listing identity.

        For each field, the most trusted strategy that has a non-empty value
        supplies it (structured data, then embedded state, then DOM cards).
        Candidates still missing a name or a venue after merging are dropped.

        Args:
            candidates: Candidates from every strategy, in any order

        Returns:
            Merged candidates in first-seen order
        """
        groups: Dict[str, List[CandidateRecord]] = {}
        for candidate in candidates:
            key = identity_key(candidate.source_url)
            if not key:
                continue
            groups.setdefault(key, []).append(candidate)

        merged = []
        dropped = 0
        for group in groups.values():
            record = self._merge_group(group)
            if passes_quality_gate(record):
                merged.append(record)
            else:
                dropped += 1

        logger.info(
            f"Merged {sum(len(g) for g in groups.values())} candidates into "
            f"{len(merged)} listings ({dropped} dropped by quality gate)"
        )
        return merged

    def _merge_group(self, group: List[CandidateRecord]) -> CandidateRecord:
        ordered = sorted(group, key=self._priority)
        best = ordered[0]
        record = CandidateRecord(
            source_url=best.source_url.strip(),
            strategy=best.strategy,
        )
        for field_name in MERGED_FIELDS:
            for candidate in ordered:
                value = (getattr(candidate, field_name) or '').strip()
                if value:
                    setattr(record, field_name, value)
                    break
        return record

    def _priority(self, candidate: CandidateRecord) -> int:
        try:
            return STRATEGY_PRIORITY.index(candidate.strategy)
        except ValueError:
            return len(STRATEGY_PRIORITY)


def to_event_records(
    candidates: Iterable[CandidateRecord],
    city: str,
    today: Optional[date] = None
) -> List[EventRecord]:
    """
    Promote merged candidates to normalized event records for one city.

    Args:
        candidates: Merged, quality-gated candidates
        city: City of the scrape; stored lower-cased
        today: Reference day for date normalization and status

    Returns:
        EventRecords with normalized dates and derived status
    """
    today = today or date.today()
    records = []
    for candidate in candidates:
        if not passes_quality_gate(candidate):
            continue
        event_date = normalize_date(candidate.date_raw, today=today)
        records.append(EventRecord(
            name=candidate.name.strip(),
            date=event_date,
            venue=candidate.venue.strip(),
            city=(city or '').strip().lower(),
            category=candidate.category.strip(),
            source_url=candidate.source_url.strip(),
            status=compute_status(event_date, today=today),
        ))
    return records
