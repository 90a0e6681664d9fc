"""Field classification for the unlabeled text lines of a listing card."""
import re
from typing import Optional, Sequence

from processor.date_normalizer import looks_like_date
from processor.models import DOM_HEURISTIC, CandidateRecord


class LineRule:
    """
    One classification rule over a single card line.

    Subclasses set ``field`` to the CandidateRecord attribute they fill, or
    leave it None for rules whose matches are discarded.
    """

    field: Optional[str] = None

    def extract(self, line: str, city: str) -> Optional[str]:
        """Return the captured value, or None if the line does not match."""
        raise NotImplementedError


class PriceRule(LineRule):
    """Prices, FREE tags and bare counters carry nothing we keep."""

    PRICE_RE = re.compile(r"^(?:[₹$€£]|rs\.?\s*\d|inr\s*\d)", re.IGNORECASE)
    DIGITS_RE = re.compile(r"^\d+$")

    def extract(self, line: str, city: str) -> Optional[str]:
        if (self.PRICE_RE.match(line) or line.upper() == 'FREE'
                or self.DIGITS_RE.match(line)):
            return line
        return None


class DateRule(LineRule):
    field = 'date_raw'

    def extract(self, line: str, city: str) -> Optional[str]:
        return line if looks_like_date(line) else None


class ColonVenueRule(LineRule):
    """Cards render their location as "Venue: City"."""

    field = 'venue'
    MIN_LENGTH = 3
    MAX_LENGTH = 100

    def extract(self, line: str, city: str) -> Optional[str]:
        if ':' not in line:
            return None
        venue = line.split(':', 1)[0].strip()
        if self.MIN_LENGTH <= len(venue) <= self.MAX_LENGTH:
            return venue
        return None


class MultipleVenuesRule(LineRule):
    field = 'venue'

    def extract(self, line: str, city: str) -> Optional[str]:
        return line if line.lower() == 'multiple venues' else None


class CategoryRule(LineRule):
    field = 'category'
    CATEGORY_RE = re.compile(r"^[a-zA-Z\s&\-/]+$")
    MIN_LENGTH = 3
    MAX_LENGTH = 60

    def extract(self, line: str, city: str) -> Optional[str]:
        if not self.MIN_LENGTH <= len(line) <= self.MAX_LENGTH:
            return None
        if not self.CATEGORY_RE.match(line):
            return None
        if line.lower() == (city or '').lower():
            return None
        return line


DEFAULT_RULES = (
    PriceRule(),
    DateRule(),
    ColonVenueRule(),
    MultipleVenuesRule(),
    CategoryRule(),
)


def classify_lines(
    lines: Sequence[str],
    city: str,
    rules: Sequence[LineRule] = DEFAULT_RULES
) -> CandidateRecord:
    """
    Assign the lines of one listing card to event fields.

    The first line is the name. Every other line goes to the first rule that
    matches it among the rules whose field is still unfilled; lines no rule
    claims are dropped.

    Args:
        lines: Non-empty, trimmed card lines in rendered order
        city: Lower-case city of the scrape, never taken as a category
        rules: Ordered classification rules

    Returns:
        CandidateRecord with name, date_raw, venue and category filled as
        far as the card allows; source_url is left for the caller
    """
    record = CandidateRecord(source_url='', strategy=DOM_HEURISTIC)
    cleaned = [line.strip() for line in lines if line and line.strip()]
    if not cleaned:
        return record

    record.name = cleaned[0]
    captured = set()

    for line in cleaned[1:]:
        for rule in rules:
            if rule.field is not None and rule.field in captured:
                continue
            value = rule.extract(line, city)
            if value is None:
                continue
            if rule.field is not None:
                setattr(record, rule.field, value)
                captured.add(rule.field)
            break

    return record


def passes_quality_gate(record: CandidateRecord) -> bool:
    """Cards without a name or a venue are banners, not listings."""
    return bool(record.name.strip()) and bool(record.venue.strip())
