"""Date normalization for listing cards.

Listing pages spell the same calendar date in many shapes depending on the
rendering path that produced them:

    "Thu, 20 Feb"              -> 2026-02-20
    "20 Feb onwards"           -> 2026-02-20
    "Feb 20, 2026"             -> 2026-02-20
    "20 Feb - 22 Feb"          -> 2026-02-20  (opening date of the run)
    "20 - 22 Feb"              -> 2026-02-20
    "28 Dec - 2 Jan 2026"      -> 2025-12-28  (year taken from the closing date)
    "Sat, 22nd Feb 2026"       -> 2026-02-22
    "Today" / "Tomorrow"       -> relative to the supplied day
    "Multiple Dates"           -> unknown

Rules are tried strictest first; the generic calendar parser only sees text
that survived every explicit pattern.
"""
import logging
import re
from datetime import date, datetime, timedelta
from typing import Optional, Union

from dateutil import parser as date_parser

from processor.models import (
    STATUS_EXPIRED,
    STATUS_TODAY,
    STATUS_UPCOMING,
    UNKNOWN_DATE,
)

logger = logging.getLogger(__name__)

ROLLOVER_DAYS = 60

MONTHS = {
    'jan': 1, 'january': 1,
    'feb': 2, 'february': 2,
    'mar': 3, 'march': 3,
    'apr': 4, 'april': 4,
    'may': 5,
    'jun': 6, 'june': 6,
    'jul': 7, 'july': 7,
    'aug': 8, 'august': 8,
    'sep': 9, 'sept': 9, 'september': 9,
    'oct': 10, 'october': 10,
    'nov': 11, 'november': 11,
    'dec': 12, 'december': 12,
}

MONTH_PATTERN = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?"
    r"|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
WEEKDAY_PATTERN = r"(?:mon|tue|wed|thu|fri|sat|sun)[a-z]*"

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ISO_PREFIX_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})[T\s]")
NO_DATE_RE = re.compile(
    r"^(?:multiple\s+dates?|dates?\s+tba|tba|to\s+be\s+announced)$", re.IGNORECASE
)
WEEKDAY_PREFIX_RE = re.compile(rf"^{WEEKDAY_PATTERN}\.?(?:,\s*|\s+)", re.IGNORECASE)
ONWARDS_SUFFIX_RE = re.compile(r"\s*\bonwards?$", re.IGNORECASE)
RANGE_SPLIT_RE = re.compile(r"\s*[-–—]\s*|\s+to\s+", re.IGNORECASE)
ORDINAL_RE = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)\b", re.IGNORECASE)
DAY_FIRST_RE = re.compile(r"^(\d{1,2})\s+([a-z]+)\.?(?:\s+(\d{4}))?$", re.IGNORECASE)
MONTH_FIRST_RE = re.compile(r"^([a-z]+)\.?\s+(\d{1,2})(?:\s+(\d{4}))?$", re.IGNORECASE)
DAY_ONLY_RE = re.compile(r"^\d{1,2}$")
YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")
MONTH_NAME_RE = re.compile(rf"\b{MONTH_PATTERN}\b", re.IGNORECASE)

# Surface shapes a card line must have to be treated as its date line
DATE_LINE_PATTERNS = (
    re.compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+{MONTH_PATTERN}\b", re.IGNORECASE),
    re.compile(rf"\b{MONTH_PATTERN}\.?\s+\d{{1,2}}\b", re.IGNORECASE),
    re.compile(r"\bonwards?$", re.IGNORECASE),
    re.compile(rf"^{WEEKDAY_PATTERN},", re.IGNORECASE),
    re.compile(r"^(?:today|tomorrow|tonight)$", re.IGNORECASE),
    re.compile(r"^multiple\s+dates?$", re.IGNORECASE),
    re.compile(r"^\d{4}-\d{2}-\d{2}"),
)

DateInput = Union[str, date, datetime, None]


def looks_like_date(line: str) -> bool:
    """Return True if a card line has one of the known date shapes."""
    text = (line or '').strip()
    return any(pattern.search(text) for pattern in DATE_LINE_PATTERNS)


def normalize_date(value: DateInput, today: Optional[date] = None) -> str:
    """
    Convert a free-text date expression to an ISO calendar date.

    Args:
        value: Date text as rendered on the page, or a date object
        today: Reference day for relative words and year inference
            (default: the current local date)

    Returns:
        ISO 8601 date string (YYYY-MM-DD) or UNKNOWN_DATE
    """
    today = today or date.today()

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value or '').strip()
    if not text or text.lower() == UNKNOWN_DATE:
        return UNKNOWN_DATE

    if ISO_DATE_RE.match(text):
        return _valid_iso(text)

    iso_prefix = ISO_PREFIX_RE.match(text)
    if iso_prefix:
        return _valid_iso(iso_prefix.group(1))

    lower = text.lower()
    if lower in ('today', 'tonight'):
        return today.isoformat()
    if lower == 'tomorrow':
        return (today + timedelta(days=1)).isoformat()

    if NO_DATE_RE.match(text):
        return UNKNOWN_DATE

    text = _strip_noise(text)
    if ISO_DATE_RE.match(text):
        return _valid_iso(text)

    text = ORDINAL_RE.sub(r"\1", text)
    text = _first_range_endpoint(text)
    text = re.sub(r"\s+", " ", text.replace(',', ' ')).strip()

    parsed = _match_day_month(text, today)
    if parsed is None:
        parsed = _parse_fallback(text, today)

    if parsed is None:
        logger.debug(f"Unrecognized date text: {value!r}")
        return UNKNOWN_DATE

    return parsed.isoformat()


def compute_status(event_date: str, today: Optional[date] = None) -> str:
    """
    Derive the temporal status of an event from its normalized date.

    Unknown or malformed dates count as upcoming: there is no evidence the
    event has passed.
    """
    today = today or date.today()
    try:
        day = date.fromisoformat(event_date or '')
    except ValueError:
        return STATUS_UPCOMING

    if day < today:
        return STATUS_EXPIRED
    if day == today:
        return STATUS_TODAY
    return STATUS_UPCOMING


def _valid_iso(text: str) -> str:
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        return UNKNOWN_DATE


def _strip_noise(text: str) -> str:
    """Remove a leading weekday name and a trailing 'onwards'."""
    text = WEEKDAY_PREFIX_RE.sub('', text)
    text = ONWARDS_SUFFIX_RE.sub('', text)
    return text.strip()


def _first_range_endpoint(text: str) -> str:
    """
    Reduce a range expression to its opening date.

    A bare day number ("20 - 22 Feb") borrows the month and year of the
    closing endpoint. An opening date without a year ("20 Feb - 22 Feb
    2025") takes the closing year, one less when the run crosses into a
    new year ("28 Dec - 2 Jan 2026").
    """
    parts = [part for part in RANGE_SPLIT_RE.split(text) if part]
    if len(parts) < 2:
        return text

    first = parts[0].strip()
    closing = parts[1].strip()
    if DAY_ONLY_RE.match(first):
        closing_parts = closing.split(' ', 1)
        if len(closing_parts) == 2 and DAY_ONLY_RE.match(closing_parts[0]):
            return f"{first} {closing_parts[1]}"
        return first

    closing_year = YEAR_RE.search(closing)
    if closing_year and not YEAR_RE.search(first):
        year = int(closing_year.group(0))
        opening_month = _month_of(first)
        closing_month = _month_of(closing)
        if opening_month and closing_month and opening_month > closing_month:
            year -= 1
        return f"{first.rstrip(',')} {year}"
    return first


def _month_of(text: str) -> Optional[int]:
    match = MONTH_NAME_RE.search(text)
    return MONTHS.get(match.group(0).lower()) if match else None


def _match_day_month(text: str, today: date) -> Optional[date]:
    """Try "DD Month [YYYY]" then "Month DD [YYYY]"."""
    match = DAY_FIRST_RE.match(text)
    if match:
        day, month_name, year = match.groups()
        month = MONTHS.get(month_name.lower())
        if month:
            return _build_date(int(day), month, int(year) if year else None, today)

    match = MONTH_FIRST_RE.match(text)
    if match:
        month_name, day, year = match.groups()
        month = MONTHS.get(month_name.lower())
        if month:
            return _build_date(int(day), month, int(year) if year else None, today)

    return None


def _build_date(day: int, month: int, year: Optional[int], today: date) -> Optional[date]:
    """
    Build a date, inferring the year when the text carries none.

    A yearless date more than ROLLOVER_DAYS behind today belongs to next
    year (December listings still on the page in January and the like).
    """
    try:
        result = date(year or today.year, month, day)
    except ValueError:
        return None

    if year is None:
        result = _roll_forward(result, today)
    return result


def _roll_forward(result: Optional[date], today: date) -> Optional[date]:
    if result is None or (today - result).days <= ROLLOVER_DAYS:
        return result
    try:
        return result.replace(year=result.year + 1)
    except ValueError:
        return None


def _parse_fallback(text: str, today: date) -> Optional[date]:
    """Generic calendar parse, limited to text naming a month or a year."""
    has_year = bool(YEAR_RE.search(text))
    if not has_year and not MONTH_NAME_RE.search(text):
        return None

    try:
        parsed = date_parser.parse(text, default=datetime(today.year, 1, 1))
    except (ValueError, OverflowError):
        return None

    if parsed.year <= 2000:
        return None

    result = parsed.date()
    if not has_year:
        result = _roll_forward(result, today)
    return result
