"""Extraction strategies over one rendered listing page.

Each strategy reads the same PageSnapshot and returns zero or more
CandidateRecords. A malformed block, object or card is logged and skipped;
it never stops the rest of the batch.
"""
import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional
from urllib.parse import unquote, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from processor.date_normalizer import looks_like_date
from processor.line_classifier import classify_lines, passes_quality_gate
from processor.models import (
    DOM_HEURISTIC,
    EMBEDDED_STATE,
    STRUCTURED_DATA,
    CandidateRecord,
)

logger = logging.getLogger(__name__)

LISTING_URL_RE = re.compile(r"/events/.*\bET\d+", re.IGNORECASE)
OVERLAY_TEXT_RE = re.compile(r"l-text,ie-([A-Za-z0-9+/=]+)")
STATE_ASSIGNMENT_RE = re.compile(
    r"window\.(?:__INITIAL_STATE__|__PRELOADED_STATE__|__APOLLO_STATE__)\s*=\s*"
)
MAX_WALK_DEPTH = 64


@dataclass
class ListingAnchor:
    """A rendered link to a listing-detail page."""
    href: str
    text: str
    image_src: str = ''


@dataclass
class PageSnapshot:
    """Final rendered state of a listing page."""
    base_url: str
    html: str
    anchors: List[ListingAnchor] = field(default_factory=list)


def canonical_url(href: Optional[str], base_url: str) -> str:
    """
    Resolve a link to an absolute URL without query string or fragment.

    Args:
        href: Link as found on the page, possibly relative
        base_url: Origin used for relative links

    Returns:
        Absolute URL, or an empty string for empty input
    """
    href = (href or '').strip()
    if not href:
        return ''
    parts = urlsplit(urljoin(base_url, href))
    path = parts.path.rstrip('/') or '/'
    return urlunsplit((parts.scheme, parts.netloc, path, '', ''))


def decode_overlay_date(image_src: Optional[str]) -> str:
    """
    Read the date printed over a card image.

    Listing images are served by an image CDN that draws the city-specific
    date as a text overlay; the overlay text travels base64-encoded in the
    ``l-text,ie-<base64>`` transformation of the image URL.

    Returns:
        Decoded date text, or an empty string when absent or not date-like
    """
    if not image_src:
        return ''

    match = OVERLAY_TEXT_RE.search(unquote(image_src))
    if not match:
        return ''

    encoded = match.group(1)
    encoded += '=' * (-len(encoded) % 4)
    try:
        text = base64.b64decode(encoded).decode('utf-8').strip()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return ''

    return text if looks_like_date(text) else ''


def _text_value(value: Any) -> str:
    """Flatten a scalar, a named object or a list to display text."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, dict):
        return _text_value(value.get('name') or value.get('title'))
    if isinstance(value, list) and value:
        return _text_value(value[0])
    return ''


class StructuredDataExtractor:
    """Strategy A: schema.org Event entities in JSON-LD blocks."""

    strategy = STRUCTURED_DATA

    def extract(self, snapshot: PageSnapshot, city: str) -> List[CandidateRecord]:
        soup = BeautifulSoup(snapshot.html, 'html.parser')
        candidates = []

        for script in soup.find_all('script', type='application/ld+json'):
            text = script.string or script.get_text()
            text = (text or '').replace('/*<![CDATA[*/', '').replace('/*]]>*/', '').strip()
            if not text:
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping unparseable JSON-LD block: {e}")
                continue

            for entity in self._iter_events(data, depth=0):
                try:
                    candidate = self._to_candidate(entity, snapshot.base_url)
                except (AttributeError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed JSON-LD event: {e}")
                    continue
                if candidate:
                    candidates.append(candidate)

        logger.info(f"Structured data yielded {len(candidates)} candidates")
        return candidates

    def _iter_events(self, data: Any, depth: int) -> Iterator[dict]:
        """Yield event entities, descending into @graph and ItemList containers."""
        if depth > MAX_WALK_DEPTH:
            return
        if isinstance(data, list):
            for item in data:
                yield from self._iter_events(item, depth + 1)
            return
        if not isinstance(data, dict):
            return

        if self._is_event(data):
            yield data
            return

        if '@graph' in data:
            yield from self._iter_events(data['@graph'], depth + 1)
        elements = data.get('itemListElement') or []
        if isinstance(elements, dict):
            elements = [elements]
        for element in elements:
            if isinstance(element, dict) and 'item' in element:
                element = element['item']
            yield from self._iter_events(element, depth + 1)

    def _is_event(self, entity: dict) -> bool:
        types = entity.get('@type')
        if isinstance(types, str):
            types = [types]
        if not isinstance(types, list):
            return False
        return any(isinstance(t, str) and t.endswith('Event') for t in types)

    def _to_candidate(self, entity: dict, base_url: str) -> Optional[CandidateRecord]:
        url = canonical_url(_text_value(entity.get('url') or entity.get('@id')), base_url)
        if not url:
            return None

        location = entity.get('location')
        if isinstance(location, list):
            location = location[0] if location else None
        venue = _text_value(location)
        if not venue and isinstance(location, dict):
            address = location.get('address')
            if isinstance(address, dict):
                venue = _text_value(address.get('name'))

        return CandidateRecord(
            source_url=url,
            strategy=self.strategy,
            name=_text_value(entity.get('name')),
            date_raw=_text_value(entity.get('startDate')),
            venue=venue,
            category=self._category(entity),
        )

    def _category(self, entity: dict) -> str:
        category = _text_value(entity.get('genre') or entity.get('category'))
        if category:
            return category
        types = entity.get('@type')
        if isinstance(types, str):
            types = [types]
        if not isinstance(types, list):
            return ''
        for event_type in types:
            if not isinstance(event_type, str) or event_type == 'Event':
                continue
            if event_type.endswith('Event'):
                # "ComedyEvent" -> "Comedy"
                return event_type[:-len('Event')]
        return ''


class EmbeddedStateExtractor:
    """
    Strategy B: event-shaped objects anywhere in the embedded app state.

    An object counts as an event when it carries a name, a start date and a
    URL, with or without an explicit type tag.
    """

    strategy = EMBEDDED_STATE

    NAME_KEYS = ('name', 'title', 'eventName', 'event_name')
    DATE_KEYS = ('startDate', 'start_date', 'eventDate', 'event_date', 'showDate', 'date')
    URL_KEYS = ('url', 'eventUrl', 'event_url', 'webUrl', 'href', 'link')
    VENUE_KEYS = ('venue', 'venueName', 'venue_name', 'location')
    CATEGORY_KEYS = ('category', 'genre', 'eventType', 'event_type')

    def extract(self, snapshot: PageSnapshot, city: str) -> List[CandidateRecord]:
        state = self._load_state(snapshot.html)
        if state is None:
            logger.info("No embedded application state found")
            return []

        candidates = []
        for obj in self._walk(state):
            try:
                candidate = self._to_candidate(obj, snapshot.base_url)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed state object: {e}")
                continue
            if candidate:
                candidates.append(candidate)

        logger.info(f"Embedded state yielded {len(candidates)} candidates")
        return candidates

    def _load_state(self, html: str) -> Optional[Any]:
        soup = BeautifulSoup(html, 'html.parser')

        next_data = soup.find('script', id='__NEXT_DATA__')
        if next_data is not None:
            try:
                return json.loads(next_data.string or next_data.get_text())
            except json.JSONDecodeError as e:
                logger.warning(f"Unparseable __NEXT_DATA__ payload: {e}")

        for script in soup.find_all('script'):
            text = script.string or ''
            match = STATE_ASSIGNMENT_RE.search(text)
            if not match:
                continue
            try:
                state, _ = json.JSONDecoder().raw_decode(text, match.end())
                return state
            except json.JSONDecodeError as e:
                logger.warning(f"Unparseable embedded state assignment: {e}")

        return None

    def _walk(self, root: Any) -> Iterator[dict]:
        """Depth-first walk yielding event-shaped objects without descending into them."""
        stack = [(root, 0)]
        while stack:
            node, depth = stack.pop()
            if depth > MAX_WALK_DEPTH:
                continue
            if isinstance(node, dict):
                if self._looks_like_event(node):
                    yield node
                    continue
                children = list(node.values())
            elif isinstance(node, list):
                children = node
            else:
                continue
            for child in reversed(children):
                stack.append((child, depth + 1))

    def _first(self, obj: dict, keys) -> str:
        for key in keys:
            value = _text_value(obj.get(key))
            if value:
                return value
        return ''

    def _looks_like_event(self, obj: dict) -> bool:
        return bool(
            self._first(obj, self.NAME_KEYS)
            and self._first(obj, self.DATE_KEYS)
            and self._first(obj, self.URL_KEYS)
        )

    def _to_candidate(self, obj: dict, base_url: str) -> Optional[CandidateRecord]:
        url = canonical_url(self._first(obj, self.URL_KEYS), base_url)
        if not url:
            return None
        return CandidateRecord(
            source_url=url,
            strategy=self.strategy,
            name=self._first(obj, self.NAME_KEYS),
            date_raw=self._first(obj, self.DATE_KEYS),
            venue=self._first(obj, self.VENUE_KEYS),
            category=self._first(obj, self.CATEGORY_KEYS),
        )


class DomCardExtractor:
    """Strategy C: rendered listing cards classified line by line."""

    strategy = DOM_HEURISTIC

    def extract(self, snapshot: PageSnapshot, city: str) -> List[CandidateRecord]:
        candidates = []
        seen = set()
        counters = {
            'no_listing_id': 0,
            'duplicates': 0,
            'no_venue': 0,
            'dates_from_image': 0,
            'dates_from_text': 0,
        }

        for anchor in snapshot.anchors:
            try:
                href = anchor.href or ''
                if not LISTING_URL_RE.search(href):
                    counters['no_listing_id'] += 1
                    continue

                url = canonical_url(href, snapshot.base_url)
                if url.lower() in seen:
                    counters['duplicates'] += 1
                    continue
                seen.add(url.lower())

                lines = [line.strip() for line in (anchor.text or '').split('\n')]
                lines = [line for line in lines if line]
                if not lines:
                    continue

                candidate = classify_lines(lines, city)
                candidate.source_url = url
                if not passes_quality_gate(candidate):
                    counters['no_venue'] += 1
                    continue

                image_date = decode_overlay_date(anchor.image_src)
                if image_date:
                    candidate.date_raw = image_date
                    counters['dates_from_image'] += 1
                elif candidate.date_raw:
                    counters['dates_from_text'] += 1

                candidates.append(candidate)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed listing card: {e}")
                continue

        logger.info(
            f"DOM cards yielded {len(candidates)} candidates "
            f"(skipped {counters['no_listing_id']} without listing id, "
            f"{counters['no_venue']} without venue, {counters['duplicates']} duplicates; "
            f"dates {counters['dates_from_image']} from image, "
            f"{counters['dates_from_text']} from text)"
        )
        return candidates


DEFAULT_EXTRACTORS = (
    StructuredDataExtractor(),
    EmbeddedStateExtractor(),
    DomCardExtractor(),
)
