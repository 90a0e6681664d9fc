"""Unit tests for the page extraction strategies."""
import json

from processor.models import DOM_HEURISTIC, EMBEDDED_STATE, STRUCTURED_DATA
from scraper.extractors import (
    DomCardExtractor,
    EmbeddedStateExtractor,
    ListingAnchor,
    PageSnapshot,
    StructuredDataExtractor,
    canonical_url,
    decode_overlay_date,
)

BASE_URL = "https://in.bookmyshow.com"

# base64("Sat, 28 Mar") and base64("Sun, 22 Feb"), URL-encoded
OVERLAY_SAT = (
    "https://assets-in.bmscdn.com/discovery-catalog/events/"
    "tr:w-400,h-600,bg-CCCCCC:w-400.0,h-660.0,cm-pad_resize,bg-000000,fo-top:"
    "l-text,ie-U2F0LCAyOCBNYXI%3D,fs-29,co-FFFFFF,ly-612,lx-24,pa-8_0_0_0,l-end/"
    "et00012345-portrait.jpg"
)
OVERLAY_SUN = "https://cdn.example/tr:l-text,ie-U3VuLCAyMiBGZWI%3D,fs-29,l-end/x.jpg"


def snapshot(html="", anchors=None):
    return PageSnapshot(base_url=BASE_URL, html=html, anchors=anchors or [])


def ld_json(data):
    return f'<script type="application/ld+json">{json.dumps(data)}</script>'


class TestCanonicalUrl:
    """Test cases for canonical_url."""

    def test_relative_href_resolved(self):
        url = canonical_url("/events/comedy-night/ET00012345", BASE_URL)
        assert url == "https://in.bookmyshow.com/events/comedy-night/ET00012345"

    def test_query_fragment_and_trailing_slash_removed(self):
        url = canonical_url(
            "https://in.bookmyshow.com/events/comedy-night/ET00012345/?src=list#top",
            BASE_URL
        )
        assert url == "https://in.bookmyshow.com/events/comedy-night/ET00012345"

    def test_empty_href(self):
        assert canonical_url("  ", BASE_URL) == ""
        assert canonical_url(None, BASE_URL) == ""


class TestDecodeOverlayDate:
    """Test cases for decode_overlay_date."""

    def test_decodes_date_overlay(self):
        assert decode_overlay_date(OVERLAY_SAT) == "Sat, 28 Mar"
        assert decode_overlay_date(OVERLAY_SUN) == "Sun, 22 Feb"

    def test_missing_overlay(self):
        assert decode_overlay_date("https://cdn.example/plain.jpg") == ""
        assert decode_overlay_date("") == ""
        assert decode_overlay_date(None) == ""

    def test_non_date_overlay_ignored(self):
        # base64("Book now")
        assert decode_overlay_date("https://cdn.example/l-text,ie-Qm9vayBub3c=,l-end") == ""

    def test_invalid_base64_ignored(self):
        assert decode_overlay_date("https://cdn.example/l-text,ie-////,l-end") == ""


class TestStructuredDataExtractor:
    """Test cases for Strategy A."""

    def test_direct_event(self):
        """Test a top-level Event entity."""
        html = ld_json({
            "@context": "https://schema.org",
            "@type": "Event",
            "name": "Comedy Night",
            "startDate": "2026-02-20T20:00:00+05:30",
            "url": "/events/comedy-night/ET00012345",
            "location": {"@type": "Place", "name": "Laugh Club"},
            "genre": "Comedy",
        })

        candidates = StructuredDataExtractor().extract(snapshot(html), "jaipur")

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.strategy == STRUCTURED_DATA
        assert candidate.name == "Comedy Night"
        assert candidate.date_raw == "2026-02-20T20:00:00+05:30"
        assert candidate.venue == "Laugh Club"
        assert candidate.category == "Comedy"
        assert candidate.source_url == "https://in.bookmyshow.com/events/comedy-night/ET00012345"

    def test_events_nested_in_item_list(self):
        """Test events inside an ItemList and an @graph."""
        html = ld_json({
            "@type": "ItemList",
            "itemListElement": [
                {"@type": "ListItem", "item": {
                    "@type": "MusicEvent", "name": "Jazz Evening",
                    "url": "https://in.bookmyshow.com/events/jazz/ET1",
                    "location": [{"name": "Blue Room"}],
                }},
                {"@type": "ComedyEvent", "name": "Roast",
                 "url": "https://in.bookmyshow.com/events/roast/ET2"},
            ],
        }) + ld_json({"@graph": [
            {"@type": "Organization", "name": "Org"},
            {"@type": ["Event"], "name": "Fair", "url": "/events/fair/ET3"},
        ]})

        candidates = StructuredDataExtractor().extract(snapshot(html), "delhi")

        assert [c.name for c in candidates] == ["Jazz Evening", "Roast", "Fair"]
        assert candidates[0].venue == "Blue Room"
        assert candidates[0].category == "Music"
        assert candidates[1].category == "Comedy"

    def test_malformed_block_skipped(self):
        """Test that a broken block does not stop other blocks."""
        html = (
            '<script type="application/ld+json">{not json</script>'
            + ld_json({"@type": "Event", "name": "Ok", "url": "/events/ok/ET9"})
        )

        candidates = StructuredDataExtractor().extract(snapshot(html), "delhi")

        assert [c.name for c in candidates] == ["Ok"]

    def test_graph_container(self):
        """Test events listed in an @graph alongside other entities."""
        html = ld_json({
            "@context": "https://schema.org",
            "@graph": [
                {"@type": "WebPage", "name": "Events in Delhi"},
                {"@type": "TheaterEvent", "name": "Play", "url": "/events/play/ET21",
                 "location": {"@type": "Place", "address": {"name": "Kamani Auditorium"}}},
                {"@type": "Event", "name": "Expo", "url": "/events/expo/ET22"},
            ],
        })

        candidates = StructuredDataExtractor().extract(snapshot(html), "delhi")

        assert [c.name for c in candidates] == ["Play", "Expo"]
        assert candidates[0].venue == "Kamani Auditorium"
        assert candidates[0].category == "Theater"
        assert candidates[1].category == ""

    def test_list_typed_entity(self):
        """Test an entity typed with several schema.org types."""
        html = ld_json({
            "@type": ["Event", "MusicEvent"],
            "name": "Sufi Night",
            "url": "/events/sufi-night/ET23",
        })

        candidates = StructuredDataExtractor().extract(snapshot(html), "delhi")

        assert [c.name for c in candidates] == ["Sufi Night"]
        assert candidates[0].category == "Music"

    def test_single_item_list_element(self):
        """Test an itemListElement given as one object instead of a list."""
        html = ld_json({
            "@type": "ItemList",
            "itemListElement": {"@type": "ListItem", "item": {
                "@type": "SportsEvent", "name": "Marathon", "url": "/events/marathon/ET24",
            }},
        })

        candidates = StructuredDataExtractor().extract(snapshot(html), "delhi")

        assert [c.name for c in candidates] == ["Marathon"]
        assert candidates[0].category == "Sports"

    def test_malformed_entity_skipped(self):
        """Test that an entity with an unusable URL does not stop the others."""
        html = ld_json([
            {"@type": "Event", "name": "Broken", "url": "http://[bad"},
            {"@type": "Event", "name": "Ok", "url": "/events/ok/ET25"},
        ])

        candidates = StructuredDataExtractor().extract(snapshot(html), "delhi")

        assert [c.name for c in candidates] == ["Ok"]

    def test_event_without_url_skipped(self):
        html = ld_json({"@type": "Event", "name": "Nowhere"})
        assert StructuredDataExtractor().extract(snapshot(html), "delhi") == []


class TestEmbeddedStateExtractor:
    """Test cases for Strategy B."""

    def test_next_data_payload(self):
        """Test event-shaped objects found deep in __NEXT_DATA__."""
        state = {"props": {"pageProps": {"listing": {"sections": [
            {"cards": [
                {"eventName": "Food Fest", "eventDate": "Sat, 1 Mar",
                 "eventUrl": "/events/food-fest/ET10", "venueName": "Grounds",
                 "category": "Food"},
                {"title": "Banner", "href": "/offers"},
            ]},
            {"nested": {"deeper": [
                {"name": "Run", "startDate": "2026-03-02",
                 "url": "https://in.bookmyshow.com/events/run/ET11",
                 "location": {"name": "Park"}},
            ]}},
        ]}}}}
        html = (
            '<script id="__NEXT_DATA__" type="application/json">'
            f'{json.dumps(state)}</script>'
        )

        candidates = EmbeddedStateExtractor().extract(snapshot(html), "delhi")

        assert [c.name for c in candidates] == ["Food Fest", "Run"]
        assert candidates[0].strategy == EMBEDDED_STATE
        assert candidates[0].venue == "Grounds"
        assert candidates[0].category == "Food"
        assert candidates[0].source_url == "https://in.bookmyshow.com/events/food-fest/ET10"
        assert candidates[1].venue == "Park"

    def test_window_state_assignment(self):
        """Test a window.__INITIAL_STATE__ assignment."""
        state = {"events": [{"name": "Gig", "date": "20 Feb", "url": "/events/gig/ET5"}]}
        html = (
            "<script>var x = 1; window.__INITIAL_STATE__ = "
            f"{json.dumps(state)};window.other = 2;</script>"
        )

        candidates = EmbeddedStateExtractor().extract(snapshot(html), "delhi")

        assert len(candidates) == 1
        assert candidates[0].date_raw == "20 Feb"

    def test_malformed_object_skipped(self):
        """Test that one unusable state object does not stop the others."""
        state = {"events": [
            {"name": "Broken", "date": "20 Feb", "url": "http://[bad"},
            {"name": "Gig", "date": "21 Feb", "url": "/events/gig/ET6", "venue": "Hall"},
        ]}
        html = (
            '<script id="__NEXT_DATA__" type="application/json">'
            f'{json.dumps(state)}</script>'
        )

        candidates = EmbeddedStateExtractor().extract(snapshot(html), "delhi")

        assert [c.name for c in candidates] == ["Gig"]
        assert candidates[0].source_url == "https://in.bookmyshow.com/events/gig/ET6"

    def test_no_state(self):
        assert EmbeddedStateExtractor().extract(snapshot("<html></html>"), "delhi") == []


class TestDomCardExtractor:
    """Test cases for Strategy C."""

    def test_cards_classified(self):
        """Test listing anchors become candidates with classified fields."""
        anchors = [
            ListingAnchor(
                href="/events/comedy-night/ET00012345",
                text="Comedy Night\nThu, 20 Feb\nLaugh Club: Jaipur\nComedy\n₹499 onwards",
            ),
            ListingAnchor(href="/events/explore-all", text="See all events"),
            ListingAnchor(href="/events/promo/ET00099999", text="Big Sale\nUpto 50% off"),
            ListingAnchor(
                href="/events/comedy-night/ET00012345?ref=dup",
                text="Comedy Night\nLaugh Club: Jaipur",
            ),
        ]

        candidates = DomCardExtractor().extract(snapshot(anchors=anchors), "jaipur")

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.strategy == DOM_HEURISTIC
        assert candidate.name == "Comedy Night"
        assert candidate.date_raw == "Thu, 20 Feb"
        assert candidate.venue == "Laugh Club"
        assert candidate.category == "Comedy"
        assert candidate.source_url == "https://in.bookmyshow.com/events/comedy-night/ET00012345"

    def test_image_overlay_date_takes_priority(self):
        """Test the decoded image date replaces the text date."""
        anchors = [ListingAnchor(
            href="/events/tour/ET00012346",
            text="Tour\n20 Feb - 30 Mar\nArena: Jaipur",
            image_src=OVERLAY_SAT,
        )]

        candidates = DomCardExtractor().extract(snapshot(anchors=anchors), "jaipur")

        assert candidates[0].date_raw == "Sat, 28 Mar"

    def test_malformed_card_skipped(self):
        """Test that one broken anchor does not stop the batch."""
        anchors = [
            ListingAnchor(href=None, text=None),
            ListingAnchor(href="/events/ok/ET1", text="Ok\nHall: Delhi"),
        ]

        candidates = DomCardExtractor().extract(snapshot(anchors=anchors), "delhi")

        assert [c.name for c in candidates] == ["Ok"]
