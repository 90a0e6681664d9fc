"""Data models for event extraction and reconciliation."""
from dataclasses import dataclass, field
from typing import List, Optional


UNKNOWN_DATE = "unknown"

# Extraction strategies, listed in trust order
STRUCTURED_DATA = "structured_data"
EMBEDDED_STATE = "embedded_state"
DOM_HEURISTIC = "dom_heuristic"
STRATEGY_PRIORITY = (STRUCTURED_DATA, EMBEDDED_STATE, DOM_HEURISTIC)

STATUS_UPCOMING = "upcoming"
STATUS_TODAY = "today"
STATUS_EXPIRED = "expired"

SOURCE_SCRAPE = "scrape"
SOURCE_CACHE = "cache"


def identity_key(source_url: Optional[str]) -> str:
    """Return the case-insensitive, trimmed identity key for a listing URL."""
    return (source_url or "").strip().lower()


@dataclass
class CandidateRecord:
    """Unvalidated listing produced by one extraction strategy."""
    source_url: str
    strategy: str
    name: str = ""
    date_raw: str = ""
    venue: str = ""
    category: str = ""


@dataclass
class EventRecord:
    """Normalized event keyed by source_url."""
    name: str
    date: str
    venue: str
    city: str
    category: str
    source_url: str
    last_seen: str = ""
    status: str = STATUS_UPCOMING

    @property
    def key(self) -> str:
        return identity_key(self.source_url)


@dataclass
class ReconcileResult:
    """Result of merging a batch into persisted state."""
    records: List[EventRecord]
    added: List[EventRecord] = field(default_factory=list)
    updated: List[EventRecord] = field(default_factory=list)
    reobserved: List[EventRecord] = field(default_factory=list)
    retained: int = 0

    @property
    def touched(self) -> List[EventRecord]:
        """Records whose stored form changed, last_seen included."""
        return self.added + self.updated + self.reobserved


@dataclass
class CityRefresh:
    """Outcome of refreshing one city, with provenance."""
    city: str
    source: str
    events: List[EventRecord]
    persisted: bool = True
    error: Optional[str] = None
