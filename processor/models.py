"""Data models for cached event search and filtering."""
import json
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

# Eventbrite wants a naive datetime, one WITHOUT a timezone.
# It uses the timezone of the event location to find events.
EVENTBRITE_DATETIME_FORMAT = '%Y-%m-%dT%H:%M:%S'


@dataclass(frozen=True)
class SearchParameters:
    """Parameters for one paginated event search."""
    query: str
    geo_address: str
    radius_miles: int
    window_start: datetime
    window_end: datetime
    page: Optional[int] = None

    @classmethod
    def for_days_ahead(
        cls,
        query: str,
        geo_address: str,
        radius_miles: int,
        days_ahead: int,
        today: Optional[date] = None
    ) -> 'SearchParameters':
        """
        Build parameters covering start of today through days_ahead days later.
        
        Args:
            query: Free text query
            geo_address: Center point address
            radius_miles: Search radius in miles
            days_ahead: Size of the search window in days
            today: Day the window starts on (default: current date)
            
        Returns:
            SearchParameters with page unset
        """
        today = today or datetime.now().date()
        window_start = datetime(today.year, today.month, today.day)
        return cls(
            query=query,
            geo_address=geo_address,
            radius_miles=radius_miles,
            window_start=window_start,
            window_end=window_start + timedelta(days=days_ahead)
        )

    def with_page(self, page: Optional[int]) -> 'SearchParameters':
        return replace(self, page=page)

    def to_request_params(self) -> Dict[str, Any]:
        """
        Eventbrite query parameters in a fixed field order.
        
        NOTE: location.within must have no space between the number and the
        unit (e.g. 25mi) or the API answers with cryptic errors.
        """
        params = {
            'q': self.query,
            'sort_by': 'date',
            'location.address': self.geo_address,
            'location.within': f"{self.radius_miles}mi",
            'start_date.range_start': self.window_start.strftime(EVENTBRITE_DATETIME_FORMAT),
            'start_date.range_end': self.window_end.strftime(EVENTBRITE_DATETIME_FORMAT)
        }
        if self.page is not None:
            params['page'] = self.page
        return params


@dataclass
class CacheEntry:
    """Result of a single cache store lookup."""
    key: str
    is_cached: bool
    value: Optional[bytes] = None


@dataclass
class PageResult:
    """One page of an Eventbrite search response."""
    payload: Dict[str, Any]

    @property
    def page_count(self) -> int:
        return int(self.payload['pagination']['page_count'])

    @property
    def object_count(self) -> int:
        return int(self.payload['pagination']['object_count'])

    @property
    def events(self) -> List[Dict[str, Any]]:
        return self.payload.get('events') or []


@dataclass
class AggregatedResult:
    """All pages of one search, in remote page order."""
    pages: List[PageResult] = field(default_factory=list)

    @property
    def events(self) -> List[Dict[str, Any]]:
        events = []
        for page in self.pages:
            events.extend(page.events)
        return events

    def to_bytes(self) -> bytes:
        document = {'event_pages': [page.payload for page in self.pages]}
        return json.dumps(document).encode('utf-8')

    @classmethod
    def from_bytes(cls, value: bytes) -> 'AggregatedResult':
        document = json.loads(value)
        return cls(pages=[PageResult(page) for page in document['event_pages']])


@dataclass
class CacheAccessCounter:
    """Running count of cache hits and misses."""
    hits: int = 0
    misses: int = 0

    def record(self, entry: CacheEntry) -> CacheEntry:
        if entry.is_cached:
            self.hits += 1
        else:
            self.misses += 1
        return entry


@dataclass
class Metrics:
    """Summary of one fetch session."""
    total_pages: int
    total_events: int
    cache_hits: int
    cache_misses: int
    search_parameters: Optional[SearchParameters]
    test_mode: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'eventbrite': {
                'total_pages': self.total_pages,
                'total_events': self.total_events,
                'search_params': (
                    self.search_parameters.to_request_params()
                    if self.search_parameters else None
                ),
                'test_mode': self.test_mode
            },
            'cache': {
                'hits': self.cache_hits,
                'misses': self.cache_misses
            }
        }


@dataclass
class FilterMatch:
    """An event record selected by a fuzzy query."""
    record: Dict[str, Any]
    relevance_score: float
    query: str


class PageFetchState(Enum):
    """Lifecycle of a single page cache-or-fetch."""
    NEEDS_LOOKUP = 'needs_lookup'
    CACHE_HIT = 'cache_hit'
    CACHE_MISS = 'cache_miss'
    FETCHING = 'fetching'
    FETCHED = 'fetched'
    STORED = 'stored'


@dataclass
class PageOutcome:
    """Where one page ended up after the cache-or-fetch decision."""
    page_number: int
    key: str
    state: PageFetchState = PageFetchState.NEEDS_LOOKUP
    payload: Optional[Dict[str, Any]] = None

    @property
    def is_settled(self) -> bool:
        """True once the page is known to be in the cache."""
        return self.state in (PageFetchState.CACHE_HIT, PageFetchState.STORED)
