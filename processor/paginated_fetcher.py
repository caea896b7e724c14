"""Cache-backed pagination over the Eventbrite search endpoint."""
import json
import logging
from typing import Any, Dict, List, Optional

from processor.cache_keys import build_full_output_key, build_page_key, build_prefix
from processor.exceptions import CacheConsistencyError, CacheStoreError, TransportError
from processor.models import (
    AggregatedResult,
    CacheAccessCounter,
    CacheEntry,
    Metrics,
    PageFetchState,
    PageOutcome,
    PageResult,
    SearchParameters,
)
from scraper.eventbrite_client import EventbriteClient
from storage.disk_cache import DiskCache

logger = logging.getLogger(__name__)

TEST_NUMBER_OF_PAGES = 4


class CachedEventbriteFetcher:
    """Fetches every page of a search, going to the network only for uncached pages."""
    
    def __init__(
        self,
        client: EventbriteClient,
        cache: DiskCache,
        test_page_limit: int = TEST_NUMBER_OF_PAGES
    ):
        """
        Initialize the fetcher.
        
        Args:
            client: Remote API client
            cache: Cache store shared by pages and full outputs
            test_page_limit: Page cap applied in test mode
        """
        self.client = client
        self.cache = cache
        self.test_page_limit = test_page_limit
        self.counter = CacheAccessCounter()
        self.search_parameters: Optional[SearchParameters] = None
        self.test_mode = False
        self.total_pages = 0
        self.total_events = 0
    
    def fetch_all(self, params: SearchParameters, test_mode: bool = False) -> AggregatedResult:
        """
        Return every page of a search, assembling and caching the full output.
        
        Args:
            params: Search parameters; page is ignored
            test_mode: Cap the number of pages at test_page_limit
            
        Returns:
            AggregatedResult exactly as stored in the cache
            
        Raises:
            TransportError: If a page request fails
            CacheStoreError: If the cache cannot be read or written
            CacheConsistencyError: If a fetched page is missing at assembly time
        """
        params = params.with_page(None)
        self.search_parameters = params
        self.test_mode = test_mode
        
        prefix = build_prefix(params)
        full_output_key = build_full_output_key(prefix)
        
        # if we already have the full output just return it
        full_output_entry = self.counter.record(self.cache.get(full_output_key))
        if full_output_entry.is_cached:
            logger.info("Full output cached already, returning that")
            result = self._decode_full_output(full_output_entry)
            logger.info(f"Cached full output holds {len(result.pages)} pages")
            self._record_totals(result.pages[0] if result.pages else None, len(result.pages))
            return result
        
        # pages are 1 indexed
        first_page = self.cached_page_fetch(build_page_key(prefix, 1), params.with_page(1))
        first_page_result = PageResult(first_page.payload)
        
        total_pages = first_page_result.page_count
        if test_mode:
            total_pages = min(total_pages, self.test_page_limit)
            logger.info(f"Test mode: processing at most {self.test_page_limit} pages")
            if total_pages < first_page_result.page_count:
                # the full output key does not encode test mode
                logger.warning(
                    f"Caching a truncated full output ({total_pages} of "
                    f"{first_page_result.page_count} pages); later runs with the same "
                    f"search will reuse it until the cache is cleared"
                )
        
        self._record_totals(first_page_result, total_pages)
        logger.info(
            f"Parsing {first_page_result.object_count} events over {total_pages} pages..."
        )
        
        outcomes = [first_page]
        # one request in flight at a time
        for page_number in range(2, total_pages + 1):
            outcomes.append(
                self.cached_page_fetch(
                    build_page_key(prefix, page_number),
                    params.with_page(page_number)
                )
            )
            logger.info(f"Retrieved page {page_number}/{total_pages}")
        
        result = self._assemble(prefix, outcomes)
        
        self.cache.set(full_output_key, result.to_bytes())
        stored = self.cache.get(full_output_key)
        if not stored.is_cached:
            self._fail_consistency(full_output_key, "full output missing right after write")
        
        return self._decode_full_output(stored)
    
    def cached_page_fetch(self, key: str, params: SearchParameters) -> PageOutcome:
        """
        Read one page from the cache, or fetch and cache it.
        
        Args:
            key: Page cache key
            params: Search parameters with page set
            
        Returns:
            PageOutcome settled in CACHE_HIT or STORED
        """
        outcome = PageOutcome(page_number=params.page, key=key)
        entry = self.counter.record(self.cache.get(key))
        
        if entry.is_cached:
            outcome.state = PageFetchState.CACHE_HIT
            outcome.payload = self._decode_page(entry)
            logger.debug(f"Page {params.page} served from cache")
            return outcome
        
        outcome.state = PageFetchState.CACHE_MISS
        logger.info(f"Page {params.page} not cached, requesting from Eventbrite")
        
        outcome.state = PageFetchState.FETCHING
        payload = self.client.search_events(params.to_request_params())
        validate_page(payload, params.page)
        outcome.state = PageFetchState.FETCHED
        
        self.cache.set(key, json.dumps(payload))
        outcome.payload = payload
        outcome.state = PageFetchState.STORED
        return outcome
    
    def generate_metrics(self) -> Metrics:
        return summarize(self)
    
    def _assemble(self, prefix: str, outcomes: List[PageOutcome]) -> AggregatedResult:
        """
        Re-read every page from the cache in page order.
        
        Args:
            prefix: Cache key prefix of the search
            outcomes: One settled outcome per page, in page order
            
        Returns:
            AggregatedResult with one PageResult per page
        """
        pages = []
        for expected_number, outcome in enumerate(outcomes, start=1):
            if outcome.page_number != expected_number or not outcome.is_settled:
                self._fail_consistency(
                    outcome.key,
                    f"page {outcome.page_number} not settled (state {outcome.state.value})"
                )
            
            entry = self.cache.get(build_page_key(prefix, expected_number))
            if not entry.is_cached:
                self._fail_consistency(entry.key, "writing uncached entry")
            
            pages.append(PageResult(self._decode_page(entry)))
        
        return AggregatedResult(pages=pages)
    
    def _decode_page(self, entry: CacheEntry) -> Dict[str, Any]:
        try:
            payload = json.loads(entry.value)
            validate_page(payload)
        except (ValueError, TransportError) as e:
            raise CacheStoreError(f"Corrupt cached page {entry.key}: {e}") from e
        return payload
    
    def _decode_full_output(self, entry: CacheEntry) -> AggregatedResult:
        try:
            return AggregatedResult.from_bytes(entry.value)
        except (ValueError, KeyError, TypeError) as e:
            raise CacheStoreError(f"Corrupt cached full output {entry.key}: {e}") from e
    
    def _record_totals(self, first_page: Optional[PageResult], total_pages: int) -> None:
        self.total_pages = total_pages
        self.total_events = first_page.object_count if first_page else 0
    
    def _fail_consistency(self, key: str, reason: str) -> None:
        state = self._debug_state()
        logger.error(
            f"Cache consistency failure: {reason}. Fetcher state: {state}"
        )
        raise CacheConsistencyError(f"Cache consistency failure for {key}: {reason}", key=key)
    
    def _debug_state(self) -> Dict[str, Any]:
        return {
            'cache_directory': str(self.cache.directory),
            'search_params': (
                self.search_parameters.to_request_params()
                if self.search_parameters else None
            ),
            'test_mode': self.test_mode,
            'total_pages': self.total_pages,
            'total_events': self.total_events,
            'cache_hits': self.counter.hits,
            'cache_misses': self.counter.misses
        }


def summarize(fetcher: CachedEventbriteFetcher) -> Metrics:
    """
    Summarize cache traffic and search totals of a fetcher.
    
    Hits and misses are cumulative over every full output and page lookup
    the fetcher has made.
    """
    return Metrics(
        total_pages=fetcher.total_pages,
        total_events=fetcher.total_events,
        cache_hits=fetcher.counter.hits,
        cache_misses=fetcher.counter.misses,
        search_parameters=fetcher.search_parameters,
        test_mode=fetcher.test_mode
    )


def validate_page(payload: Any, page_number: Optional[int] = None) -> None:
    """
    Check that a response looks like a search page before it is trusted.
    
    Raises:
        TransportError: If the pagination summary or events list is unusable
    """
    label = f"page {page_number}" if page_number else "page"
    try:
        pagination = payload['pagination']
        int(pagination['page_count'])
        int(pagination['object_count'])
        events = payload.get('events', [])
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise TransportError(f"Malformed search {label}: {e!r}") from e
    
    if not isinstance(events, list):
        raise TransportError(f"Malformed search {label}: events is not a list")
