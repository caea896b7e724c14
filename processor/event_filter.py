"""Fuzzy filtering of assembled search results and CSV export."""
import csv
import io
import logging
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup
from rapidfuzz import fuzz

from processor.exceptions import ExportError
from processor.models import AggregatedResult, FilterMatch

logger = logging.getLogger(__name__)

# "rap" = too broad
DEFAULT_SEARCHES = ("r&b", "hip hop", "crawl")

SEARCH_KEYS = ("name.text", "description.text", "summary")

# 0.0 is a perfect match, 1.0 matches anything
DEFAULT_THRESHOLD = 0.3

EXPORT_COLUMNS = (
    "id",
    "name.text",
    "venueName",
    "address",
    "summary",
    "description.text",
    "start.local",
    "start.timezone",
    "url",
)


class EventFilter:
    """Selects events of interest from an AggregatedResult with approximate matching."""
    
    def __init__(
        self,
        aggregated: AggregatedResult,
        searches: Sequence[str] = DEFAULT_SEARCHES,
        keys: Sequence[str] = SEARCH_KEYS,
        threshold: float = DEFAULT_THRESHOLD
    ):
        """
        Flatten all pages into one event list.
        
        Args:
            aggregated: Assembled search result
            searches: Queries run by match_default, in order
            keys: Dotted paths of the record fields searched
            threshold: Highest score a record may have and still match
        """
        self.events = aggregated.events
        self.searches = tuple(searches)
        self.keys = tuple(keys)
        self.threshold = threshold
    
    def search(self, query: str) -> List[FilterMatch]:
        """
        Run one fuzzy query over every event.
        
        Args:
            query: Short text to look for
            
        Returns:
            Matches ordered best first (lowest score)
        """
        needle = query.lower()
        matches = []
        
        for record in self.events:
            score = self._score(needle, record)
            if score is not None and score <= self.threshold:
                matches.append(
                    FilterMatch(record=record, relevance_score=score, query=query)
                )
        
        matches.sort(key=lambda match: match.relevance_score)
        logger.debug(f"Query '{query}' matched {len(matches)} events")
        return matches
    
    def match_default(self) -> List[FilterMatch]:
        """
        Run every configured query in order and concatenate the matches.
        
        A record matching several queries appears once per query.
        """
        results = []
        for query in self.searches:
            results.extend(self.search(query))
        
        logger.info(
            f"Default searches matched {len(results)} events out of {len(self.events)}"
        )
        return results
    
    def _score(self, needle: str, record: Dict[str, Any]) -> Optional[float]:
        """
        Best score across the searched fields, None when no field can match.

        Fields shorter than the query are skipped: partial_ratio would align
        them inside the query and score any substring of it as perfect.
        """
        best = None
        for key in self.keys:
            text = self._field_text(record, key)
            if len(text) < len(needle):
                continue
            score = 1 - fuzz.partial_ratio(needle, text.lower()) / 100
            if best is None or score < best:
                best = score
        return best
    
    def _field_text(self, record: Dict[str, Any], key: str) -> str:
        try:
            value = resolve_path(record, key)
            if value is None and key == 'description.text':
                html = resolve_path(record, 'description.html')
                if html:
                    value = BeautifulSoup(html, 'html.parser').get_text(' ', strip=True)
        except ExportError:
            return ''
        
        return value if isinstance(value, str) else ''
    
    def to_delimited_table(
        self,
        matches: Sequence[FilterMatch],
        columns: Sequence[str] = EXPORT_COLUMNS
    ) -> str:
        return to_delimited_table(matches, columns)


def resolve_path(record: Any, path: str) -> Any:
    """
    Follow a dotted path through nested mappings.
    
    Args:
        record: Event record
        path: Dotted field path, e.g. name.text
        
    Returns:
        The value, or None if any key along the path is absent
        
    Raises:
        ExportError: If the path runs through something that is not a mapping
    """
    value = record
    for part in path.split('.'):
        if value is None:
            return None
        if not isinstance(value, Mapping):
            raise ExportError(f"Cannot resolve '{path}': {type(value).__name__} is not a mapping")
        value = value.get(part)
    return value


def to_delimited_table(
    matches: Sequence[FilterMatch],
    columns: Sequence[str] = EXPORT_COLUMNS
) -> str:
    """
    Project matched records onto columns and serialize them as CSV.
    
    Args:
        matches: Filter matches to export
        columns: Dotted field paths, also used as the header row
        
    Returns:
        CSV text, or an empty string if any record is malformed
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    
    try:
        writer.writerow(columns)
        for match in matches:
            row = []
            for column in columns:
                value = resolve_path(match.record, column)
                row.append('' if value is None else value)
            writer.writerow(row)
    except (ExportError, csv.Error) as e:
        logger.error(f"Failed to export matched events: {e}", exc_info=True)
        return ''
    
    return buffer.getvalue()
