"""Venue lookups for matched events."""
import json
import logging
from typing import Any, Dict, List, Optional

from processor.cache_keys import build_venue_key
from processor.models import FilterMatch
from scraper.eventbrite_client import EventbriteClient
from storage.disk_cache import DiskCache

logger = logging.getLogger(__name__)


class VenueResolver:
    """Resolves venue ids to display names and addresses, through the cache."""
    
    def __init__(self, client: EventbriteClient, cache: DiskCache):
        self.client = client
        self.cache = cache
    
    def resolve(self, venue_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """
        Look up a venue, fetching it only when it is not cached.
        
        Args:
            venue_id: Eventbrite venue id, may be None for online events
            
        Returns:
            Venue JSON or None when the event has no venue
        """
        if not venue_id:
            return None
        
        key = build_venue_key(venue_id)
        entry = self.cache.get(key)
        if entry.is_cached:
            return json.loads(entry.value)
        
        logger.info(f"Requesting venue {venue_id} from Eventbrite")
        venue = self.client.get_venue(venue_id)
        self.cache.set(key, json.dumps(venue))
        return venue
    
    def enrich(self, matches: List[FilterMatch]) -> List[FilterMatch]:
        """
        Add venueName and address to each matched record that has a venue.
        
        Each enriched match gets its own copy of the record, so the assembled
        search result is never modified. The same list is returned.
        """
        enriched = 0
        for match in matches:
            venue = self.resolve(match.record.get('venue_id'))
            if venue is None:
                continue
            
            record = dict(match.record)
            record['venueName'] = venue.get('name')
            address = venue.get('address') or {}
            record['address'] = address.get('localized_address_display')
            match.record = record
            enriched += 1
        
        logger.info(f"Enriched {enriched} of {len(matches)} matched events with venues")
        return matches
