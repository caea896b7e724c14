"""HTTP client for the Eventbrite v3 API."""
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict

import requests

from processor.exceptions import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestPolicy:
    """Timeout and retry policy for remote requests."""
    timeout: float = 30
    max_retries: int = 0
    backoff_seconds: float = 1


class EventbriteClient:
    """Thin client for the Eventbrite search and venue endpoints."""
    
    BASE_URL = "https://www.eventbriteapi.com/v3"
    
    def __init__(
        self,
        token: str,
        base_url: str = BASE_URL,
        policy: RequestPolicy = RequestPolicy()
    ):
        """
        Initialize the API client.
        
        Args:
            token: Eventbrite OAuth token
            base_url: API root (default: Eventbrite v3)
            policy: Request timeout and retry policy
        """
        self.base_url = base_url.rstrip('/')
        self.policy = policy
        self.session = requests.Session()
        self.session.headers['Authorization'] = f"Bearer {token}"
    
    def search_events(self, request_params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Fetch one page of event search results.
        
        See: https://www.eventbrite.com/platform/api#/reference/event-search/search-events
        
        Args:
            request_params: Query parameters, including page when not the first
            
        Returns:
            Decoded JSON page with pagination and events
        """
        return self._get('/events/search/', params=request_params)
    
    def get_venue(self, venue_id: str) -> Dict[str, Any]:
        """Fetch a venue by id."""
        return self._get(f'/venues/{venue_id}/')
    
    def _get(self, path: str, params: Dict[str, Any] = None) -> Dict[str, Any]:
        """
        Issue a GET request under the configured policy.
        
        Args:
            path: Endpoint path below the base URL
            params: Optional query parameters
            
        Returns:
            Decoded JSON body
            
        Raises:
            TransportError: If the request fails on every allowed attempt
        """
        url = f"{self.base_url}{path}"
        attempts = self.policy.max_retries + 1
        
        for attempt in range(attempts):
            try:
                logger.debug(f"GET {url} (attempt {attempt + 1}/{attempts})")
                response = self.session.get(
                    url,
                    params=params,
                    timeout=self.policy.timeout
                )
                response.raise_for_status()
                return response.json()
                
            except (requests.RequestException, ValueError) as e:
                if attempt < attempts - 1:
                    delay = self.policy.backoff_seconds * (2 ** attempt)
                    logger.warning(
                        f"Request to {path} failed (attempt {attempt + 1}/{attempts}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(f"Request to {path} failed: {e}")
                    raise TransportError(f"GET {path} failed: {e}") from e
