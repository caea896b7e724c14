"""Deterministic cache keys derived from search parameters."""
from processor.models import SearchParameters

FIELD_SEPARATOR = ','
PAGE_SUFFIX = '_page_number:'
FULL_OUTPUT_SUFFIX = '_full_output'


def build_prefix(params: SearchParameters) -> str:
    """
    Serialize every search field as field:value pairs in a fixed order.
    
    The page number is never part of the prefix; page keys add it as a suffix.
    
    Args:
        params: Search parameters
        
    Returns:
        Cache key prefix shared by all entries of one logical search
    """
    request_params = params.with_page(None).to_request_params()
    return FIELD_SEPARATOR.join(
        f"{name}:{value}" for name, value in request_params.items()
    )


def build_page_key(prefix: str, page: int) -> str:
    """Key for one page; pages are 1 indexed like the remote pagination."""
    if page < 1:
        raise ValueError(f"Page numbers start at 1, got {page}")
    return f"{prefix}{PAGE_SUFFIX}{page}"


def build_full_output_key(prefix: str) -> str:
    return f"{prefix}{FULL_OUTPUT_SUFFIX}"


def build_venue_key(venue_id: str) -> str:
    return f"venue_id:{venue_id}"
