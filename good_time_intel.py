"""Good Time Intel data generator: cached Eventbrite search, fuzzy filter, export."""
import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Annotated

import typer

from processor.event_filter import EventFilter
from processor.exceptions import GoodTimeIntelError
from processor.models import SearchParameters
from processor.paginated_fetcher import CachedEventbriteFetcher
from processor.venue_resolver import VenueResolver
from scraper.eventbrite_client import EventbriteClient, RequestPolicy
from storage.disk_cache import DiskCache

REPORT_NAME_PREFIX = 'gti_output'

app = typer.Typer(
    name="good-time-intel",
    help="Good Time Intel Tool Data Generator",
    add_completion=False,
)


# Attributes every LogRecord has; anything else came in through extra=
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord('', logging.INFO, '', 0, '', None, None).__dict__
) | {'message', 'asctime'}


class JsonFormatter(logging.Formatter):
    """One JSON document per log line, including fields passed via extra=."""
    
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }
        
        for name, value in record.__dict__.items():
            if name not in _RECORD_ATTRIBUTES and name not in log_data:
                log_data[name] = value
        
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
        
        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """Send all logging to stderr as JSON at the given level name."""
    root_logger = logging.getLogger()
    
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)
    
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass(frozen=True)
class Settings:
    """Run configuration read from environment variables."""
    eventbrite_token: str = ''
    center_point_address: str = 'San Francisco,CA'
    mile_radius_within: int = 25
    days_ahead: int = 15
    log_level: str = 'INFO'
    cache_location: str = 'tmp/'
    output_dir: str = 'tmp'
    timeout_seconds: float = 30
    max_retries: int = 0
    
    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            eventbrite_token=os.environ.get('EVENTBRITE_OAUTH_TOKEN', ''),
            center_point_address=os.environ.get('CENTER_POINT_ADDRESS', 'San Francisco,CA'),
            mile_radius_within=int(os.environ.get('MILE_RADIUS_WITHIN', '25')),
            days_ahead=int(os.environ.get('DAYS_AHEAD', '15')),
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            cache_location=os.environ.get('CACHE_LOCATION', 'tmp/'),
            output_dir=os.environ.get('OUTPUT_DIR', 'tmp'),
            timeout_seconds=float(os.environ.get('TIMEOUT_SECONDS', '30')),
            max_retries=int(os.environ.get('MAX_RETRIES', '0'))
        )


def report_paths(output_dir: str, days_ahead: int, today: date) -> tuple[Path, Path]:
    """JSON and CSV paths of the report for a run starting today."""
    stem = f"{REPORT_NAME_PREFIX}_{days_ahead}_days_from_{today.isoformat()}"
    directory = Path(output_dir)
    return directory / f"{stem}.json", directory / f"{stem}.csv"


@app.command()
def main(
    clear_cache: Annotated[
        bool,
        typer.Option(
            "--clear-cache",
            "-c",
            help="Clear the disk cache to get fresh event results",
        ),
    ] = False,
    test: Annotated[
        bool,
        typer.Option(
            "--test",
            "-t",
            help="Only process a few pages",
        ),
    ] = False,
    query: Annotated[
        str,
        typer.Option(
            "--query",
            "-q",
            help="Free text search query",
        ),
    ] = "",
) -> None:
    """Fetch, filter and export upcoming events."""
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)
    
    start_time = time.time()
    today = datetime.now().date()
    json_path, csv_path = report_paths(settings.output_dir, settings.days_ahead, today)
    
    if not settings.eventbrite_token:
        logger.warning("EVENTBRITE_OAUTH_TOKEN is not set, only cached pages can be served")
    
    try:
        cache = DiskCache(location=settings.cache_location)
        client = EventbriteClient(
            token=settings.eventbrite_token,
            policy=RequestPolicy(
                timeout=settings.timeout_seconds,
                max_retries=settings.max_retries
            )
        )
        fetcher = CachedEventbriteFetcher(client=client, cache=cache)
        
        if clear_cache:
            logger.info("Clearing cache before processing...")
            cache.clear()
            logger.info("Cache clear!")
        
        if test:
            logger.info(f"Running in test mode, only processing {fetcher.test_page_limit} pages")
        
        params = SearchParameters.for_days_ahead(
            query=query,
            geo_address=settings.center_point_address,
            radius_miles=settings.mile_radius_within,
            days_ahead=settings.days_ahead,
            today=today
        )
        
        logger.info("Beginning processing...")
        aggregated = fetcher.fetch_all(params, test_mode=test)
        
        event_filter = EventFilter(aggregated)
        matches = event_filter.match_default()
        VenueResolver(client=client, cache=cache).enrich(matches)
        table = event_filter.to_delimited_table(matches)
        
        json_path.parent.mkdir(parents=True, exist_ok=True)
        json_path.write_bytes(aggregated.to_bytes())
        csv_path.write_text(table, encoding='utf-8')
        
    except (GoodTimeIntelError, OSError) as e:
        logger.error(
            f"Run failed: {e}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        raise typer.Exit(code=1)
    
    logger.info(f"{json_path} was saved!")
    logger.info(f"{csv_path} was saved with {len(matches)} matched events")
    logger.info(
        f"Processing metrics: {json.dumps(fetcher.generate_metrics().to_dict())}",
        extra={'duration_seconds': round(time.time() - start_time, 2)}
    )


if __name__ == "__main__":
    app()
