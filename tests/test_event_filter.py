"""Unit tests for EventFilter and CSV export."""
import csv
import io

import pytest

from processor.event_filter import (
    EXPORT_COLUMNS,
    EventFilter,
    resolve_path,
    to_delimited_table,
)
from processor.exceptions import ExportError
from processor.models import AggregatedResult, FilterMatch, PageResult


def make_event(event_id, title, summary='', description='', venue_id=None):
    """Build an event record shaped like the Eventbrite search response."""
    event = {
        'id': event_id,
        'name': {'text': title},
        'summary': summary,
        'description': {'text': description},
        'start': {
            'local': '2024-01-20T11:00:00',
            'timezone': 'America/Los_Angeles'
        },
        'url': f"https://www.eventbrite.com/e/{event_id}"
    }
    if venue_id:
        event['venue_id'] = venue_id
    return event


def aggregate(*pages):
    """Wrap lists of events into an AggregatedResult, one list per page."""
    return AggregatedResult(pages=[
        PageResult({
            'pagination': {'page_count': len(pages), 'object_count': sum(len(p) for p in pages)},
            'events': list(events)
        })
        for events in pages
    ])


@pytest.fixture
def brunch_event():
    return make_event(
        '101',
        'Hip Hop Brunch',
        summary='Beats and bottomless mimosas',
        description='Join us for brunch with a live DJ.'
    )


@pytest.fixture
def jazz_event():
    return make_event(
        '202',
        'Jazz Night at the Lake',
        summary='Smooth tunes by the water',
        description='An evening of quiet jazz standards.'
    )


class TestEventFilter:
    """Test cases for EventFilter class."""
    
    def test_flattens_pages_in_order(self, brunch_event, jazz_event):
        """Test that events from all pages are kept in page order."""
        event_filter = EventFilter(aggregate([jazz_event], [brunch_event]))
        
        assert [event['id'] for event in event_filter.events] == ['202', '101']
    
    def test_search_exact_title_match(self, brunch_event, jazz_event):
        """Test that a query found in the title matches with a perfect score."""
        event_filter = EventFilter(aggregate([brunch_event, jazz_event]))
        
        matches = event_filter.search('hip hop')
        
        assert len(matches) == 1
        assert matches[0].record['id'] == '101'
        assert matches[0].relevance_score == 0
        assert matches[0].query == 'hip hop'
    
    def test_search_orders_best_first(self, brunch_event):
        """Test that closer matches rank ahead of approximate ones."""
        approximate = make_event('303', 'Hip Hob Night')
        event_filter = EventFilter(aggregate([approximate, brunch_event]))
        
        matches = event_filter.search('hip hop')
        
        assert [match.record['id'] for match in matches] == ['101', '303']
        assert 0 < matches[1].relevance_score <= 0.3
    
    def test_search_uses_summary_and_description(self):
        """Test that summary and description fields are searched too."""
        by_summary = make_event('1', 'Friday Night', summary='A pub crawl downtown')
        by_description = make_event('2', 'Saturday', description='Classic r&b all night')
        event_filter = EventFilter(aggregate([by_summary, by_description]))
        
        assert [m.record['id'] for m in event_filter.search('crawl')] == ['1']
        assert [m.record['id'] for m in event_filter.search('r&b')] == ['2']
    
    def test_search_falls_back_to_description_html(self):
        """Test that HTML descriptions are searched when no text version exists."""
        event = make_event('1', 'Saturday Special')
        event['description'] = {'html': '<p>Late night <b>crawl</b> through the Mission</p>'}
        event_filter = EventFilter(aggregate([event]))
        
        assert len(event_filter.search('crawl')) == 1
    
    def test_search_skips_records_without_text(self):
        """Test that records with no searchable text never match."""
        event_filter = EventFilter(aggregate([{'id': '1'}, {'id': '2', 'name': 'not a mapping'}]))
        
        assert event_filter.search('hip hop') == []
    
    def test_match_default_end_to_end(self, brunch_event, jazz_event):
        """Test the default searches against a two event result."""
        event_filter = EventFilter(aggregate([brunch_event, jazz_event]))
        
        matches = event_filter.match_default()
        
        assert len(matches) == 1
        assert matches[0].record['name']['text'] == 'Hip Hop Brunch'
        assert matches[0].query == 'hip hop'
    
    def test_match_default_does_not_deduplicate(self, jazz_event):
        """Test that a record matching two queries is returned once per query."""
        crawl = make_event('404', 'Hip Hop Bar Crawl', summary='Three venues, one night')
        event_filter = EventFilter(aggregate([jazz_event, crawl]))
        
        matches = event_filter.match_default()
        
        assert [match.record['id'] for match in matches] == ['404', '404']
        assert [match.query for match in matches] == ['hip hop', 'crawl']
    
    def test_custom_searches(self, brunch_event, jazz_event):
        """Test that the query list is configurable."""
        event_filter = EventFilter(aggregate([brunch_event, jazz_event]), searches=['jazz'])
        
        assert [m.record['id'] for m in event_filter.match_default()] == ['202']


class TestResolvePath:
    """Test cases for resolve_path."""
    
    def test_nested_value(self, brunch_event):
        assert resolve_path(brunch_event, 'start.timezone') == 'America/Los_Angeles'
    
    def test_missing_value(self, brunch_event):
        assert resolve_path(brunch_event, 'venueName') is None
        assert resolve_path(brunch_event, 'logo.url') is None
    
    def test_non_mapping_raises(self):
        with pytest.raises(ExportError):
            resolve_path({'name': 'plain'}, 'name.text')


class TestToDelimitedTable:
    """Test cases for CSV export."""
    
    def test_single_match_row(self, brunch_event, jazz_event):
        """Test that one match exports as a header plus one projected row."""
        event_filter = EventFilter(aggregate([brunch_event, jazz_event]))
        
        table = event_filter.to_delimited_table(event_filter.match_default())
        rows = list(csv.reader(io.StringIO(table)))
        
        assert rows[0] == list(EXPORT_COLUMNS)
        assert len(rows) == 2
        row = dict(zip(rows[0], rows[1]))
        assert row['id'] == '101'
        assert row['name.text'] == 'Hip Hop Brunch'
        assert row['venueName'] == ''
        assert row['start.local'] == '2024-01-20T11:00:00'
        assert row['start.timezone'] == 'America/Los_Angeles'
        assert row['url'] == 'https://www.eventbrite.com/e/101'
    
    def test_custom_columns(self, brunch_event):
        """Test that the column list is configurable."""
        match = FilterMatch(record=brunch_event, relevance_score=0.0, query='hip hop')
        
        table = to_delimited_table([match], columns=['id', 'summary'])
        
        assert table == 'id,summary\n101,Beats and bottomless mimosas\n'
    
    def test_no_matches_header_only(self):
        assert to_delimited_table([], columns=['id']) == 'id\n'
    
    def test_malformed_record_yields_empty_table(self, brunch_event):
        """Test that a malformed record is logged and produces an empty export."""
        good = FilterMatch(record=brunch_event, relevance_score=0.0, query='hip hop')
        bad = FilterMatch(record={'id': '9', 'name': 'plain'}, relevance_score=0.1, query='hip hop')
        
        assert to_delimited_table([good, bad]) == ''


class TestShortFields:
    """Test cases for fields shorter than the query."""
    
    def test_field_inside_query_does_not_match(self):
        """Test that a field which is only a piece of the query never matches."""
        event = {'id': '1', 'name': {'text': 'Hop'}, 'summary': 'a'}
        event_filter = EventFilter(aggregate([event]))
        
        assert event_filter.match_default() == []
    
    def test_short_fields_do_not_match(self):
        """Test tiny titles and summaries against every default search."""
        events = [
            make_event('1', 'Hip', summary='r&'),
            make_event('2', 'Crawl'[:4], summary='b'),
            make_event('3', 'hop', description='R'),
            make_event('4', '', summary='', description='')
        ]
        event_filter = EventFilter(aggregate(events))
        
        assert event_filter.match_default() == []
    
    def test_field_same_length_as_query_matches(self):
        """Test that a field exactly as long as the query is still scored."""
        event_filter = EventFilter(aggregate([make_event('1', 'CRAWL')]))
        
        matches = event_filter.search('crawl')
        
        assert [match.record['id'] for match in matches] == ['1']
        assert matches[0].relevance_score == 0
    
    def test_long_field_still_matches_when_other_field_short(self):
        """Test that a short title does not hide a match in the description."""
        event = make_event('1', 'Go', description='A late night bar crawl')
        event_filter = EventFilter(aggregate([event]))
        
        assert [match.query for match in event_filter.match_default()] == ['crawl']


class TestThreshold:
    """Test cases around the similarity threshold."""
    
    def test_distant_text_rejected(self):
        """Test that unrelated text of the right length is rejected."""
        event_filter = EventFilter(aggregate([make_event('1', 'Pottery workshop for beginners')]))
        
        assert event_filter.search('hip hop') == []
    
    def test_one_typo_within_threshold(self):
        """Test that a single substitution in a long query still matches."""
        event_filter = EventFilter(aggregate([make_event('1', 'Saturday Hip Hip Party')]))
        
        matches = event_filter.search('hip hop')
        
        assert len(matches) == 1
        assert 0 < matches[0].relevance_score <= 0.3
    
    def test_zero_threshold_exact_only(self):
        """Test that a zero threshold keeps perfect matches only."""
        events = [make_event('1', 'Hip Hob Night'), make_event('2', 'Hip Hop Night')]
        event_filter = EventFilter(aggregate(events), threshold=0.0)
        
        assert [match.record['id'] for match in event_filter.search('hip hop')] == ['2']
