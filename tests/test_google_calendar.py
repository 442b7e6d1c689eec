"""Unit tests for GoogleCalendarClient."""
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import responses
from requests.exceptions import RequestException, Timeout

from calendar_source.google_calendar import GoogleCalendarClient

EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/racing-calendar/events"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def no_backoff_sleep():
    with patch('calendar_source.google_calendar.time.sleep') as sleep:
        yield sleep


class TestGoogleCalendarClient:
    """Test cases for GoogleCalendarClient class."""

    @responses.activate
    def test_fetch_upcoming_success(self):
        """Test successful fetching and parsing."""
        responses.add(
            responses.GET,
            EVENTS_URL,
            json={
                'items': [
                    {
                        'id': 'g1',
                        'summary': 'Bahrain Grand Prix',
                        'description': 'Season opener',
                        'location': 'Sakhir',
                        'start': {'dateTime': '2026-03-08T15:00:00Z'},
                    },
                    {
                        'id': 'g2',
                        'summary': 'Test day',
                        'start': {'date': '2026-03-10'},
                    },
                ]
            },
            status=200
        )

        client = GoogleCalendarClient(api_key='secret', timeout=30)
        items = client.fetch_upcoming('racing-calendar', now=NOW)

        assert len(items) == 2
        assert items[0].id == 'g1'
        assert items[0].title == 'Bahrain Grand Prix'
        assert items[0].description == 'Season opener'
        assert items[0].location == 'Sakhir'
        assert items[0].start == '2026-03-08T15:00:00Z'
        assert items[1].start == '2026-03-10'
        assert items[1].location == ''

        request = responses.calls[0].request
        assert 'key=secret' in request.url
        assert 'singleEvents=true' in request.url
        assert 'orderBy=startTime' in request.url

    @responses.activate
    def test_fetch_upcoming_follows_pages(self):
        responses.add(
            responses.GET,
            EVENTS_URL,
            json={
                'items': [{'id': 'p1', 'summary': 'One', 'start': {'date': '2026-03-10'}}],
                'nextPageToken': 'page-2'
            }
        )
        responses.add(
            responses.GET,
            EVENTS_URL,
            json={'items': [{'id': 'p2', 'summary': 'Two', 'start': {'date': '2026-03-11'}}]}
        )

        client = GoogleCalendarClient(api_key='secret')
        items = client.fetch_upcoming('racing-calendar', now=NOW)

        assert [item.id for item in items] == ['p1', 'p2']
        assert 'pageToken=page-2' in responses.calls[1].request.url

    @responses.activate
    def test_skips_cancelled_and_undated_entries(self):
        responses.add(
            responses.GET,
            EVENTS_URL,
            json={
                'items': [
                    {'id': 'c1', 'status': 'cancelled', 'start': {'date': '2026-03-10'}},
                    {'id': 'c2', 'summary': 'No start'},
                    {'id': 'c3', 'summary': 'Kept', 'start': {'date': '2026-03-12'}},
                ]
            }
        )

        client = GoogleCalendarClient(api_key='secret')
        items = client.fetch_upcoming('racing-calendar', now=NOW)

        assert [item.id for item in items] == ['c3']

    @responses.activate
    def test_fetch_with_retry_success(self, no_backoff_sleep):
        """Test retry logic succeeds after initial failures."""
        responses.add(responses.GET, EVENTS_URL, body="Server Error", status=500)
        responses.add(responses.GET, EVENTS_URL, body="Server Error", status=503)
        responses.add(
            responses.GET,
            EVENTS_URL,
            json={'items': [{'id': 'r1', 'summary': 'Retry', 'start': {'date': '2026-03-10'}}]}
        )

        client = GoogleCalendarClient(api_key='secret')
        items = client.fetch_upcoming('racing-calendar', now=NOW)

        assert len(items) == 1
        assert len(responses.calls) == 3
        assert [c.args[0] for c in no_backoff_sleep.call_args_list] == [1, 2]

    @responses.activate
    def test_fetch_all_retries_fail(self):
        """Test that exception is raised when all retries fail."""
        for _ in range(3):
            responses.add(responses.GET, EVENTS_URL, body="Server Error", status=500)

        client = GoogleCalendarClient(api_key='secret')

        with pytest.raises(RequestException):
            client.fetch_upcoming('racing-calendar', now=NOW)

        assert len(responses.calls) == 3

    @responses.activate
    def test_fetch_timeout(self):
        """Test timeout handling."""
        for _ in range(3):
            responses.add(responses.GET, EVENTS_URL, body=Timeout("Request timed out"))

        client = GoogleCalendarClient(api_key='secret')

        with pytest.raises(Timeout):
            client.fetch_upcoming('racing-calendar', now=NOW)

        assert len(responses.calls) == 3
