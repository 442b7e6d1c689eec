"""Google Calendar client returning upcoming calendar items."""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from processor.models import CalendarItem

logger = logging.getLogger(__name__)


class GoogleCalendarClient:
    """Reads upcoming events of a public or shared Google Calendar."""

    BASE_URL = "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events"
    PAGE_SIZE = 250

    def __init__(self, api_key: str, timeout: int = 30, max_retries: int = 3):
        """
        Initialize the calendar client.

        Args:
            api_key: Google API key with Calendar API access
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per page request (default: 3)
        """
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries

    def fetch_upcoming(self, calendar_id: str, now: Optional[datetime] = None) -> List[CalendarItem]:
        """
        Fetch events that have not started yet.

        Args:
            calendar_id: Google calendar id
            now: Lower bound for event start (default: current time)

        Returns:
            List of CalendarItem objects ordered by start time
        """
        time_min = (now or datetime.now(timezone.utc)).isoformat()
        logger.info(f"Fetching upcoming events from calendar {calendar_id}")

        params = {
            'key': self.api_key,
            'timeMin': time_min,
            'singleEvents': 'true',
            'showDeleted': 'false',
            'orderBy': 'startTime',
            'maxResults': self.PAGE_SIZE,
        }
        url = self.BASE_URL.format(calendar_id=quote(calendar_id, safe=''))

        items = []
        while True:
            data = self._fetch_page(url, params)
            for entry in data.get('items', []):
                item = self._parse_item(entry)
                if item:
                    items.append(item)

            page_token = data.get('nextPageToken')
            if not page_token:
                break
            params = dict(params, pageToken=page_token)

        if not items:
            logger.info("No events found")
        logger.info(f"Successfully fetched {len(items)} events")
        return items

    def _fetch_page(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Fetch one result page with retry logic.

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        base_delay = 1  # seconds

        for attempt in range(self.max_retries):
            try:
                logger.info(f"Fetching calendar page (attempt {attempt + 1}/{self.max_retries})")
                response = requests.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()
                return response.json()

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    # Calculate exponential backoff delay
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise

    def _parse_item(self, entry: Dict[str, Any]) -> Optional[CalendarItem]:
        """
        Convert one API event resource.

        Returns:
            CalendarItem or None for cancelled or undated entries
        """
        if entry.get('status') == 'cancelled':
            return None

        start = entry.get('start') or {}
        start_value = start.get('dateTime') or start.get('date')
        if not entry.get('id') or not start_value:
            logger.warning(f"Skipping calendar entry without id or start: {entry.get('id')}")
            return None

        return CalendarItem(
            id=entry['id'],
            title=entry.get('summary', ''),
            description=entry.get('description', ''),
            start=start_value,
            location=entry.get('location', ''),
        )
