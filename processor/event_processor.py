"""Event processor for validating and normalizing calendar items."""
import logging
from typing import List, Optional

from bs4 import BeautifulSoup

from processor.errors import ValidationError
from processor.models import CalendarItem, EventRecord, Scope, parse_timestamp, utc_now

logger = logging.getLogger(__name__)


class EventProcessor:
    """Turns raw calendar items into event records for one platform scope."""

    # Chat platform limits for scheduled event fields
    MAX_TITLE_LENGTH = 100
    MAX_DESCRIPTION_LENGTH = 1000
    MAX_LOCATION_LENGTH = 100

    def process_items(self, items: List[CalendarItem], scope: Scope) -> List[EventRecord]:
        """
        Process and validate raw calendar items.

        Args:
            items: Raw items from the calendar source
            scope: Platform destination the records belong to

        Returns:
            List of validated EventRecord objects
        """
        records = []

        for item in items:
            try:
                records.append(self.process_item(item, scope))
            except ValidationError as e:
                logger.warning(
                    f"Skipping calendar item '{getattr(item, 'title', '')}': {e}"
                )
                continue

        logger.info(
            f"Processed {len(records)} valid events out of "
            f"{len(items)} calendar items"
        )
        return records

    def process_item(self, item: CalendarItem, scope: Scope) -> EventRecord:
        """
        Process a single calendar item.

        Raises:
            ValidationError: If the id or start time is missing or malformed
        """
        if not item.id or not str(item.id).strip():
            raise ValidationError("Calendar item missing required field: id")

        if not item.start or not str(item.start).strip():
            raise ValidationError(
                f"Calendar item '{item.id}' missing required field: start"
            )

        title = (item.title or '').strip() or 'Untitled event'

        record = EventRecord(
            id=str(item.id).strip(),
            title=title[:self.MAX_TITLE_LENGTH],
            description=self._clean_description(item.description),
            location=(item.location or '').strip()[:self.MAX_LOCATION_LENGTH],
            start_time=parse_timestamp(item.start),
            server_id=scope.server_id,
            channel_id=scope.channel_id,
            last_updated=utc_now(),
        )
        record.validate()
        return record

    def _clean_description(self, description: Optional[str]) -> str:
        """
        Strip HTML markup from a calendar description.

        Calendar descriptions may contain links and line breaks as HTML;
        the chat platform only takes plain text.
        """
        if not description:
            return ''

        soup = BeautifulSoup(description, 'html.parser')
        for br in soup.find_all('br'):
            br.replace_with('\n')

        text = soup.get_text()
        lines = [line.strip() for line in text.splitlines()]
        cleaned = '\n'.join(line for line in lines if line)
        return cleaned[:self.MAX_DESCRIPTION_LENGTH]
