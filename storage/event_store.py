"""File-backed event store: one JSON document per event record."""
import abc
import json
import logging
import os
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from processor.errors import NotFoundError, PersistenceError, ValidationError
from processor.models import EventRecord, FieldDelta, Scope

logger = logging.getLogger(__name__)


def safe_file_name(name: str) -> str:
    """
    Percent-encode a name for use as a single path component.

    The encoding is reversible, so distinct ids never share a file.

    Raises:
        ValidationError: If the name is empty
    """
    encoded = quote(str(name), safe='@-_.')
    if not encoded:
        raise ValidationError("File name must not be empty")
    if encoded in ('.', '..'):
        encoded = encoded.replace('.', '%2E')
    return encoded


class EventStore(abc.ABC):
    """Durable mirror of the event registry, keyed by (scope, event id)."""

    @abc.abstractmethod
    def put(self, record: EventRecord) -> None:
        """Write the full record, replacing any previous version."""

    @abc.abstractmethod
    def get(self, event_id: str, scope: Scope) -> Optional[EventRecord]:
        """Return the stored record or None."""

    @abc.abstractmethod
    def load_all(self) -> List[EventRecord]:
        """Return every readable record; unreadable ones are skipped."""

    @abc.abstractmethod
    def delete(self, event_id: str, scope: Scope) -> None:
        """Remove the record; deleting an absent record is not an error."""

    def update_fields(self, event_id: str, scope: Scope, delta: FieldDelta) -> EventRecord:
        """
        Read-modify-write a subset of fields.

        Raises:
            NotFoundError: If no record exists at that key
            PersistenceError: If reading or writing fails
        """
        record = self.get(event_id, scope)
        if record is None:
            raise NotFoundError(
                f"No stored event '{event_id}' in scope {scope.server_id}/{scope.channel_id}"
            )
        updated = delta.apply_to(record)
        self.put(updated)
        return updated


class FileEventStore(EventStore):
    """
    Stores each record at <base>/<server id>/<channel id>/<event id>.json.

    Writes go to a temporary file that is then renamed over the target, so a
    crash mid-write leaves either the old or the new document, never a partial one.
    """

    def __init__(self, base_directory: str = 'events'):
        """
        Initialize the store and make sure the base directory exists.

        Args:
            base_directory: Root directory for event documents
        """
        self.base_directory = Path(base_directory)
        try:
            self.base_directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(
                f"Cannot create event directory {self.base_directory}: {e}"
            ) from e
        logger.info(f"Initialized FileEventStore at: {self.base_directory}")

    def path_for(self, event_id: str, scope: Scope) -> Path:
        return (
            self.base_directory
            / safe_file_name(scope.server_id)
            / safe_file_name(scope.channel_id)
            / f"{safe_file_name(event_id)}.json"
        )

    def put(self, record: EventRecord) -> None:
        path = self.path_for(record.id, record.scope)
        tmp_path = path.with_suffix('.json.tmp')

        try:
            content = json.dumps(record.to_dict(), indent=2, sort_keys=True)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            self._discard(tmp_path)
            raise PersistenceError(
                f"Failed to save event '{record.id}' to {path}: {e}"
            ) from e

        logger.debug(f"Saved event '{record.title}' to {path}")

    def get(self, event_id: str, scope: Scope) -> Optional[EventRecord]:
        path = self.path_for(event_id, scope)
        if not path.exists():
            return None
        return self._read(path)

    def load_all(self) -> List[EventRecord]:
        records = []

        if not self.base_directory.exists():
            logger.warning(f"Event directory not found: {self.base_directory}")
            return records

        for path in sorted(self.base_directory.glob('*/*/*.json')):
            try:
                records.append(self._read(path))
            except PersistenceError as e:
                logger.warning(
                    f"Skipping unreadable event file {path}: {e}",
                    extra={'path': str(path)}
                )
                continue

        logger.info(f"Loaded {len(records)} events from {self.base_directory}")
        return records

    def delete(self, event_id: str, scope: Scope) -> None:
        path = self.path_for(event_id, scope)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise PersistenceError(f"Failed to delete {path}: {e}") from e
        logger.debug(f"Deleted event file {path}")

    def _read(self, path: Path) -> EventRecord:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return EventRecord.from_dict(data)
        except (OSError, ValueError, ValidationError) as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e

    def _discard(self, tmp_path: Path) -> None:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning(f"Could not remove temporary file {tmp_path}: {e}")
