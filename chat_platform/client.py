"""Chat platform operations used by the lifecycle scheduler."""
import abc
from datetime import datetime
from typing import Optional, Set

from processor.models import Scope


class PlatformClient(abc.ABC):
    """
    Actions on the chat platform.

    Implementations raise PlatformActionError when a call fails; lookups
    return False / None for things that do not exist.
    """

    @abc.abstractmethod
    def create_scheduled_event(
        self,
        scope: Scope,
        title: str,
        start: datetime,
        end: datetime,
        description: str,
        location: str
    ) -> str:
        """Create a scheduled event and return its platform id."""

    @abc.abstractmethod
    def create_thread(self, scope: Scope, name: str, auto_archive_minutes: int = 1440) -> str:
        """Open a public thread in the scope's channel and return its id."""

    @abc.abstractmethod
    def get_interested_participants(self, scope: Scope, platform_event_id: str) -> Set[str]:
        """Return the ids of users who marked interest in the event."""

    @abc.abstractmethod
    def post_message(self, channel_id: str, text: str) -> None:
        """Post a message into a channel or thread."""

    @abc.abstractmethod
    def end_event(self, scope: Scope, platform_event_id: str) -> None:
        """Mark the scheduled event as completed."""

    @abc.abstractmethod
    def archive_and_lock_thread(self, platform_thread_id: str) -> None:
        """Archive and lock a thread."""

    @abc.abstractmethod
    def find_event(self, scope: Scope, platform_event_id: str) -> bool:
        """Return True if the scheduled event exists."""

    @abc.abstractmethod
    def find_thread(self, scope: Scope, platform_thread_id: str) -> bool:
        """Return True if the thread exists."""

    @abc.abstractmethod
    def search_event(self, scope: Scope, title: str, start: datetime) -> Optional[str]:
        """Return the id of an existing scheduled event with this title and start."""

    @abc.abstractmethod
    def search_thread(self, scope: Scope, name: str) -> Optional[str]:
        """Return the id of an active thread with this name in the scope's channel."""

    def event_link(self, scope: Scope, platform_event_id: str) -> Optional[str]:
        """Public link to a scheduled event, if the platform has one."""
        return None
