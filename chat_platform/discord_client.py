"""Discord REST client implementing the chat platform operations."""
import logging
from typing import Any, Optional, Set

import requests

from chat_platform.client import PlatformClient
from processor.errors import PlatformActionError, ValidationError
from processor.models import parse_timestamp

logger = logging.getLogger(__name__)

# Discord API enums
PRIVACY_GUILD_ONLY = 2
ENTITY_TYPE_EXTERNAL = 3
EVENT_STATUS_COMPLETED = 3
CHANNEL_TYPE_PUBLIC_THREAD = 11
ALLOWED_ARCHIVE_DURATIONS = (60, 1440, 4320, 10080)

MAX_NAME_LENGTH = 100
USERS_PAGE_SIZE = 100


class DiscordClient(PlatformClient):
    """Talks to the Discord HTTP API with a bot token."""

    BASE_URL = "https://discord.com/api/v10"
    EVENT_LINK = "https://discord.com/events/{guild_id}/{event_id}"

    def __init__(self, token: str, timeout: int = 30, session: Optional[requests.Session] = None):
        """
        Initialize the Discord client.

        Args:
            token: Bot token
            timeout: HTTP request timeout in seconds (default: 30)
            session: Optional preconfigured requests session
        """
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f"Bot {token}",
            'Content-Type': 'application/json',
            'User-Agent': 'DiscordBot (calendar-event-sync, 1.0)',
        })

    def create_scheduled_event(self, scope, title, start, end, description, location):
        payload = {
            'name': title[:MAX_NAME_LENGTH],
            'privacy_level': PRIVACY_GUILD_ONLY,
            'scheduled_start_time': start.isoformat(),
            'scheduled_end_time': end.isoformat(),
            'description': description or '',
            'entity_type': ENTITY_TYPE_EXTERNAL,
            # External events must carry a location
            'entity_metadata': {'location': (location or 'TBD')[:MAX_NAME_LENGTH]},
        }
        data = self._request(
            'POST', f"/guilds/{scope.server_id}/scheduled-events", json=payload
        )
        event_id = self._created_id(data, 'scheduled event')
        logger.info(f"Created scheduled event '{title}' with ID {event_id}")
        return event_id

    def create_thread(self, scope, name, auto_archive_minutes=1440):
        if auto_archive_minutes not in ALLOWED_ARCHIVE_DURATIONS:
            raise ValidationError(
                f"Thread auto archive must be one of {ALLOWED_ARCHIVE_DURATIONS} minutes"
            )
        payload = {
            'name': name[:MAX_NAME_LENGTH],
            'type': CHANNEL_TYPE_PUBLIC_THREAD,
            'auto_archive_duration': auto_archive_minutes,
        }
        data = self._request('POST', f"/channels/{scope.channel_id}/threads", json=payload)
        thread_id = self._created_id(data, 'thread')
        logger.info(f"Created thread '{name}' with ID {thread_id}")
        return thread_id

    def get_interested_participants(self, scope, platform_event_id) -> Set[str]:
        """Return every user marked interested, reading the list page by page."""
        path = f"/guilds/{scope.server_id}/scheduled-events/{platform_event_id}/users"
        users = set()
        after = None

        while True:
            params = {'limit': USERS_PAGE_SIZE}
            if after is not None:
                params['after'] = after
            page = self._request('GET', path, params=params) or []

            page_ids = [
                str(entry['user']['id'])
                for entry in page
                if isinstance(entry, dict) and entry.get('user') and entry['user'].get('id')
            ]
            users.update(page_ids)

            if len(page) < USERS_PAGE_SIZE or not page_ids or page_ids[-1] == after:
                break
            after = page_ids[-1]

        logger.info(f"Found {len(users)} interested users for event {platform_event_id}")
        return users

    def post_message(self, channel_id, text):
        self._request('POST', f"/channels/{channel_id}/messages", json={'content': text})

    def end_event(self, scope, platform_event_id):
        self._request(
            'PATCH',
            f"/guilds/{scope.server_id}/scheduled-events/{platform_event_id}",
            json={'status': EVENT_STATUS_COMPLETED}
        )
        logger.info(f"Ended scheduled event {platform_event_id}")

    def archive_and_lock_thread(self, platform_thread_id):
        self._request(
            'PATCH',
            f"/channels/{platform_thread_id}",
            json={'archived': True, 'locked': True}
        )
        logger.info(f"Archived and locked thread {platform_thread_id}")

    def find_event(self, scope, platform_event_id) -> bool:
        if not platform_event_id:
            return False
        data = self._request(
            'GET',
            f"/guilds/{scope.server_id}/scheduled-events/{platform_event_id}",
            allow_missing=True
        )
        return data is not None

    def find_thread(self, scope, platform_thread_id) -> bool:
        if not platform_thread_id:
            return False
        data = self._request('GET', f"/channels/{platform_thread_id}", allow_missing=True)
        return data is not None and str(data.get('guild_id')) == str(scope.server_id)

    def search_event(self, scope, title, start) -> Optional[str]:
        events = self._request('GET', f"/guilds/{scope.server_id}/scheduled-events") or []
        name = title[:MAX_NAME_LENGTH]
        for event in events:
            if event.get('name') != name:
                continue
            try:
                event_start = parse_timestamp(event.get('scheduled_start_time'))
            except ValidationError:
                continue
            if event_start.replace(microsecond=0) == start.replace(microsecond=0):
                return str(event['id'])
        return None

    def search_thread(self, scope, name) -> Optional[str]:
        data = self._request('GET', f"/guilds/{scope.server_id}/threads/active") or {}
        thread_name = name[:MAX_NAME_LENGTH]
        for thread in data.get('threads', []):
            if (thread.get('name') == thread_name
                    and str(thread.get('parent_id')) == str(scope.channel_id)):
                return str(thread['id'])
        return None

    def event_link(self, scope, platform_event_id):
        return self.EVENT_LINK.format(guild_id=scope.server_id, event_id=platform_event_id)

    def _created_id(self, data: Any, kind: str) -> str:
        """
        Read the id of a newly created object from an API response.

        Raises:
            PlatformActionError: If the response carries no id
        """
        object_id = data.get('id') if isinstance(data, dict) else None
        if object_id is None or str(object_id).strip() == '':
            raise PlatformActionError(f"Discord returned no id for the created {kind}")
        return str(object_id)

    def _request(self, method: str, path: str, allow_missing: bool = False, **kwargs) -> Any:
        """
        Perform an API call.

        Args:
            method: HTTP method
            path: API path below BASE_URL
            allow_missing: Return None instead of raising on 404

        Returns:
            Decoded JSON body, or None for empty responses

        Raises:
            PlatformActionError: If the request fails
        """
        url = f"{self.BASE_URL}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise PlatformActionError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404 and allow_missing:
            return None

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise PlatformActionError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}"
            ) from e

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise PlatformActionError(f"{method} {path} returned invalid JSON") from e
