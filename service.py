"""Long-running event sync service with calendar refresh and lifecycle timers."""
import logging
import threading
from typing import Callable, List, Optional

import requests

from calendar_source.google_calendar import GoogleCalendarClient
from chat_platform.client import PlatformClient
from chat_platform.discord_client import DiscordClient
from lifecycle.reconciler import Reconciler
from lifecycle.registry import EventRegistry
from lifecycle.scheduler import LifecycleScheduler
from processor.errors import SyncError
from processor.event_processor import EventProcessor
from processor.models import MergeResult, TickResult
from settings import Settings
from storage.event_store import EventStore, FileEventStore

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> EventStore:
    """Create the event store selected by STORE_BACKEND."""
    if settings.store_backend == 'dynamodb':
        from storage.dynamodb_store import DynamoDBEventStore
        return DynamoDBEventStore(settings.table_name, region_name=settings.aws_region)
    return FileEventStore(settings.events_dir)


class SyncService:
    """Wires the registry, scheduler and reconciler to their collaborators."""

    def __init__(
        self,
        settings: Settings,
        registry: EventRegistry,
        scheduler: LifecycleScheduler,
        reconciler: Reconciler
    ):
        self.settings = settings
        self.registry = registry
        self.scheduler = scheduler
        self.reconciler = reconciler
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        platform: Optional[PlatformClient] = None,
        calendar_source=None,
        store: Optional[EventStore] = None
    ) -> 'SyncService':
        registry = EventRegistry(store or build_store(settings))
        platform = platform or DiscordClient(
            settings.discord_token, timeout=settings.timeout_seconds
        )
        calendar_source = calendar_source or GoogleCalendarClient(
            settings.google_api_key, timeout=settings.timeout_seconds
        )
        scheduler = LifecycleScheduler(registry, platform, timing=settings.timing())
        reconciler = Reconciler(
            registry,
            calendar_source=calendar_source,
            processor=EventProcessor(),
            scope=settings.scope,
            retention_days=settings.retention_days
        )
        return cls(settings, registry, scheduler, reconciler)

    def load(self) -> int:
        return self.registry.load()

    def refresh_calendar(self) -> Optional[MergeResult]:
        """Poll the calendar and merge it; failures are logged and leave state untouched."""
        try:
            return self.reconciler.refresh(self.settings.calendar_id)
        except (requests.RequestException, SyncError) as e:
            logger.error(
                f"Error refreshing calendar events: {e}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return None

    def run_tick(self) -> TickResult:
        return self.scheduler.run_tick()

    def start(self) -> None:
        """Load state, run one refresh and tick, then start both timers."""
        logger.info("Starting calendar event sync service")
        self.load()
        self.refresh_calendar()
        self.run_tick()

        self._stop.clear()
        self._threads = [
            self._start_timer(
                'calendar-refresh', self.settings.calendar_refresh_minutes, self.refresh_calendar
            ),
            self._start_timer('lifecycle-tick', self.settings.tick_minutes, self.run_tick),
        ]
        logger.info(
            f"Timers started: Calendar refresh every {self.settings.calendar_refresh_minutes} "
            f"minutes, event lane processing every {self.settings.tick_minutes} minutes."
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Calendar event sync service stopped")

    def _start_timer(self, name: str, minutes: int, action: Callable[[], object]) -> threading.Thread:
        thread = threading.Thread(
            target=self._run_every, args=(minutes * 60, action), name=name, daemon=True
        )
        thread.start()
        return thread

    def _run_every(self, interval_seconds: float, action: Callable[[], object]) -> None:
        while not self._stop.wait(interval_seconds):
            try:
                action()
            except Exception:
                logger.exception(f"Unexpected error in {threading.current_thread().name} timer")
