"""Configuration and logging setup for the event sync service."""
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import FrozenSet, Mapping, Optional

from lifecycle.states import LifecycleTiming
from processor.errors import ValidationError
from processor.models import Scope

# Attributes every LogRecord has; anything else came in through `extra`
_STANDARD_LOG_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {
    'message', 'asctime'
}


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any `extra` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in _STANDARD_LOG_ATTRS and not key.startswith('_'):
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from e
    if value < 0:
        raise ValidationError(f"{name} must not be negative, got {value}")
    return value


def _bool(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, '').strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class Settings:
    """Service settings, read from environment variables."""
    discord_token: str = ''
    google_api_key: str = ''
    calendar_id: str = ''
    server_id: str = '0'
    channel_id: str = '0'
    event_create_hours: int = 48
    thread_create_hours: int = 1
    lookahead_days: int = 14
    retention_days: int = 7
    archive_delay_minutes: int = 1440
    event_duration_hours: int = 48
    tick_minutes: int = 5
    calendar_refresh_minutes: int = 30
    store_backend: str = 'file'
    events_dir: str = 'events'
    table_name: str = 'calendar-sync-events'
    aws_region: Optional[str] = None
    timeout_seconds: int = 30
    log_level: str = 'INFO'
    debug_mode: bool = False
    admin_ids: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        """
        Read settings from the environment.

        Raises:
            ValidationError: If a value is malformed
        """
        env = os.environ if environ is None else environ

        store_backend = env.get('STORE_BACKEND', 'file').strip().lower()
        if store_backend not in ('file', 'dynamodb'):
            raise ValidationError(f"STORE_BACKEND must be 'file' or 'dynamodb', got {store_backend!r}")

        debug_mode = _bool(env, 'DEBUG_MODE')
        log_level = 'DEBUG' if debug_mode else env.get('LOG_LEVEL', 'INFO')

        admin_ids = frozenset(
            part.strip() for part in env.get('ADMIN_IDS', '').split(',') if part.strip()
        )

        settings = cls(
            discord_token=env.get('DISCORD_TOKEN', ''),
            google_api_key=env.get('GOOGLE_API_KEY', ''),
            calendar_id=env.get('CALENDAR_ID', ''),
            server_id=env.get('SERVER_ID', '0'),
            channel_id=env.get('CHANNEL_ID', '0'),
            event_create_hours=_int(env, 'EVENT_CREATE_HOURS', 48),
            thread_create_hours=_int(env, 'THREAD_CREATE_HOURS', 1),
            lookahead_days=_int(env, 'LOOKAHEAD_DAYS', 14),
            retention_days=_int(env, 'RETENTION_DAYS', 7),
            archive_delay_minutes=_int(env, 'ARCHIVE_DELAY_MINUTES', 1440),
            event_duration_hours=_int(env, 'EVENT_DURATION_HOURS', 48),
            tick_minutes=_int(env, 'TICK_MINUTES', 5),
            calendar_refresh_minutes=_int(env, 'CALENDAR_REFRESH_MINUTES', 30),
            store_backend=store_backend,
            events_dir=env.get('EVENTS_DIR', 'events'),
            table_name=env.get('TABLE_NAME', 'calendar-sync-events'),
            aws_region=env.get('AWS_REGION') or None,
            timeout_seconds=_int(env, 'TIMEOUT_SECONDS', 30),
            log_level=log_level,
            debug_mode=debug_mode,
            admin_ids=admin_ids,
        )

        if settings.thread_create_hours > settings.event_create_hours:
            raise ValidationError("THREAD_CREATE_HOURS must not exceed EVENT_CREATE_HOURS")
        if settings.tick_minutes == 0 or settings.calendar_refresh_minutes == 0:
            raise ValidationError("Timer intervals must be at least one minute")
        return settings

    @property
    def scope(self) -> Scope:
        return Scope(self.server_id, self.channel_id)

    def timing(self) -> LifecycleTiming:
        return LifecycleTiming(
            event_create_lead=timedelta(hours=self.event_create_hours),
            thread_create_lead=timedelta(hours=self.thread_create_hours),
            lookahead=timedelta(days=self.lookahead_days),
            default_archive_delay_minutes=self.archive_delay_minutes,
            event_duration=timedelta(hours=self.event_duration_hours),
        )
