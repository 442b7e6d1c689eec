"""AWS Lambda handler for the calendar event sync."""
import json
import logging
import time
from typing import Any, Dict

import requests

from processor.errors import NotFoundError, SyncError, ValidationError
from service import SyncService
from settings import Settings, setup_logging

logger = logging.getLogger(__name__)

NOTIFICATIONS = ('started', 'completed', 'cancelled')
ADMIN_ACTIONS = ('end', 'close', 'addtime')


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body)}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function.

    A scheduled invocation (EventBridge) runs one calendar refresh followed by
    a lifecycle tick. Payloads carrying ``notification`` are platform
    lifecycle notifications, payloads carrying ``action`` are administrator
    actions on an event thread.

    Args:
        event: Invocation payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and a JSON body
    """
    start_time = time.time()
    event = event or {}

    try:
        settings = Settings.from_env()
    except ValidationError as e:
        setup_logging('INFO')
        logger.error(f"Invalid configuration: {e}")
        return _response(500, {'message': 'Invalid configuration', 'error': str(e)})

    setup_logging(settings.log_level)
    logger.info(
        "Lambda execution started",
        extra={
            'store_backend': settings.store_backend,
            'calendar_id': settings.calendar_id,
            'request_type': _request_type(event)
        }
    )

    try:
        service = SyncService.from_settings(settings)
        service.load()

        if 'notification' in event:
            return _handle_notification(service, event)
        if 'action' in event:
            return _handle_admin_action(service, settings, event)
        return _handle_sync(service, start_time)

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'message': 'Sync failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })


def _request_type(event: Dict[str, Any]) -> str:
    if 'notification' in event:
        return 'notification'
    if 'action' in event:
        return 'admin_action'
    return 'sync'


def _handle_sync(service: SyncService, start_time: float) -> Dict[str, Any]:
    # Fetch and merge the calendar; a fetch failure keeps every tracked event
    try:
        merge_result = service.reconciler.refresh(service.settings.calendar_id)
    except requests.RequestException as e:
        logger.error(
            f"Failed to fetch events from calendar after retries: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        duration = time.time() - start_time
        return _response(500, {
            'message': 'Failed to fetch calendar events',
            'error': str(e),
            'error_type': type(e).__name__,
            'note': 'Previously tracked events remain in the store',
            'duration_seconds': round(duration, 2)
        })

    tick_result = service.run_tick()
    duration = time.time() - start_time

    logger.info(
        "Lambda execution completed successfully",
        extra={
            'duration_seconds': round(duration, 2),
            'events_added': merge_result.added,
            'events_updated': merge_result.updated,
            'platform_events_created': tick_result.events_created,
            'threads_created': tick_result.threads_created,
            'errors': merge_result.errors + tick_result.errors
        }
    )

    return _response(200, {
        'message': 'Sync completed successfully',
        'statistics': {
            'events_added': merge_result.added,
            'events_updated': merge_result.updated,
            'events_tracked': len(service.registry),
            'events_in_lane': tick_result.in_lane,
            'platform_events_created': tick_result.events_created,
            'threads_created': tick_result.threads_created,
            'duration_seconds': round(duration, 2)
        },
        'errors': merge_result.errors + tick_result.errors
    })


def _handle_notification(service: SyncService, event: Dict[str, Any]) -> Dict[str, Any]:
    kind = event.get('notification')
    platform_event_id = event.get('platform_event_id')

    if kind not in NOTIFICATIONS or not platform_event_id:
        logger.warning(f"Ignoring malformed notification: {kind!r}")
        return _response(400, {'message': 'Unknown notification', 'notification': kind})

    handler = {
        'started': service.scheduler.on_event_started,
        'completed': service.scheduler.on_event_completed,
        'cancelled': service.scheduler.on_event_cancelled,
    }[kind]
    handled = handler(str(platform_event_id))

    return _response(200, {
        'message': 'Notification processed',
        'notification': kind,
        'handled': handled
    })


def _handle_admin_action(
    service: SyncService,
    settings: Settings,
    event: Dict[str, Any]
) -> Dict[str, Any]:
    action = str(event.get('action', '')).lower()
    user_id = str(event.get('user_id', ''))

    if user_id not in settings.admin_ids:
        logger.warning(f"Rejected admin action '{action}' from user {user_id}")
        return _response(403, {'message': 'Not an administrator'})

    if action not in ADMIN_ACTIONS:
        return _response(400, {'message': 'Unknown action', 'action': action})

    try:
        record = service.scheduler.record_for_thread(str(event.get('thread_id', '')))

        if action == 'end':
            service.scheduler.end_event(record.id)
            body = {'message': 'Event ended'}
        elif action == 'close':
            service.scheduler.close_thread(record.id)
            body = {'message': 'Thread closed'}
        else:
            minutes = event.get('minutes', 1440)
            try:
                minutes = int(minutes)
            except (TypeError, ValueError):
                minutes = 1440
            archive_delay = service.scheduler.extend_archive_delay(record.id, minutes)
            body = {'message': 'Archive time extended', 'archive_delay_minutes': archive_delay}

    except NotFoundError as e:
        logger.warning(str(e))
        return _response(404, {'message': str(e)})
    except ValidationError as e:
        logger.warning(f"Rejected admin action '{action}': {e}")
        return _response(400, {'message': str(e), 'action': action})
    except SyncError as e:
        logger.error(
            f"Admin action '{action}' failed: {e}",
            extra={'error_type': type(e).__name__}
        )
        return _response(500, {
            'message': 'Admin action failed',
            'error': str(e),
            'error_type': type(e).__name__
        })

    body.update({'action': action, 'event_id': record.id})
    return _response(200, body)
