"""AWS Lambda handlers for calendar-driven cleaning job sync."""
import asyncio
import base64
import json
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from boto3.dynamodb.types import TypeDeserializer

from fetcher.calendar_fetcher import CalendarFetcher
from storage.dynamodb_manager import DynamoDBManager
from sync.calendar_sync import CalendarSync
from sync.exceptions import FetchError, PropertyNotFoundError
from sync.log_config import setup_logging
from sync.settings import Settings, load_settings

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Headers': 'Content-Type',
    'Access-Control-Allow-Methods': 'POST, OPTIONS',
    'Content-Type': 'application/json'
}

_deserializer = TypeDeserializer()


def build_fetcher(settings: Settings) -> CalendarFetcher:
    return CalendarFetcher(
        timeout=settings.timeout_seconds,
        max_retries=settings.max_retries
    )


def build_sync(settings: Settings) -> CalendarSync:
    """Wire the store, fetcher and pipeline from settings."""
    store = DynamoDBManager(
        jobs_table_name=settings.jobs_table_name,
        properties_table_name=settings.properties_table_name,
        region_name=settings.region_name
    )
    return CalendarSync(
        store=store,
        fetcher=build_fetcher(settings),
        max_concurrency=settings.sync_concurrency
    )


def _response(status_code: int, body: Dict[str, Any], headers: Optional[Dict] = None):
    response = {'statusCode': status_code, 'body': json.dumps(body)}
    if headers:
        response['headers'] = headers
    return response


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Scheduled and operator-invoked calendar sync.

    The EventBridge schedule (every 6 hours) syncs every property with a
    calendar. A direct invocation with ``{"propertyId": ...}`` syncs only
    that property.

    Args:
        event: EventBridge event payload or operator payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary statistics
    """
    settings = load_settings()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    property_id = (event or {}).get('propertyId')

    logger.info(
        "Lambda execution started",
        extra={
            'jobs_table': settings.jobs_table_name,
            'properties_table': settings.properties_table_name,
            'property_id': property_id
        }
    )

    try:
        calendar_sync = build_sync(settings)

        if property_id:
            result = calendar_sync.sync_property_by_id(property_id)
            statistics = {
                'property_id': result.property_id,
                'jobs_created': result.jobs_created
            }
            errors = result.errors
        else:
            batch = asyncio.run(calendar_sync.sync_all())
            statistics = {
                'properties_synced': batch.properties_synced,
                'properties_failed': batch.properties_failed,
                'jobs_created': batch.jobs_created
            }
            errors = batch.errors

        duration = time.time() - start_time
        statistics['duration_seconds'] = round(duration, 2)

        logger.info("Lambda execution completed successfully", extra=statistics)

        return _response(200, {
            'message': 'Sync completed successfully',
            'statistics': statistics,
            'errors': errors
        })

    except PropertyNotFoundError as e:
        logger.error(str(e))
        return _response(404, {
            'message': 'Sync failed',
            'error': str(e),
            'error_type': type(e).__name__
        })

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


def _read_json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    body = event.get('body') or ''
    if event.get('isBase64Encoded'):
        body = base64.b64decode(body).decode('utf-8')
    payload = json.loads(body) if body else {}
    if not isinstance(payload, dict):
        raise ValueError('Request body must be a JSON object')
    return payload


def _is_http_url(url: Any) -> bool:
    if not isinstance(url, str):
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def fetch_calendar_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    ``POST /fetchCalendar``: fetch a calendar on behalf of a client.

    Calendar providers do not send permissive CORS headers, so mobile and
    web clients fetch feeds through this endpoint.

    Args:
        event: API Gateway proxy event with body ``{"url": ...}``
        context: Lambda context object

    Returns:
        API Gateway proxy response
    """
    settings = load_settings()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    method = event.get('httpMethod') or (
        event.get('requestContext', {}).get('http', {}).get('method')
    )
    if method == 'OPTIONS':
        return {'statusCode': 204, 'headers': CORS_HEADERS, 'body': ''}

    try:
        payload = _read_json_body(event)
    except ValueError as e:
        logger.warning(f"Invalid request body: {e}")
        return _response(400, {'error': 'Invalid request body'}, CORS_HEADERS)

    url = payload.get('url')
    if not url:
        return _response(400, {'error': 'Calendar URL is required'}, CORS_HEADERS)
    if not _is_http_url(url):
        return _response(400, {'error': 'Calendar URL must be an http(s) URL'}, CORS_HEADERS)

    try:
        content = build_fetcher(settings).fetch_calendar_text(url.strip())
    except FetchError as e:
        logger.error(
            f"Failed to fetch calendar: {e}",
            extra={'status_code': e.status_code}
        )
        if e.invalid_content:
            return _response(400, {'error': 'Invalid calendar content'}, CORS_HEADERS)
        if e.status_code:
            return _response(e.status_code, {'error': str(e)}, CORS_HEADERS)
        return _response(500, {
            'error': 'Failed to fetch calendar data',
            'details': str(e)
        }, CORS_HEADERS)

    return _response(200, {'success': True, 'content': content}, CORS_HEADERS)


def _image_to_property(image: Optional[Dict[str, Any]]):
    if not image:
        return None
    item = {key: _deserializer.deserialize(value) for key, value in image.items()}
    return DynamoDBManager.item_to_property(item)


def property_stream_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    DynamoDB Streams handler for the properties table.

    MODIFY records remove future calendar jobs when the calendar URL is
    cleared; REMOVE records remove them for the deleted property's address.

    Args:
        event: DynamoDB Streams event (NEW_AND_OLD_IMAGES)
        context: Lambda context object

    Returns:
        Partial batch response listing failed records
    """
    settings = load_settings()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    calendar_sync = build_sync(settings)
    failures = []
    deleted = 0

    for record in event.get('Records', []):
        event_name = record.get('eventName')
        images = record.get('dynamodb', {})

        try:
            before = _image_to_property(images.get('OldImage'))
            after = _image_to_property(images.get('NewImage'))

            if event_name == 'MODIFY':
                result = calendar_sync.handle_property_updated(before, after)
            elif event_name == 'REMOVE' and before:
                result = calendar_sync.handle_property_deleted(before)
            else:
                continue

            deleted += result.deleted

        except Exception as e:
            logger.error(
                f"Failed to process property stream record: {e}",
                extra={'event_id': record.get('eventID')},
                exc_info=True
            )
            failures.append({'itemIdentifier': images.get('SequenceNumber')})

    logger.info(
        "Property stream batch processed",
        extra={'jobs_deleted': deleted, 'failed_records': len(failures)}
    )
    return {'batchItemFailures': failures}
