"""DynamoDB manager for cleaning job and property storage operations."""
import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from processor.models import CleaningJob, JobStatus, Property, has_calendar_marker
from sync.exceptions import PropertyNotFoundError, StoreError

logger = logging.getLogger(__name__)


def to_millis(value: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return int(value.timestamp() * 1000)


def from_millis(value: Any) -> datetime:
    """Convert epoch milliseconds to a local aware datetime."""
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc).astimezone()


def _to_decimal(value: Optional[float]) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def _to_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


class DynamoDBManager:
    """Manager for DynamoDB operations on jobs and properties.

    Table resources are created per thread since boto3 resources must not
    be shared between threads.
    """

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    ADDRESS_INDEX = 'address-index'

    def __init__(
        self,
        jobs_table_name: str,
        properties_table_name: str,
        region_name: Optional[str] = None
    ):
        """
        Initialize the manager.

        Args:
            jobs_table_name: Name of the cleaning jobs table
            properties_table_name: Name of the properties table
            region_name: AWS region, or None for the default chain
        """
        self.jobs_table_name = jobs_table_name
        self.properties_table_name = properties_table_name
        self.region_name = region_name
        self._local = threading.local()
        logger.info(
            f"Initialized DynamoDBManager for tables: {jobs_table_name}, "
            f"{properties_table_name}"
        )

    @property
    def jobs_table(self):
        return self._table('jobs_table', self.jobs_table_name)

    @property
    def properties_table(self):
        return self._table('properties_table', self.properties_table_name)

    def _table(self, attr: str, table_name: str):
        table = getattr(self._local, attr, None)
        if table is None:
            session = boto3.session.Session(region_name=self.region_name)
            table = session.resource('dynamodb').Table(table_name)
            setattr(self._local, attr, table)
        return table

    # ------------------------------------------------------------------
    # Cleaning jobs
    # ------------------------------------------------------------------

    def find_jobs(
        self,
        address: str,
        preferred_date: Optional[datetime] = None,
        preferred_date_from: Optional[datetime] = None,
        status_in: Optional[Iterable[JobStatus]] = None
    ) -> List[CleaningJob]:
        """
        Query jobs at an address through the address index.

        Args:
            address: Property address the jobs are keyed on
            preferred_date: Exact preferred date to match
            preferred_date_from: Lower bound (inclusive) on preferred date
            status_in: Restrict to these statuses

        Returns:
            List of matching CleaningJob objects

        Raises:
            StoreError: If the query fails
        """
        key_condition = Key('address').eq(address)
        if preferred_date is not None:
            key_condition = key_condition & Key('preferredDate').eq(
                to_millis(preferred_date)
            )
        elif preferred_date_from is not None:
            key_condition = key_condition & Key('preferredDate').gte(
                to_millis(preferred_date_from)
            )

        query_args: Dict[str, Any] = {
            'IndexName': self.ADDRESS_INDEX,
            'KeyConditionExpression': key_condition
        }
        if status_in is not None:
            query_args['FilterExpression'] = Attr('status').is_in(
                [JobStatus(status).value for status in status_in]
            )

        jobs = []
        for item in self._query_jobs(query_args):
            job = self._item_to_job(item)
            if job:
                jobs.append(job)
        return jobs

    def find_calendar_job_ids(
        self,
        address: str,
        preferred_date_from: datetime
    ) -> List[str]:
        """
        Find ids of calendar-created jobs at an address from a date on.

        Items are selected on their raw attributes, so jobs in any status
        are returned, including statuses written by other applications.

        Args:
            address: Property address the jobs are keyed on
            preferred_date_from: Lower bound (inclusive) on preferred date

        Returns:
            List of job ids

        Raises:
            StoreError: If the query fails
        """
        items = self._query_jobs({
            'IndexName': self.ADDRESS_INDEX,
            'KeyConditionExpression': (
                Key('address').eq(address) &
                Key('preferredDate').gte(to_millis(preferred_date_from))
            )
        })

        return [
            item['id'] for item in items
            if has_calendar_marker(
                item.get('source'),
                item.get('reservationId'),
                item.get('icalEventId')
            )
        ]

    def _query_jobs(self, query_args: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Run a jobs query and collect items from every page."""
        try:
            response = self.jobs_table.query(**query_args)
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.jobs_table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **query_args
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error querying jobs for address: {e}")
            raise StoreError(f"Failed to query cleaning jobs: {e}") from e

        return items

    def create_job(self, job: CleaningJob) -> str:
        """
        Persist a new cleaning job in a single write.

        Args:
            job: Fully populated CleaningJob

        Returns:
            The job id

        Raises:
            StoreError: If the write fails or the id already exists
        """
        try:
            self.jobs_table.put_item(
                Item=self._job_to_item(job),
                ConditionExpression=Attr('id').not_exists()
            )
        except ClientError as e:
            logger.error(f"Error creating job {job.id}: {e}")
            raise StoreError(f"Failed to create cleaning job: {e}") from e

        return job.id

    def delete_jobs(self, job_ids: List[str]) -> int:
        """
        Delete jobs in batches of 25 items.

        Args:
            job_ids: Ids of the jobs to delete

        Returns:
            Count of deleted jobs

        Raises:
            StoreError: If a batch fails
        """
        if not job_ids:
            return 0

        logger.info(f"Deleting {len(job_ids)} cleaning jobs")
        deleted = 0

        for i in range(0, len(job_ids), self.BATCH_SIZE):
            batch = job_ids[i:i + self.BATCH_SIZE]

            try:
                with self.jobs_table.batch_writer() as writer:
                    for job_id in batch:
                        writer.delete_item(Key={'id': job_id})
            except ClientError as e:
                logger.error(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                raise StoreError(f"Failed to delete cleaning jobs: {e}") from e

            deleted += len(batch)

        return deleted

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def get_property(self, property_id: str) -> Property:
        """
        Load a property by id.

        Raises:
            PropertyNotFoundError: If no such property exists
            StoreError: If the read fails
        """
        try:
            response = self.properties_table.get_item(Key={'id': property_id})
        except ClientError as e:
            logger.error(f"Error reading property {property_id}: {e}")
            raise StoreError(f"Failed to read property: {e}") from e

        item = response.get('Item')
        if not item:
            raise PropertyNotFoundError(property_id)
        return self.item_to_property(item)

    def list_properties_with_calendar(self) -> List[Property]:
        """
        Scan for properties that have a non-empty calendar URL.

        Returns:
            List of Property objects

        Raises:
            StoreError: If the scan fails
        """
        scan_args = {
            'FilterExpression': (
                Attr('calendarUrl').exists() & Attr('calendarUrl').ne('')
            )
        }

        try:
            response = self.properties_table.scan(**scan_args)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.properties_table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **scan_args
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error scanning properties table: {e}")
            raise StoreError(f"Failed to list properties: {e}") from e

        properties = [self.item_to_property(item) for item in items]
        properties = [prop for prop in properties if prop.has_calendar]
        logger.info(f"Found {len(properties)} properties with calendars")
        return properties

    def update_property(self, property_id: str, last_synced_at: datetime) -> None:
        """
        Record the time of the last completed sync on a property.

        Raises:
            StoreError: If the update fails
        """
        try:
            self.properties_table.update_item(
                Key={'id': property_id},
                UpdateExpression='SET lastSyncedAt = :ts',
                ExpressionAttributeValues={':ts': to_millis(last_synced_at)}
            )
        except ClientError as e:
            logger.error(f"Error updating property {property_id}: {e}")
            raise StoreError(f"Failed to update property: {e}") from e

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @staticmethod
    def item_to_property(item: Dict[str, Any]) -> Property:
        """
        Convert a property item (or stream image) to a Property object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Property object
        """
        coordinates = item.get('coordinates') or {}
        last_synced = item.get('lastSyncedAt')

        return Property(
            id=item['id'],
            address=item.get('address', ''),
            calendar_url=item.get('calendarUrl') or None,
            latitude=_to_float(coordinates.get('latitude')),
            longitude=_to_float(coordinates.get('longitude')),
            owner_id=item.get('ownerId', ''),
            owner_display_name=item.get('ownerDisplayName', ''),
            label=item.get('label'),
            last_synced_at=from_millis(last_synced) if last_synced else None
        )

    @staticmethod
    def property_to_item(prop: Property) -> Dict[str, Any]:
        """Convert a Property object to a DynamoDB item."""
        item: Dict[str, Any] = {
            'id': prop.id,
            'address': prop.address,
            'ownerId': prop.owner_id,
            'ownerDisplayName': prop.owner_display_name
        }

        if prop.calendar_url:
            item['calendarUrl'] = prop.calendar_url
        if prop.latitude is not None and prop.longitude is not None:
            item['coordinates'] = {
                'latitude': _to_decimal(prop.latitude),
                'longitude': _to_decimal(prop.longitude)
            }
        if prop.label:
            item['label'] = prop.label
        if prop.last_synced_at:
            item['lastSyncedAt'] = to_millis(prop.last_synced_at)

        return item

    def _item_to_job(self, item: Dict[str, Any]) -> Optional[CleaningJob]:
        """
        Convert a DynamoDB item to a CleaningJob.

        Returns:
            CleaningJob object or None if conversion fails
        """
        try:
            destination = item.get('destination') or {}
            prop = item.get('property') or {}

            return CleaningJob(
                id=item['id'],
                address=item['address'],
                status=JobStatus(item['status']),
                preferred_date=from_millis(item['preferredDate']),
                preferred_time=item.get('preferredTime', ''),
                cleaning_type=item.get('cleaningType', ''),
                estimated_duration=int(item.get('estimatedDuration', 0)),
                source=item.get('source'),
                reservation_id=item.get('reservationId'),
                ical_event_id=item.get('icalEventId'),
                guest_name=item.get('guestName'),
                check_in_date=(
                    from_millis(item['checkInDate'])
                    if 'checkInDate' in item else None
                ),
                check_out_date=(
                    from_millis(item['checkOutDate'])
                    if 'checkOutDate' in item else None
                ),
                nights_stayed=(
                    int(item['nightsStayed']) if 'nightsStayed' in item else None
                ),
                booking_description=item.get('bookingDescription'),
                reservation_url=item.get('reservationUrl'),
                phone_last_four=item.get('phoneLastFour'),
                notes=item.get('notes', ''),
                is_emergency=bool(item.get('isEmergency', False)),
                host_id=item.get('hostId', ''),
                host_first_name=item.get('hostFirstName', ''),
                host_last_name=item.get('hostLastName', ''),
                latitude=_to_float(destination.get('latitude')),
                longitude=_to_float(destination.get('longitude')),
                property_id=item.get('propertyId') or prop.get('id'),
                property_label=prop.get('label'),
                created_at=(
                    from_millis(item['createdAt']) if 'createdAt' in item else None
                )
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to convert item to CleaningJob: {e}")
            return None

    def _job_to_item(self, job: CleaningJob) -> Dict[str, Any]:
        """
        Convert a CleaningJob to a DynamoDB item.

        Optional fields are left out instead of being stored as null.
        """
        item: Dict[str, Any] = {
            'id': job.id,
            'address': job.address,
            'status': job.status.value,
            'preferredDate': to_millis(job.preferred_date),
            'preferredTime': job.preferred_time,
            'cleaningType': job.cleaning_type,
            'estimatedDuration': job.estimated_duration,
            'notes': job.notes,
            'isEmergency': job.is_emergency,
            'hostId': job.host_id,
            'hostFirstName': job.host_first_name,
            'hostLastName': job.host_last_name
        }

        optional = {
            'source': job.source,
            'reservationId': job.reservation_id,
            'icalEventId': job.ical_event_id,
            'guestName': job.guest_name,
            'nightsStayed': job.nights_stayed,
            'bookingDescription': job.booking_description,
            'reservationUrl': job.reservation_url,
            'phoneLastFour': job.phone_last_four,
            'propertyId': job.property_id
        }
        for key, value in optional.items():
            if value is not None and value != '':
                item[key] = value

        if job.check_in_date:
            item['checkInDate'] = to_millis(job.check_in_date)
        if job.check_out_date:
            item['checkOutDate'] = to_millis(job.check_out_date)
        if job.created_at:
            item['createdAt'] = to_millis(job.created_at)
        if job.latitude is not None and job.longitude is not None:
            item['destination'] = {
                'latitude': _to_decimal(job.latitude),
                'longitude': _to_decimal(job.longitude)
            }
        if job.property_id:
            item['property'] = {
                'id': job.property_id,
                'label': job.property_label or job.address,
                'address': job.address
            }

        return item
