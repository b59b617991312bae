"""Reconciliation of calendar bookings with stored cleaning jobs."""
import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Set, Tuple

from processor.models import (
    ICAL_SOURCE,
    BookingRecord,
    CleaningJob,
    JobStatus,
    Property,
    ReconcileResult,
    RemovalResult,
)

logger = logging.getLogger(__name__)

CLEANING_HOUR = 10
PREFERRED_TIME = '10:00 AM'
CLEANING_TYPE = 'checkout'
ESTIMATED_DURATION_HOURS = 3
BOOKING_GUEST_NAME = 'Reserved'

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Current local time as an aware datetime."""
    return datetime.now().astimezone()


def preferred_cleaning_date(checkout: datetime) -> datetime:
    """Cleaning slot for a checkout: the same local day at 10:00."""
    return checkout.astimezone().replace(
        hour=CLEANING_HOUR, minute=0, second=0, microsecond=0
    )


def calendar_unlinked(before: Optional[Property], after: Optional[Property]) -> bool:
    """Whether a property update removed a previously set calendar URL."""
    return bool(before and before.has_calendar) and not (after and after.has_calendar)


def _split_name(display_name: str) -> Tuple[str, str]:
    """Split a display name into first and last name."""
    parts = (display_name or '').split()
    first = parts[0] if parts else ''
    last = parts[1] if len(parts) > 1 else ''
    return first, last


class JobReconciler:
    """Creates and removes calendar-driven cleaning jobs.

    Jobs are correlated to properties by address rather than property id,
    so a property deleted and recreated at the same address still matches
    its existing jobs.
    """

    def __init__(self, store, clock: Optional[Clock] = None):
        """
        Initialize the reconciler.

        Args:
            store: Job/property store (see storage.dynamodb_manager)
            clock: Callable returning the current aware datetime
        """
        self.store = store
        self.clock = clock or local_now

    def reconcile(
        self,
        bookings: List[BookingRecord],
        prop: Property
    ) -> ReconcileResult:
        """
        Create a cleaning job for every future checkout that lacks one.

        Bookings are handled one at a time. A failure on one booking is
        logged and recorded, and the remaining bookings are still processed.

        Args:
            bookings: Classified bookings from the property's calendar
            prop: Property the calendar belongs to

        Returns:
            ReconcileResult with created/skipped counts and errors
        """
        now = self.clock()
        result = ReconcileResult()
        # Slots created this run; the address index may not show them yet
        scheduled: Set[datetime] = set()

        upcoming = [booking for booking in bookings if booking.end_date > now]
        logger.info(
            f"Found {len(upcoming)} future checkouts from {len(bookings)} bookings"
        )

        for booking in upcoming:
            try:
                if self._create_if_missing(booking, prop, now, scheduled):
                    result.created += 1
                else:
                    result.skipped += 1
            except Exception as e:
                error_msg = f"Failed to reconcile booking {booking.uid}: {e}"
                logger.error(error_msg, exc_info=True)
                result.errors.append(error_msg)

        self.store.update_property(prop.id, last_synced_at=self.clock())

        logger.info(
            f"Reconciled property {prop.id}: {result.created} created, "
            f"{result.skipped} already scheduled, {len(result.errors)} errors"
        )
        return result

    def _create_if_missing(
        self,
        booking: BookingRecord,
        prop: Property,
        now: datetime,
        scheduled: Set[datetime]
    ) -> bool:
        """Create the job for a booking unless one exists for its slot."""
        preferred_date = preferred_cleaning_date(booking.end_date)
        if preferred_date in scheduled:
            logger.debug(
                f"Cleaning job already created this run for {preferred_date.date()}"
            )
            return False

        existing = self.store.find_jobs(
            address=prop.address,
            preferred_date=preferred_date,
            status_in=JobStatus.active()
        )
        if existing:
            logger.debug(
                f"Cleaning job already exists for {preferred_date.date()}"
            )
            return False

        job = self.build_job(booking, prop, preferred_date, now)
        self.store.create_job(job)
        scheduled.add(preferred_date)
        logger.info(f"Created cleaning job for {preferred_date.date()}")
        return True

    def build_job(
        self,
        booking: BookingRecord,
        prop: Property,
        preferred_date: datetime,
        created_at: datetime
    ) -> CleaningJob:
        """Assemble the complete job document for a booking."""
        first_name, last_name = _split_name(prop.owner_display_name)

        return CleaningJob(
            id=uuid.uuid4().hex,
            address=prop.address,
            status=JobStatus.SCHEDULED,
            preferred_date=preferred_date,
            preferred_time=PREFERRED_TIME,
            cleaning_type=CLEANING_TYPE,
            estimated_duration=ESTIMATED_DURATION_HOURS,
            source=ICAL_SOURCE,
            reservation_id=booking.uid,
            ical_event_id=booking.uid,
            guest_name=BOOKING_GUEST_NAME,
            check_in_date=booking.start_date,
            check_out_date=booking.end_date,
            nights_stayed=booking.nights_stayed,
            booking_description=booking.description or '',
            reservation_url=booking.reservation_url,
            phone_last_four=booking.phone_last_four,
            notes=booking.description or f"Guest checkout: {BOOKING_GUEST_NAME}",
            is_emergency=False,
            host_id=prop.owner_id,
            host_first_name=first_name,
            host_last_name=last_name,
            latitude=prop.latitude,
            longitude=prop.longitude,
            property_id=prop.id,
            property_label=prop.label or prop.address,
            created_at=created_at
        )

    def remove_linked_jobs(self, prop: Property) -> RemovalResult:
        """
        Delete future calendar jobs after a property's calendar is unlinked.

        Args:
            prop: Property whose calendar URL was removed

        Returns:
            RemovalResult with the number of deleted jobs
        """
        return self.remove_jobs_for_address(prop.address)

    def remove_jobs_for_address(self, address: str) -> RemovalResult:
        """
        Delete future calendar jobs at an address.

        Used when a property is deleted; the address must be captured before
        deletion. Jobs in any status are removed, past jobs are kept.

        Args:
            address: Property address

        Returns:
            RemovalResult with the number of deleted jobs
        """
        if not address:
            logger.warning('No address given, skipping job removal')
            return RemovalResult()

        now = self.clock()
        to_delete = self.store.find_calendar_job_ids(
            address=address,
            preferred_date_from=now
        )

        if not to_delete:
            logger.info(f"No calendar jobs to remove for address {address}")
            return RemovalResult()

        deleted = self.store.delete_jobs(to_delete)
        logger.info(
            f"Removed {deleted} calendar-based future jobs for address {address}"
        )
        return RemovalResult(deleted=deleted)
