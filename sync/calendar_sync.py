"""Calendar sync orchestration: fetch, parse, classify, reconcile."""
import asyncio
import logging
from typing import List, Optional

from fetcher.calendar_fetcher import CalendarFetcher
from processor.booking_classifier import BookingClassifier
from processor.ical_parser import ICalParser
from processor.models import (
    BatchSyncResult,
    Property,
    RemovalResult,
    SyncResult,
)
from reconciler.job_reconciler import JobReconciler, calendar_unlinked

logger = logging.getLogger(__name__)


class CalendarSync:
    """Entry point tying the calendar pipeline to the job store."""

    def __init__(
        self,
        store,
        fetcher: CalendarFetcher,
        parser: Optional[ICalParser] = None,
        classifier: Optional[BookingClassifier] = None,
        reconciler: Optional[JobReconciler] = None,
        max_concurrency: int = 8
    ):
        """
        Initialize the sync orchestrator.

        Args:
            store: Job/property store
            fetcher: Calendar fetcher
            parser: iCal parser (default: ICalParser())
            classifier: Booking classifier (default: BookingClassifier())
            reconciler: Job reconciler (default: JobReconciler(store))
            max_concurrency: Properties synced at the same time by sync_all
        """
        self.store = store
        self.fetcher = fetcher
        self.parser = parser or ICalParser()
        self.classifier = classifier or BookingClassifier()
        self.reconciler = reconciler or JobReconciler(store)
        self.max_concurrency = max_concurrency

    def sync_property(self, prop: Property) -> SyncResult:
        """
        Sync one property's calendar into cleaning jobs.

        Args:
            prop: Property with a calendar URL

        Returns:
            SyncResult with the number of jobs created

        Raises:
            ValueError: If the property has no calendar URL
            FetchError: If the calendar cannot be fetched
            StoreError: If the store fails outside per-booking processing
        """
        if not prop.has_calendar:
            raise ValueError(f"Property {prop.id} has no calendar URL")

        logger.info(f"Syncing calendar for property {prop.id}")

        raw_text = self.fetcher.fetch_calendar_text(prop.calendar_url)
        events = self.parser.parse(raw_text)
        bookings = self.classifier.classify(events)
        result = self.reconciler.reconcile(bookings, prop)

        logger.info(
            f"Created {result.created} cleaning jobs for property {prop.id}"
        )
        return SyncResult(
            property_id=prop.id,
            jobs_created=result.created,
            errors=result.errors
        )

    def sync_property_by_id(self, property_id: str) -> SyncResult:
        """Load a property from the store and sync it."""
        return self.sync_property(self.store.get_property(property_id))

    async def sync_all(self) -> BatchSyncResult:
        """
        Sync every property that has a calendar URL.

        Each property runs as its own task; a failing property is logged and
        counted without affecting the others.

        Returns:
            BatchSyncResult with per-batch statistics
        """
        properties: List[Property] = await asyncio.to_thread(
            self.store.list_properties_with_calendar
        )
        logger.info(f"Found {len(properties)} properties with calendars")

        semaphore = asyncio.Semaphore(self.max_concurrency)
        batch = BatchSyncResult()

        async def _sync_one(prop: Property) -> None:
            async with semaphore:
                try:
                    result = await asyncio.to_thread(self.sync_property, prop)
                except Exception as e:
                    error_msg = f"Error syncing property {prop.id}: {e}"
                    logger.error(
                        error_msg,
                        extra={'error_type': type(e).__name__},
                        exc_info=True
                    )
                    batch.properties_failed += 1
                    batch.errors.append(error_msg)
                    return

            batch.properties_synced += 1
            batch.jobs_created += result.jobs_created
            batch.errors.extend(result.errors)

        await asyncio.gather(*(_sync_one(prop) for prop in properties))

        logger.info(
            f"Calendar sync completed: {batch.properties_synced} synced, "
            f"{batch.properties_failed} failed, {batch.jobs_created} jobs created"
        )
        return batch

    def handle_property_updated(
        self,
        before: Optional[Property],
        after: Optional[Property]
    ) -> RemovalResult:
        """
        React to a property update.

        Only a calendar URL going from set to blank removes jobs.
        """
        if not calendar_unlinked(before, after):
            return RemovalResult()

        prop = before if before.address or after is None else after
        logger.info(f"Calendar removed from property {prop.id}")
        return self.reconciler.remove_linked_jobs(prop)

    def handle_property_deleted(self, prop: Property) -> RemovalResult:
        """Remove future calendar jobs for a deleted property's address."""
        logger.info(f"Property {prop.id} deleted")
        return self.reconciler.remove_jobs_for_address(prop.address)
