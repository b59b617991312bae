"""Classification of calendar events into bookings that need a cleaning."""
import logging
import math
import re
from datetime import datetime
from typing import List, Optional

from processor.models import BookingDetails, BookingRecord, CalendarEvent

logger = logging.getLogger(__name__)

BOOKING_SUMMARY = 'reserved'
CANCELLED_STATUS = 'CANCELLED'

RESERVATION_URL_PATTERN = re.compile(
    r'https?://\S+airbnb\.com/hosting/reservations/details/\S+'
)

# Only the captured group (last four digits) is ever kept
PHONE_PATTERNS = [
    re.compile(
        r'Phone(?:\s+Number)?(?:\s*\(Last 4 Digits\))?:?\s*[\dX\-\(\)\s+.]*(\d{4})',
        re.IGNORECASE
    ),
    re.compile(r'X{2,}(\d{4})'),
]


def parse_booking_description(description: Optional[str]) -> BookingDetails:
    """
    Extract the reservation link and phone last-four from a description.

    Args:
        description: Free-text event description

    Returns:
        BookingDetails with whichever fields were found
    """
    details = BookingDetails()
    if not description:
        return details

    url_match = RESERVATION_URL_PATTERN.search(description)
    if url_match:
        details.reservation_url = url_match.group(0)

    for pattern in PHONE_PATTERNS:
        phone_match = pattern.search(description)
        if phone_match and phone_match.group(1):
            details.phone_last_four = phone_match.group(1)
            break

    return details


def is_booking(event: CalendarEvent) -> bool:
    """A booking is a non-cancelled event titled exactly 'Reserved'."""
    if event.status and event.status.strip().upper() == CANCELLED_STATUS:
        return False
    return event.summary.strip().lower() == BOOKING_SUMMARY


def calculate_nights(start: datetime, end: datetime) -> int:
    """Nights between check-in and checkout, rounded up, at least one."""
    days = (end - start).total_seconds() / 86400
    return max(1, math.ceil(days))


class BookingClassifier:
    """Separates genuine bookings from blocked dates and other noise."""

    def annotate(self, event: CalendarEvent) -> BookingRecord:
        """
        Build a BookingRecord for an event without filtering it.

        Args:
            event: Parsed calendar event

        Returns:
            BookingRecord carrying the classification and mined metadata
        """
        details = parse_booking_description(event.description)
        return BookingRecord(
            event=event,
            is_booking=is_booking(event),
            nights_stayed=calculate_nights(event.start_date, event.end_date),
            reservation_url=details.reservation_url,
            phone_last_four=details.phone_last_four
        )

    def classify(self, events: List[CalendarEvent]) -> List[BookingRecord]:
        """
        Keep only the events that represent real bookings.

        Args:
            events: Parsed calendar events

        Returns:
            BookingRecord objects for bookings, in feed order
        """
        bookings = []

        for event in events:
            record = self.annotate(event)
            if record.is_booking:
                bookings.append(record)
            else:
                logger.debug(f"Skipping non-reservation event: '{event.summary}'")

        logger.info(
            f"Classified {len(bookings)} bookings out of {len(events)} events"
        )
        return bookings
