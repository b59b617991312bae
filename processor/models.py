"""Data models for calendar ingestion and cleaning job reconciliation."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional


ICAL_SOURCE = 'ical'


def has_calendar_marker(
    source: Optional[str],
    reservation_id: Optional[str],
    ical_event_id: Optional[str]
) -> bool:
    """Whether job attributes mark it as created from a calendar feed."""
    return source == ICAL_SOURCE or bool(reservation_id) or bool(ical_event_id)


class JobStatus(str, Enum):
    """Lifecycle status of a cleaning job."""
    SCHEDULED = 'scheduled'
    OPEN = 'open'
    BIDDING = 'bidding'
    ACCEPTED = 'accepted'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool:
        """Completed and cancelled jobs are never touched by a sync."""
        return self in (JobStatus.COMPLETED, JobStatus.CANCELLED)

    @classmethod
    def active(cls) -> FrozenSet['JobStatus']:
        """Statuses that count as an existing job for deduplication."""
        return frozenset(status for status in cls if not status.is_terminal)


@dataclass
class CalendarEvent:
    """Single VEVENT extracted from an iCal feed."""
    uid: str
    summary: str
    start_date: datetime
    end_date: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    status: Optional[str] = None


@dataclass
class BookingDetails:
    """Reservation metadata mined from an event description."""
    reservation_url: Optional[str] = None
    phone_last_four: Optional[str] = None


@dataclass
class BookingRecord:
    """Calendar event annotated with booking classification."""
    event: CalendarEvent
    is_booking: bool
    nights_stayed: int
    reservation_url: Optional[str] = None
    phone_last_four: Optional[str] = None

    @property
    def uid(self) -> str:
        return self.event.uid

    @property
    def summary(self) -> str:
        return self.event.summary

    @property
    def start_date(self) -> datetime:
        return self.event.start_date

    @property
    def end_date(self) -> datetime:
        return self.event.end_date

    @property
    def description(self) -> Optional[str]:
        return self.event.description


@dataclass
class Property:
    """Rental property as read from the property store."""
    id: str
    address: str
    calendar_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    owner_id: str = ''
    owner_display_name: str = ''
    label: Optional[str] = None
    last_synced_at: Optional[datetime] = None

    @property
    def has_calendar(self) -> bool:
        return bool(self.calendar_url and self.calendar_url.strip())


@dataclass
class CleaningJob:
    """Cleaning job document.

    Jobs created from a calendar feed carry ``source='ical'`` and a
    ``reservation_id``; older documents may only have one of those or the
    legacy ``ical_event_id`` field.
    """
    id: str
    address: str
    status: JobStatus
    preferred_date: datetime
    preferred_time: str = '10:00 AM'
    cleaning_type: str = 'checkout'
    estimated_duration: int = 3
    source: Optional[str] = None
    reservation_id: Optional[str] = None
    ical_event_id: Optional[str] = None
    guest_name: Optional[str] = None
    check_in_date: Optional[datetime] = None
    check_out_date: Optional[datetime] = None
    nights_stayed: Optional[int] = None
    booking_description: Optional[str] = None
    reservation_url: Optional[str] = None
    phone_last_four: Optional[str] = None
    notes: str = ''
    is_emergency: bool = False
    host_id: str = ''
    host_first_name: str = ''
    host_last_name: str = ''
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    property_id: Optional[str] = None
    property_label: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_ical(self) -> bool:
        """Whether the job was created from a calendar feed."""
        return has_calendar_marker(
            self.source, self.reservation_id, self.ical_event_id
        )


@dataclass
class ReconcileResult:
    """Outcome of reconciling one property's bookings."""
    created: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class RemovalResult:
    """Outcome of removing calendar-linked jobs."""
    deleted: int = 0


@dataclass
class SyncResult:
    """Outcome of syncing a single property."""
    property_id: str
    jobs_created: int
    errors: List[str] = field(default_factory=list)


@dataclass
class BatchSyncResult:
    """Outcome of syncing every property with a calendar."""
    properties_synced: int = 0
    properties_failed: int = 0
    jobs_created: int = 0
    errors: List[str] = field(default_factory=list)
