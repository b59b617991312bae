"""Shared fixtures for calendar sync tests."""
import os
from datetime import datetime
from typing import Dict, List, Optional
from unittest.mock import patch

import pytest

from processor.models import CleaningJob, Property
from sync.exceptions import PropertyNotFoundError, StoreError


class InMemoryStore:
    """Dict-backed job/property store with the DynamoDBManager contract."""

    def __init__(self, properties: Optional[List[Property]] = None):
        self.jobs: Dict[str, CleaningJob] = {}
        self.properties: Dict[str, Property] = {
            prop.id: prop for prop in (properties or [])
        }
        self.property_updates: List[tuple] = []
        self.fail_create_for: set = set()

    def find_jobs(self, address, preferred_date=None, preferred_date_from=None,
                  status_in=None):
        matches = []
        for job in self.jobs.values():
            if job.address != address:
                continue
            if preferred_date is not None and job.preferred_date != preferred_date:
                continue
            if preferred_date_from is not None and job.preferred_date < preferred_date_from:
                continue
            if status_in is not None and job.status not in set(status_in):
                continue
            matches.append(job)
        return matches

    def find_calendar_job_ids(self, address, preferred_date_from):
        return [
            job.id for job in self.find_jobs(address, preferred_date_from=preferred_date_from)
            if job.is_ical
        ]

    def create_job(self, job):
        if job.reservation_id in self.fail_create_for:
            raise StoreError(f"write rejected for {job.reservation_id}")
        self.jobs[job.id] = job
        return job.id

    def delete_jobs(self, job_ids):
        for job_id in job_ids:
            self.jobs.pop(job_id, None)
        return len(job_ids)

    def get_property(self, property_id):
        if property_id not in self.properties:
            raise PropertyNotFoundError(property_id)
        return self.properties[property_id]

    def list_properties_with_calendar(self):
        return [prop for prop in self.properties.values() if prop.has_calendar]

    def update_property(self, property_id, last_synced_at):
        self.property_updates.append((property_id, last_synced_at))


@pytest.fixture(autouse=True)
def aws_credentials():
    """Fake AWS credentials so boto3 never reaches a real account."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def now():
    """Fixed 'now' in local time, before the sample feed's checkouts."""
    return datetime(2025, 6, 1, 12, 0, 0).astimezone()


@pytest.fixture
def sample_property():
    return Property(
        id='prop-1',
        address='1 Main St',
        calendar_url='https://www.airbnb.com/calendar/ical/123.ics?s=abc',
        latitude=28.5,
        longitude=-81.4,
        owner_id='host-1',
        owner_display_name='Jane Host',
        label='Beach House'
    )


@pytest.fixture
def store(sample_property):
    return InMemoryStore([sample_property])


@pytest.fixture
def sample_feed():
    """Feed with one reservation and one blocked range."""
    return (
        "BEGIN:VCALENDAR\r\n"
        "VERSION:2.0\r\n"
        "PRODID:-//Airbnb Inc//Hosting Calendar 0.8.8//EN\r\n"
        "BEGIN:VEVENT\r\n"
        "DTSTART;VALUE=DATE:20250701\r\n"
        "DTEND;VALUE=DATE:20250705\r\n"
        "UID:1418fb94e984-abc@airbnb.com\r\n"
        "SUMMARY:Reserved\r\n"
        "DESCRIPTION:Reservation URL: https://www.airbnb.com/hosting/reservations/\r\n"
        " details/HMABC123\\nPhone Number (Last 4 Digits): 7890\r\n"
        "END:VEVENT\r\n"
        "BEGIN:VEVENT\r\n"
        "DTSTART;VALUE=DATE:20250710\r\n"
        "DTEND;VALUE=DATE:20250712\r\n"
        "UID:7f6e5d4c3b2a-def@airbnb.com\r\n"
        "SUMMARY:Airbnb (Not available)\r\n"
        "END:VEVENT\r\n"
        "END:VCALENDAR\r\n"
    )
