"""Exception types raised by the calendar sync pipeline."""
from typing import Optional


class SyncError(Exception):
    """Base class for calendar sync failures."""


class FetchError(SyncError):
    """Calendar feed could not be retrieved.

    Raised for network errors, timeouts, non-2xx upstream responses and
    bodies that are not iCal content.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        invalid_content: bool = False
    ):
        super().__init__(message)
        self.status_code = status_code
        self.invalid_content = invalid_content


class StoreError(SyncError):
    """Job or property store operation failed."""


class PropertyNotFoundError(StoreError):
    """Requested property does not exist."""

    def __init__(self, property_id: str):
        super().__init__(f"Property not found: {property_id}")
        self.property_id = property_id
