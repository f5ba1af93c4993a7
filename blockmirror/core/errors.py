"""Exceptions raised across the BlockMirror sync pipeline."""

from typing import Optional


class BlockMirrorError(Exception):
    """Base class for BlockMirror errors."""


class ConfigurationError(BlockMirrorError):
    """Required run configuration is missing."""


class CalendarServiceError(BlockMirrorError):
    """A Calendar API request was rejected."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
        self.message = message


class SyncTokenInvalidError(CalendarServiceError):
    """The service no longer accepts the stored incremental sync token."""


class WriteFailure(CalendarServiceError):
    """An insert, update or delete was rejected by the service."""


class FetchFatal(BlockMirrorError):
    """A change-feed fetch failed for a reason other than an expired token."""

    def __init__(self, calendar_id: str, cause: Exception):
        super().__init__(f"Fetching events from {calendar_id} failed: {cause}")
        self.calendar_id = calendar_id
        self.cause = cause
