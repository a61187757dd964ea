"""Exception types raised while scraping the Monitoring API."""
from typing import Optional


class ExporterError(Exception):
    """Base class for exporter errors."""


class MonitoringApiError(ExporterError):
    """A Monitoring API request failed (transport, HTTP status or auth)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(ExporterError):
    """Data returned by the API could not be decoded."""


class IngestDelayError(DecodeError):
    """A descriptor declared an ingest delay that is not a valid duration."""


class TimestampError(DecodeError):
    """A point interval carried a malformed timestamp."""


class UnknownBucketOptionsError(DecodeError):
    """A distribution used none of the known bucket option variants."""
