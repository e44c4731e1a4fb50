from __future__ import annotations


class TransitError(Exception):
    """Base exception for all transit timetable errors."""


class CacheIOError(TransitError):
    """Raised when a cache file cannot be read or written.

    Never escapes BlobCache: it is logged there and treated as a cache miss.
    """


class NetworkError(TransitError):
    """Raised when an upstream request fails or returns an unexpected status.

    status_code is None for transport failures (timeouts, refused connections).
    """

    def __init__(self, status_code: int | None, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(message or f"Upstream API error ({status_code})")


class InvalidDataError(TransitError):
    """Raised when a JSON document or CSV table has an unusable structure."""


class PreconditionNotMet(TransitError):
    """Raised when timetable synthesis is requested without a complete selection."""


class UnknownOperatorError(TransitError):
    """Raised when an operator code does not match any known operator."""
