"""
Domain exceptions for UrbanWatch.

Services raise these; the API layer maps them onto the response
envelope and HTTP status codes. Notification consumers treat
UpstreamIntegrationError as non-fatal.
"""

from typing import Any


class UrbanWatchError(Exception):
    """Base exception for all UrbanWatch domain errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundOrUnauthorized(UrbanWatchError):
    """
    Raised when a record is missing or the actor has no access to it.

    Both cases produce the same error and message.
    """


class ValidationError(UrbanWatchError):
    """
    Raised when input fails validation.

    Attributes:
        field: Name of the offending field, if known
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.field = field


class PersistenceError(UrbanWatchError):
    """Raised when a database unit of work fails and has been rolled back."""


class UpstreamIntegrationError(UrbanWatchError):
    """
    Raised when an external service (SMS, email, AI) fails.

    Attributes:
        service: Name of the upstream service
        status_code: HTTP status code from the upstream API, if available
    """

    def __init__(
        self,
        message: str,
        service: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.service = service
        self.status_code = status_code
