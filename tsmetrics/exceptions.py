"""
Errors raised by the tsmetrics client.
"""
from typing import Any, Iterable, Optional


class MetricsError(Exception):
    """Base class for all tsmetrics errors."""


class InvalidConfiguration(MetricsError, ValueError):
    """Raised when processor or measurement options are malformed or conflict."""

    def __init__(self, message: str, options: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.options = tuple(options) if options is not None else ()


class InvalidMeasureTime(MetricsError, ValueError):
    """Raised when a measurement timestamp is too far in the past."""


class UnknownPersistenceBackend(MetricsError, LookupError):
    """Raised when a persistence identifier has no registered backend."""

    def __init__(self, identifier: Any):
        super().__init__(f"Unknown persistence backend: {identifier!r}")
        self.identifier = identifier


class CredentialsMissing(MetricsError):
    """Raised when a request is attempted without an API key."""


class NoMetricsProvided(MetricsError):
    """Raised when a post is attempted with nothing to send."""


class ClientError(MetricsError):
    """
    The remote service rejected a request (authentication, payload, quota).

    Retrying the same request is not expected to succeed.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class BadRequest(ClientError):
    pass


class Unauthorized(ClientError):
    pass


class Forbidden(ClientError):
    pass


class NotFound(ClientError):
    pass


class RateLimited(ClientError):
    pass


class ServerError(MetricsError):
    """The remote service failed to handle a request (5xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
