"""Exception hierarchy and error taxonomy for statcache."""

from enum import Enum


class FetchErrorClass(str, Enum):
    """Classification of fetch errors for retry decisions and reporting.

    - TIMEOUT: Request timed out (transport timeout, 408, 504)
    - CONNECTIVITY: DNS, refused or unreachable host
    - RATE_LIMITED: 429 Too Many Requests
    - UNAVAILABLE: 503 Service Unavailable
    - CLIENT_ERROR: Non-retryable 4xx other than 429
    - EMPTY_RESPONSE: 2xx with no body
    - PARSE_FAILURE: Payload could not be decoded
    - CACHE_CORRUPTION: Persisted store could not be read
    - UNKNOWN: Unclassified error
    """

    TIMEOUT = "timeout"
    CONNECTIVITY = "connectivity"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    CLIENT_ERROR = "client_error"
    EMPTY_RESPONSE = "empty_response"
    PARSE_FAILURE = "parse_failure"
    CACHE_CORRUPTION = "cache_corruption"
    UNKNOWN = "unknown"


class StatCacheError(Exception):
    """Base exception for statcache errors.

    Provides structured error information for logging and reporting.
    """

    def __init__(
        self,
        message: str,
        error_class: FetchErrorClass = FetchErrorClass.UNKNOWN,
        resource_id: str | None = None,
        details: dict[str, str | int | bool | None] | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message.
            error_class: Classification of the error.
            resource_id: Identifier of the resource involved, if any.
            details: Additional structured error details.
        """
        super().__init__(message)
        self.message = message
        self.error_class = error_class
        self.resource_id = resource_id
        self.details = details or {}

    def to_dict(
        self,
    ) -> dict[str, str | int | bool | None | dict[str, str | int | bool | None]]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error_class": self.error_class.value,
            "message": self.message,
            "resource_id": self.resource_id,
            "details": self.details,
        }


class TransportError(StatCacheError):
    """Transport-level failure: no HTTP response was received.

    Raised at the boundary of each transport implementation so the
    classifier can work on a concrete type instead of message text.
    """

    def __init__(self, message: str, kind: FetchErrorClass) -> None:
        super().__init__(message, error_class=kind)
        self.kind = kind


class ParseFailure(StatCacheError):
    """A payload could not be decoded or interpreted."""

    def __init__(
        self,
        message: str,
        resource_id: str | None = None,
        details: dict[str, str | int | bool | None] | None = None,
    ) -> None:
        super().__init__(
            message,
            error_class=FetchErrorClass.PARSE_FAILURE,
            resource_id=resource_id,
            details=details,
        )


class CacheCorruptionError(StatCacheError):
    """A persisted store exists but cannot be read."""

    def __init__(self, message: str, path: str) -> None:
        super().__init__(
            message,
            error_class=FetchErrorClass.CACHE_CORRUPTION,
            details={"path": path},
        )
        self.path = path


class ConfigError(StatCacheError):
    """Configuration file is missing or invalid."""
