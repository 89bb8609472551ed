"""Failure classification shared by every retry decision.

Status codes win over everything else. Typed transport exceptions are
classified by type. Message matching is only used for opaque errors.
"""

import httpx
import requests
import structlog

from statcache.errors import StatCacheError, TransportError
from statcache.fetch.constants import (
    HTTP_STATUS_BAD_REQUEST,
    HTTP_STATUS_GATEWAY_TIMEOUT,
    HTTP_STATUS_REQUEST_TIMEOUT,
    HTTP_STATUS_SERVER_ERROR_MIN,
    HTTP_STATUS_SERVICE_UNAVAILABLE,
    HTTP_STATUS_TOO_MANY_REQUESTS,
)
from statcache.fetch.models import RETRYABLE_ERROR_CLASSES, FetchErrorClass


logger = structlog.get_logger()

TIMEOUT_PHRASES = ("timeout", "timed out", "time out", "gateway timeout")
CONNECTIVITY_PHRASES = (
    "resolve",
    "connection",
    "network",
    "internet",
    "dns",
    "refused",
    "unreachable",
    "host",
)
RATE_LIMIT_PHRASES = ("429", "too many requests", "rate limit")


def classify_status(status_code: int) -> FetchErrorClass | None:
    """Classify an HTTP status code.

    Args:
        status_code: HTTP status code.

    Returns:
        Error class, or None for non-error statuses.
    """
    if status_code < HTTP_STATUS_BAD_REQUEST:
        return None
    if status_code == HTTP_STATUS_TOO_MANY_REQUESTS:
        return FetchErrorClass.RATE_LIMITED
    if status_code == HTTP_STATUS_SERVICE_UNAVAILABLE:
        return FetchErrorClass.UNAVAILABLE
    if status_code in (HTTP_STATUS_REQUEST_TIMEOUT, HTTP_STATUS_GATEWAY_TIMEOUT):
        return FetchErrorClass.TIMEOUT
    if status_code < HTTP_STATUS_SERVER_ERROR_MIN:
        return FetchErrorClass.CLIENT_ERROR
    return FetchErrorClass.UNKNOWN


def classify_message(message: str) -> FetchErrorClass:
    """Classify an opaque error message by case-insensitive substring."""
    text = message.lower()
    if any(phrase in text for phrase in RATE_LIMIT_PHRASES):
        return FetchErrorClass.RATE_LIMITED
    if any(phrase in text for phrase in TIMEOUT_PHRASES):
        return FetchErrorClass.TIMEOUT
    if any(phrase in text for phrase in CONNECTIVITY_PHRASES):
        return FetchErrorClass.CONNECTIVITY
    return FetchErrorClass.UNKNOWN


def classify_exception(exc: BaseException) -> FetchErrorClass:
    """Classify an exception raised by a transport.

    Args:
        exc: The exception.

    Returns:
        Error class derived from the exception type, or from its message
        when the type carries no information.
    """
    if isinstance(exc, TransportError):
        return exc.kind
    if isinstance(exc, StatCacheError):
        return exc.error_class
    if isinstance(exc, httpx.TimeoutException | requests.Timeout | TimeoutError):
        return FetchErrorClass.TIMEOUT
    if isinstance(
        exc,
        httpx.ConnectError
        | httpx.NetworkError
        | requests.ConnectionError
        | ConnectionError,
    ):
        return FetchErrorClass.CONNECTIVITY
    return classify_message(str(exc))


def classify_failure(
    *,
    status_code: int | None = None,
    error: BaseException | str | None = None,
) -> FetchErrorClass:
    """Map a failed request to the error taxonomy.

    Args:
        status_code: HTTP status code, when a response was received.
        error: Exception or message describing the failure.

    Returns:
        Error class. A present error status code takes precedence.
    """
    if status_code is not None:
        by_status = classify_status(status_code)
        if by_status is not None:
            return by_status
    if isinstance(error, BaseException):
        return classify_exception(error)
    if error:
        return classify_message(error)
    return FetchErrorClass.UNKNOWN


def is_retryable(error_class: FetchErrorClass) -> bool:
    """Check whether an error class is eligible for retry."""
    return error_class in RETRYABLE_ERROR_CLASSES


def detect_ban(consecutive_rate_limited: int, threshold: int, source: str = "") -> bool:
    """Check whether repeated 429s suggest the source has blocked us.

    Args:
        consecutive_rate_limited: Count of 429 responses in a row.
        threshold: Count at which the source is treated as blocking.
        source: Source name for the log message.

    Returns:
        True if the threshold has been reached.
    """
    if consecutive_rate_limited < threshold:
        return False
    logger.warning(
        "source_possibly_banned",
        source=source,
        consecutive_429=consecutive_rate_limited,
        threshold=threshold,
        hint="Received repeated 429 responses; the client may be temporarily "
        "banned. Wait before retrying.",
    )
    return True
