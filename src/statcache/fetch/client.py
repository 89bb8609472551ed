"""Retrying HTTP fetcher with per-source throttling and transport fallback."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from http import HTTPStatus
from pathlib import Path

import structlog

from statcache.errors import TransportError
from statcache.fetch.classify import classify_failure, detect_ban, is_retryable
from statcache.fetch.config import FetchConfig, SourceProfile
from statcache.fetch.constants import (
    HTTP_STATUS_OK_MAX,
    HTTP_STATUS_OK_MIN,
    MAX_RETRY_AFTER_SECONDS,
)
from statcache.fetch.models import (
    TRANSPORT_ERROR_CLASSES,
    FetchError,
    FetchErrorClass,
    FetchResult,
    HeadResult,
    Request,
    RetryPolicy,
    TransportMethod,
)
from statcache.fetch.rate_limiter import RateLimiterProtocol, get_source_rate_limiter
from statcache.fetch.redact import redact_headers, redact_url
from statcache.fetch.transports import (
    HttpxTransport,
    RequestsTransport,
    Transport,
    TransportResponse,
)
from statcache.metrics import FetchMetrics
from statcache.store.io import AtomicWriter


logger = structlog.get_logger()


@dataclass(frozen=True)
class _Attempt:
    """Outcome of one attempt, after any same-attempt fallback."""

    method: TransportMethod
    response: TransportResponse | None = None
    error: FetchError | None = None


def parse_retry_after(value: str | None) -> int | None:
    """Parse a Retry-After header.

    Args:
        value: Header value, either seconds or an HTTP date.

    Returns:
        Seconds to wait, or None if absent or unparseable.
    """
    if not value:
        return None
    try:
        return max(0, int(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0, int((when - datetime.now(UTC)).total_seconds()))


def parse_http_date(value: str | None) -> datetime | None:
    """Parse an HTTP date header into an aware datetime."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class RetryingFetcher:
    """HTTP client adding throttling, classified retries and fallback.

    Every request passes through the rate limiter of its source. Transport
    failures fall back to the secondary transport within the same attempt;
    HTTP errors never do. Failures are returned as FetchResult, never raised.
    """

    def __init__(
        self,
        config: FetchConfig | None = None,
        primary: Transport | None = None,
        secondary: Transport | None = None,
        fallback: bool = True,
        limiters: dict[str, RateLimiterProtocol] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: Fetch configuration.
            primary: Primary transport (httpx by default).
            secondary: Fallback transport (requests by default).
            fallback: Whether to use a secondary transport at all.
            limiters: Per-source limiters; defaults to the shared registry.
            sleep: Sleep function used for backoff.
        """
        self._config = config or FetchConfig()
        self._primary = primary or HttpxTransport()
        self._secondary = (secondary or RequestsTransport()) if fallback else None
        self._limiters = limiters or {}
        self._sleep = sleep
        self._metrics = FetchMetrics.get_instance()
        self._writer = AtomicWriter(component="download")
        self._log = logger.bind(component="fetch")

    @property
    def config(self) -> FetchConfig:
        return self._config

    def limiter_for(self, source: str) -> RateLimiterProtocol:
        """Get the rate limiter shared by all callers of a source."""
        if source not in self._limiters:
            profile = self._config.get_profile(source)
            self._limiters[source] = get_source_rate_limiter(
                source, profile.rate_limit
            )
        return self._limiters[source]

    def fetch(
        self,
        request: Request,
        source: str | None = None,
        policy: RetryPolicy | None = None,
        timeout: float | None = None,
    ) -> FetchResult:
        """Fetch with throttling, retries and transport fallback.

        Args:
            request: Request to send.
            source: Logical upstream source; selects limiter and defaults.
            policy: Retry policy override.
            timeout: Per-call timeout override in seconds.

        Returns:
            FetchResult carrying payload or last error, and attempt count.
        """
        source = source or self._config.default_source
        profile = self._config.get_profile(source)
        policy = policy or profile.retry_policy
        timeout = timeout or profile.timeout_seconds
        limiter = self.limiter_for(source)
        request = self._prepare(request, profile)

        log = self._log.bind(
            source=source,
            url=redact_url(request.url),
            method=request.method,
        )
        start = time.perf_counter()

        last = _Attempt(method=self._primary.method)
        attempt = 0
        for attempt in range(1, policy.max_attempts + 1):
            self._metrics.record_throttle(limiter.throttle())
            last = self._attempt(request, timeout, log.bind(attempt=attempt))

            if last.error is None and last.response is not None:
                limiter.record_success()
                self._metrics.record_success(last.method)
                log.info(
                    "fetch_complete",
                    status_code=last.response.status_code,
                    bytes=len(last.response.body),
                    attempts=attempt,
                    method_used=last.method.value,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )
                return FetchResult(
                    success=True,
                    payload=last.response.body,
                    status_code=last.response.status_code,
                    headers=last.response.headers,
                    attempts=attempt,
                    method_used=last.method,
                )

            error = last.error or FetchError(
                error_class=FetchErrorClass.UNKNOWN, message="no response"
            )

            if error.error_class == FetchErrorClass.RATE_LIMITED:
                consecutive = limiter.record_rate_limited()
                if detect_ban(consecutive, policy.ban_detection_threshold, source):
                    return self._failure(last, attempt, log, banned=True)

            if not is_retryable(error.error_class):
                return self._failure(last, attempt, log)

            if attempt >= policy.max_attempts:
                break

            delay = policy.get_backoff_seconds(attempt)
            if error.retry_after:
                delay = max(delay, min(error.retry_after, MAX_RETRY_AFTER_SECONDS))
            self._metrics.record_retry()
            log.info(
                "retry_attempt",
                attempt=attempt,
                delay_seconds=round(delay, 3),
                error_class=error.error_class.value,
                max_retries=policy.max_retries,
            )
            self._sleep(delay)

        return self._failure(last, attempt, log)

    def head(
        self,
        url: str,
        source: str | None = None,
        timeout: float | None = None,
    ) -> HeadResult:
        """Issue a single throttled header-only request.

        A 429 counts towards the source's consecutive rate-limit total and
        a success resets it, as for fetch.

        Args:
            url: URL to check.
            source: Logical upstream source.
            timeout: Timeout override in seconds.

        Returns:
            HeadResult with Last-Modified and Content-Length when present.
        """
        source = source or self._config.default_source
        profile = self._config.get_profile(source)
        request = self._prepare(Request(url=url, method="HEAD"), profile)
        log = self._log.bind(source=source, url=redact_url(url), method="HEAD")

        limiter = self.limiter_for(source)
        self._metrics.record_throttle(limiter.throttle())
        outcome = self._attempt(
            request, timeout or profile.timeout_seconds, log, allow_empty=True
        )
        if outcome.error is not None or outcome.response is None:
            if (
                outcome.error is not None
                and outcome.error.error_class == FetchErrorClass.RATE_LIMITED
            ):
                detect_ban(
                    limiter.record_rate_limited(),
                    profile.retry_policy.ban_detection_threshold,
                    source,
                )
            log.info(
                "head_failed",
                error_class=outcome.error.error_class.value if outcome.error else None,
            )
            return HeadResult(
                success=False,
                status_code=outcome.error.status_code if outcome.error else None,
                error=outcome.error,
            )

        limiter.record_success()
        headers = outcome.response.headers
        content_length = headers.get("content-length")
        return HeadResult(
            success=True,
            status_code=outcome.response.status_code,
            last_modified=parse_http_date(headers.get("last-modified")),
            content_length=int(content_length)
            if content_length and content_length.isdigit()
            else None,
        )

    def download(
        self,
        url: str,
        dest: Path,
        source: str | None = None,
        policy: RetryPolicy | None = None,
        timeout: float | None = None,
    ) -> FetchResult:
        """Fetch a binary resource and store it atomically at dest.

        A failed download leaves any previous file at dest untouched.
        """
        result = self.fetch(
            Request(url=url), source=source, policy=policy, timeout=timeout
        )
        if result.success and result.payload is not None:
            self._writer.write_bytes(dest, result.payload)
        return result

    def _prepare(self, request: Request, profile: SourceProfile) -> Request:
        headers = {"User-Agent": self._config.user_agent, "Accept": "*/*"}
        headers.update(profile.headers)
        headers.update(request.headers)
        return request.model_copy(update={"headers": headers})

    def _attempt(
        self,
        request: Request,
        timeout: float,
        log: structlog.stdlib.BoundLogger,
        allow_empty: bool = False,
    ) -> _Attempt:
        """Send once, falling back to the secondary transport on transport errors."""
        log.debug("request_sent", headers=redact_headers(request.headers))
        try:
            response = self._primary.send(request, timeout)
            return self._evaluate(response, self._primary.method, allow_empty)
        except TransportError as e:
            self._metrics.record_transport_error()
            primary_error = FetchError(error_class=e.kind, message=e.message)
            if e.kind not in TRANSPORT_ERROR_CLASSES or self._secondary is None:
                return _Attempt(method=self._primary.method, error=primary_error)
            log.warning(
                "primary_transport_failed",
                error_class=e.kind.value,
                error=e.message,
            )

        self._metrics.record_fallback()
        try:
            response = self._secondary.send(request, timeout)
        except TransportError as e:
            self._metrics.record_transport_error()
            return _Attempt(
                method=self._secondary.method,
                error=FetchError(error_class=e.kind, message=e.message),
            )
        return self._evaluate(response, self._secondary.method, allow_empty)

    def _evaluate(
        self,
        response: TransportResponse,
        method: TransportMethod,
        allow_empty: bool,
    ) -> _Attempt:
        """Turn an HTTP response into success or a classified error."""
        status = response.status_code
        self._metrics.record_response(status, len(response.body))

        if HTTP_STATUS_OK_MIN <= status < HTTP_STATUS_OK_MAX:
            if response.body or allow_empty:
                return _Attempt(method=method, response=response)
            return _Attempt(
                method=method,
                error=FetchError(
                    error_class=FetchErrorClass.EMPTY_RESPONSE,
                    message="empty response",
                    status_code=status,
                ),
            )

        error_class = classify_failure(status_code=status)
        reason = response.reason or _status_phrase(status)
        return _Attempt(
            method=method,
            error=FetchError(
                error_class=error_class,
                message=f"HTTP {status}: {reason}",
                status_code=status,
                retry_after=parse_retry_after(response.headers.get("retry-after")),
            ),
        )

    def _failure(
        self,
        last: _Attempt,
        attempts: int,
        log: structlog.stdlib.BoundLogger,
        banned: bool = False,
    ) -> FetchResult:
        error = last.error or FetchError(
            error_class=FetchErrorClass.UNKNOWN, message="request failed"
        )
        self._metrics.record_failure(error.error_class)
        log.warning(
            "fetch_failed",
            error_class=error.error_class.value,
            error=error.message,
            status_code=error.status_code,
            attempts=attempts,
            banned=banned,
        )
        return FetchResult(
            success=False,
            status_code=error.status_code,
            error=error,
            attempts=attempts,
            method_used=last.method,
            banned=banned,
        )


def _status_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Unknown status"
