"""Data models for the HTTP fetch layer."""

import hashlib
import random
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from statcache.errors import FetchErrorClass
from statcache.fetch.constants import (
    EXIT_ERROR,
    EXIT_RATE_LIMITED,
    EXIT_SUCCESS,
    EXIT_TIMEOUT,
)


RETRYABLE_ERROR_CLASSES = frozenset(
    {
        FetchErrorClass.RATE_LIMITED,
        FetchErrorClass.UNAVAILABLE,
        FetchErrorClass.TIMEOUT,
        FetchErrorClass.CONNECTIVITY,
    }
)

TRANSPORT_ERROR_CLASSES = frozenset(
    {FetchErrorClass.TIMEOUT, FetchErrorClass.CONNECTIVITY}
)


class TransportMethod(str, Enum):
    """Which transport implementation served a request."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class Request(BaseModel):
    """A ready-to-send request produced by a request builder."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: Annotated[str, Field(min_length=1)]
    method: Literal["GET", "POST", "HEAD"] = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes | None = None


class FetchError(BaseModel):
    """Typed error from a fetch operation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    error_class: FetchErrorClass = Field(description="Classification of the error")
    message: Annotated[str, Field(min_length=1, description="Human-readable message")]
    status_code: int | None = Field(
        default=None, description="HTTP status code if available"
    )
    retry_after: int | None = Field(
        default=None, description="Retry-After seconds (for 429)"
    )


class FetchResult(BaseModel):
    """Structured outcome of a retrying fetch.

    Failures are reported here rather than raised, so batch callers can
    carry on with other resources.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool
    payload: bytes | None = None
    status_code: int | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    error: FetchError | None = None
    attempts: Annotated[int, Field(ge=0)] = 0
    method_used: TransportMethod | None = None
    banned: bool = Field(
        default=False, description="Source looks blocked after repeated 429s"
    )

    @property
    def checksum(self) -> str | None:
        """MD5 hex digest of the payload."""
        if self.payload is None:
            return None
        return hashlib.md5(self.payload).hexdigest()  # noqa: S324

    @property
    def is_timeout(self) -> bool:
        """Check if the final failure was a timeout."""
        return (
            self.error is not None
            and self.error.error_class == FetchErrorClass.TIMEOUT
        )

    @property
    def exit_code(self) -> int:
        """Process exit code for this result."""
        if self.success:
            return EXIT_SUCCESS
        if self.is_timeout:
            return EXIT_TIMEOUT
        if self.error and self.error.error_class == FetchErrorClass.RATE_LIMITED:
            return EXIT_RATE_LIMITED
        return EXIT_ERROR

    @property
    def body_size(self) -> int:
        """Get the size of the payload in bytes."""
        return len(self.payload) if self.payload else 0


class HeadResult(BaseModel):
    """Outcome of a header-only request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool
    status_code: int | None = None
    last_modified: datetime | None = None
    content_length: int | None = None
    error: FetchError | None = None


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    Uses exponential backoff:
    delay = initial_backoff * (backoff_multiplier ^ (attempt - 1)), capped
    at max_backoff, jittered by +/- jitter_fraction and floored at min_backoff.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_retries: Annotated[int, Field(ge=0, le=10)] = 3
    initial_backoff: Annotated[float, Field(gt=0, le=300)] = 2.0
    backoff_multiplier: Annotated[float, Field(gt=1.0, le=10.0)] = 2.0
    max_backoff: Annotated[float, Field(gt=0, le=600)] = 60.0
    min_backoff: Annotated[float, Field(gt=0, le=60)] = 1.0
    jitter_fraction: Annotated[float, Field(ge=0.0, lt=1.0)] = 0.2
    ban_detection_threshold: Annotated[int, Field(gt=0)] = 3

    @property
    def max_attempts(self) -> int:
        """Total number of attempts including the first."""
        return self.max_retries + 1

    def get_backoff_seconds(self, attempt: int) -> float:
        """Calculate the wait after a failed attempt.

        Args:
            attempt: The attempt that just failed (1-indexed).

        Returns:
            Delay in seconds.
        """
        delay = self.initial_backoff * (self.backoff_multiplier ** (attempt - 1))
        delay = min(delay, self.max_backoff)

        jitter_range = delay * self.jitter_fraction
        jitter = random.uniform(-jitter_range, jitter_range)  # noqa: S311
        return max(self.min_backoff, delay + jitter)


class RateLimitPolicy(BaseModel):
    """Minimum spacing between requests to one source."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    delay: Annotated[float, Field(ge=0, le=600)] = 13.0
    min_delay: Annotated[float, Field(gt=0, le=600)] = 5.0
    jitter_fraction: Annotated[float, Field(ge=0.0, lt=1.0)] = 0.1

    @property
    def effective_delay(self) -> float:
        """Configured delay, never below the floor."""
        return max(self.delay, self.min_delay)
