"""Configuration models for the HTTP fetch layer."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from statcache.fetch.constants import SOURCE_DATA, SOURCE_FILES
from statcache.fetch.models import RateLimitPolicy, RetryPolicy


class SourceProfile(BaseModel):
    """Per-source settings: pacing, retries and timeout.

    Each logical upstream source gets its own rate limiter, so sources with
    independent limits never slow each other down.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rate_limit: RateLimitPolicy = Field(default_factory=RateLimitPolicy)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    timeout_seconds: Annotated[float, Field(gt=0, le=3600.0)] = 120.0
    headers: dict[str, str] = Field(
        default_factory=dict, description="Headers to add for this source"
    )

    @field_validator("headers")
    @classmethod
    def validate_no_auth_headers(cls, v: dict[str, str]) -> dict[str, str]:
        """Ensure no credentials are stored in config."""
        forbidden = {"authorization", "cookie", "x-api-key"}
        for key in v:
            if key.lower() in forbidden:
                msg = (
                    f"Header '{key}' must not be stored in config; "
                    "use environment variables"
                )
                raise ValueError(msg)
        return v


def _default_sources() -> dict[str, SourceProfile]:
    return {
        SOURCE_DATA: SourceProfile(
            rate_limit=RateLimitPolicy(delay=13.0, min_delay=5.0, jitter_fraction=0.1),
        ),
        SOURCE_FILES: SourceProfile(
            rate_limit=RateLimitPolicy(delay=2.0, min_delay=1.0, jitter_fraction=0.1),
        ),
    }


class FetchConfig(BaseModel):
    """Configuration for the HTTP fetch layer."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    user_agent: Annotated[str, Field(min_length=1, max_length=500)] = (
        "statcache/0.1"
    )
    default_source: str = SOURCE_DATA
    sources: dict[str, SourceProfile] = Field(default_factory=_default_sources)

    def get_profile(self, source: str) -> SourceProfile:
        """Get the profile for a source, falling back to defaults.

        Args:
            source: Source name.

        Returns:
            The configured profile, or a default one for unknown sources.
        """
        return self.sources.get(source) or SourceProfile()
