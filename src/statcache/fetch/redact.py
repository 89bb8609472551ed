"""Scrubbing of secrets before URLs and headers reach the logs."""

import re


SENSITIVE_HEADERS = frozenset(
    {"authorization", "cookie", "proxy-authorization", "x-api-key"}
)
REDACTED_VALUE = "[REDACTED]"

_URL_CREDENTIALS = re.compile(r"(https?://)[^/@:]+:[^/@]+@")


def redact_url(url: str) -> str:
    """Replace user:password@ in a URL."""
    return _URL_CREDENTIALS.sub(rf"\1{REDACTED_VALUE}@", url)


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    """Copy headers with sensitive values masked."""
    return {
        key: REDACTED_VALUE if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }
