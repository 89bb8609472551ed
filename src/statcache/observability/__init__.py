"""Logging setup."""

from statcache.observability.logging import (
    bind_context,
    clear_context,
    configure_logging,
)


__all__ = ["bind_context", "clear_context", "configure_logging"]
