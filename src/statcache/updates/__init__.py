"""Incremental update detection, merge and binary freshness checks."""

from statcache.updates.freshness import (
    FreshnessChecker,
    FreshnessConfig,
    FreshnessDecision,
    FreshnessReason,
)
from statcache.updates.merge import merge
from statcache.updates.tracker import (
    BatchDecision,
    RefetchDecision,
    RefetchReason,
    RemoteSignalProvider,
    UpdateTracker,
)


__all__ = [
    "BatchDecision",
    "FreshnessChecker",
    "FreshnessConfig",
    "FreshnessDecision",
    "FreshnessReason",
    "RefetchDecision",
    "RefetchReason",
    "RemoteSignalProvider",
    "UpdateTracker",
    "merge",
]
