"""Classification cache: session map, persistent stores and remote fallback."""

from committracer.cache.classification import (
    MISS,
    Dimension,
    IssueClassificationCache,
    TierLookup,
    classify_issue,
)
from committracer.cache.store import PersistentFlagStore

__all__ = [
    "IssueClassificationCache",
    "PersistentFlagStore",
    "Dimension",
    "TierLookup",
    "MISS",
    "classify_issue",
]
