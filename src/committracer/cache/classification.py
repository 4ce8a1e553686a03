"""Three-tier cache for ticket classifications.

Lookups go through an in-process session map, then a persistent on-disk store,
and only then the remote issue classifier. Results of remote fetches are
written to both tiers so that a ticket is fetched at most once per cache
generation, across process restarts.
"""

import asyncio
from enum import Enum
from pathlib import Path
from typing import Dict, NamedTuple, Optional, Set

import structlog

from committracer.cache.store import PersistentFlagStore
from committracer.exceptions import (
    IssueNotFoundError,
    StoreCorruptedError,
    StoreError,
    TrackerTransientError,
)
from committracer.models import UNCLASSIFIED, Classification, IssueDetails
from committracer.tracker.base import BaseIssueClassifier

logger = structlog.get_logger(__name__)

BLOCKER_TAG_PREFIX = "blocking-"
REGRESSION_MARKER = "regression"


class Dimension(str, Enum):
    """Boolean property of a ticket kept in its own persistent store."""

    BLOCKER = "blocker"
    REGRESSION = "regression"


class TierLookup(NamedTuple):
    """Outcome of a cache tier lookup. ``value`` is meaningful only if ``found``."""

    found: bool
    value: bool = False


MISS = TierLookup(found=False)


def classify_issue(issue: IssueDetails) -> Classification:
    """Derive blocker/regression status from issue tags and summary.

    Args:
        issue: Issue details fetched from the tracker

    Returns:
        Classification of the issue
    """
    tags = [tag.lower() for tag in issue.tags]
    is_blocker = any(tag.startswith(BLOCKER_TAG_PREFIX) for tag in tags)
    is_regression = any(REGRESSION_MARKER in tag for tag in tags) or (
        REGRESSION_MARKER in issue.summary.lower()
    )
    return Classification(is_blocker=is_blocker, is_regression=is_regression)


class IssueClassificationCache:
    """Answers "is ticket T a blocker / a regression?" with minimal remote calls.

    Construct once and pass to every consumer. Call :meth:`close` (or use the
    instance as a context manager) before the process exits.
    """

    def __init__(
        self,
        classifier: Optional[BaseIssueClassifier],
        cache_dir: Optional[Path] = None,
        persistent: bool = True,
        fetch_timeout: float = 30.0,
    ) -> None:
        """Initialize the cache.

        Args:
            classifier: Remote classifier; None disables the network fallback
            cache_dir: Directory for the persistent stores (defaults to ~/.committracer/cache)
            persistent: Whether to keep classifications on disk
            fetch_timeout: Upper bound in seconds for a single remote fetch
        """
        self.classifier = classifier
        if cache_dir is None:
            cache_dir = Path.home() / ".committracer" / "cache"
        self.cache_dir = Path(cache_dir)
        self.fetch_timeout = fetch_timeout

        self._session: Dict[Dimension, Dict[str, bool]] = {d: {} for d in Dimension}
        # Tickets the tracker reported as missing; never persisted
        self._not_found: Set[str] = set()
        self._ticket_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        # Summaries of tickets fetched this session
        self._summaries: Dict[str, str] = {}
        self._stores: Dict[Dimension, PersistentFlagStore] = {}

        # Stats
        self.cache_hits = 0
        self.session_hits = 0
        self.persistent_hits = 0
        self.remote_calls = 0
        self.remote_failures = 0

        if persistent:
            self._open_stores()

    @property
    def persistent_enabled(self) -> bool:
        """Whether the persistent tier is active."""
        return bool(self._stores)

    def _store_path(self, dimension: Dimension) -> Path:
        return self.cache_dir / dimension.value

    def _open_all(self) -> Dict[Dimension, PersistentFlagStore]:
        stores: Dict[Dimension, PersistentFlagStore] = {}
        try:
            for dimension in Dimension:
                stores[dimension] = PersistentFlagStore.open(self._store_path(dimension))
        except StoreError:
            for store in stores.values():
                store.close()
            raise
        return stores

    def _open_stores(self) -> None:
        """Open the persistent stores, recreating them if they are corrupt.

        Falls back to session-only operation if the stores cannot be used.
        """
        try:
            self._stores = self._open_all()
            return
        except StoreCorruptedError as e:
            logger.warning("persistent_cache_corrupted", cache_dir=str(self.cache_dir), error=str(e))
        except (StoreError, OSError) as e:
            logger.warning("persistent_cache_disabled", cache_dir=str(self.cache_dir), error=str(e))
            return

        try:
            for dimension in Dimension:
                PersistentFlagStore.delete_files(self._store_path(dimension))
            self._stores = self._open_all()
            logger.info("persistent_cache_recreated", cache_dir=str(self.cache_dir))
        except (StoreError, OSError) as e:
            self._stores = {}
            logger.warning("persistent_cache_disabled", cache_dir=str(self.cache_dir), error=str(e))

    def lookup(self, ticket_id: str, dimension: Dimension) -> TierLookup:
        """Look a flag up in the session tier, then the persistent tier.

        A persistent hit is promoted into the session tier. Never touches the
        network.

        Args:
            ticket_id: Ticket ID
            dimension: Flag to look up

        Returns:
            TierLookup with ``found=False`` on a miss
        """
        session = self._session[dimension]
        if ticket_id in session:
            self.session_hits += 1
            return TierLookup(found=True, value=session[ticket_id])

        store = self._stores.get(dimension)
        if store is None:
            return MISS

        try:
            value = store.get(ticket_id)
        except StoreError as e:
            logger.warning("persistent_cache_read_failed", ticket=ticket_id, error=str(e))
            return MISS

        if value is None:
            return MISS

        session[ticket_id] = value
        self.persistent_hits += 1
        return TierLookup(found=True, value=value)

    def _cached(self, ticket_id: str) -> Optional[Classification]:
        if ticket_id in self._not_found:
            return UNCLASSIFIED

        blocker = self.lookup(ticket_id, Dimension.BLOCKER)
        regression = self.lookup(ticket_id, Dimension.REGRESSION)
        if blocker.found and regression.found:
            return Classification(is_blocker=blocker.value, is_regression=regression.value)
        return None

    async def classify(self, ticket_id: str) -> Classification:
        """Classify a ticket, fetching it remotely only on a cache miss.

        Concurrent calls for the same ticket share a single remote fetch.

        Args:
            ticket_id: Ticket ID

        Returns:
            Classification; not-found and unreachable tickets degrade to
            "neither blocker nor regression"

        Raises:
            TrackerAuthError: If the tracker rejects the credentials
        """
        cached = self._cached(ticket_id)
        if cached is not None:
            self.cache_hits += 1
            return cached

        lock = self._ticket_locks.setdefault(ticket_id, asyncio.Lock())
        self._lock_users[ticket_id] = self._lock_users.get(ticket_id, 0) + 1
        try:
            async with lock:
                # Another worker may have fetched it while we waited
                cached = self._cached(ticket_id)
                if cached is not None:
                    self.cache_hits += 1
                    return cached
                return await self._fetch_and_store(ticket_id)
        finally:
            self._release_lock(ticket_id)

    def _release_lock(self, ticket_id: str) -> None:
        # Drop the lock once no caller holds or awaits it
        self._lock_users[ticket_id] -= 1
        if not self._lock_users[ticket_id]:
            del self._lock_users[ticket_id]
            del self._ticket_locks[ticket_id]

    async def is_blocker(self, ticket_id: str) -> bool:
        """Check whether a ticket is tagged ``blocking-*``."""
        hit = self.lookup(ticket_id, Dimension.BLOCKER)
        if hit.found:
            self.cache_hits += 1
            return hit.value
        return (await self.classify(ticket_id)).is_blocker

    async def is_regression(self, ticket_id: str) -> bool:
        """Check whether a ticket's tags or summary mention a regression."""
        hit = self.lookup(ticket_id, Dimension.REGRESSION)
        if hit.found:
            self.cache_hits += 1
            return hit.value
        return (await self.classify(ticket_id)).is_regression

    def summary(self, ticket_id: str) -> Optional[str]:
        """Issue summary of a ticket fetched during this session, if any."""
        return self._summaries.get(ticket_id)

    async def _fetch_and_store(self, ticket_id: str) -> Classification:
        if self.classifier is None:
            return UNCLASSIFIED

        self.remote_calls += 1
        try:
            issue = await asyncio.wait_for(self.classifier.fetch(ticket_id), self.fetch_timeout)
        except IssueNotFoundError:
            self._not_found.add(ticket_id)
            return UNCLASSIFIED
        except (TrackerTransientError, asyncio.TimeoutError) as e:
            self.remote_failures += 1
            logger.warning("classification_unavailable", ticket=ticket_id, error=str(e) or "timeout")
            return UNCLASSIFIED

        classification = classify_issue(issue)
        if issue.summary:
            self._summaries[ticket_id] = issue.summary
        logger.debug(
            "ticket_classified",
            ticket=ticket_id,
            blocker=classification.is_blocker,
            regression=classification.is_regression,
        )
        return Classification(
            is_blocker=self._store(ticket_id, Dimension.BLOCKER, classification.is_blocker),
            is_regression=self._store(ticket_id, Dimension.REGRESSION, classification.is_regression),
        )

    def _store(self, ticket_id: str, dimension: Dimension, value: bool) -> bool:
        """Write a flag to both tiers unless ``True`` is already cached.

        Returns:
            The value now cached for the ticket
        """
        existing = self.lookup(ticket_id, dimension)
        if existing.found and existing.value:
            return True

        self._session[dimension][ticket_id] = value
        store = self._stores.get(dimension)
        if store is not None:
            try:
                store.put(ticket_id, value)
            except StoreError as e:
                logger.warning("persistent_cache_write_failed", ticket=ticket_id, error=str(e))
        return value

    def clear(self, persistent: bool = False) -> None:
        """Clear the session tier, and the persistent stores if requested.

        Args:
            persistent: Also remove every persisted classification
        """
        for session in self._session.values():
            session.clear()
        self._not_found.clear()
        self._summaries.clear()

        if persistent:
            for dimension, store in self._stores.items():
                try:
                    removed = store.clear()
                    logger.info("persistent_cache_cleared", dimension=dimension.value, removed=removed)
                except StoreError as e:
                    logger.warning("persistent_cache_clear_failed", dimension=dimension.value, error=str(e))

        self.cache_hits = 0
        self.session_hits = 0
        self.persistent_hits = 0
        self.remote_calls = 0
        self.remote_failures = 0

    def flush(self) -> None:
        """Force durable writes of the persistent stores."""
        for store in self._stores.values():
            store.flush()

    def close(self) -> None:
        """Flush and release the persistent stores."""
        for store in self._stores.values():
            store.close()
        self._stores = {}

    def get_stats(self) -> dict:
        """Get cache statistics.

        Returns:
            Dictionary with cache stats
        """
        # Per ticket: tier hit counters are per dimension
        lookups = self.cache_hits + self.remote_calls
        hit_rate = (self.cache_hits / lookups * 100) if lookups > 0 else 0.0

        stats = {
            "cache_hits": self.cache_hits,
            "session_hits": self.session_hits,
            "persistent_hits": self.persistent_hits,
            "remote_calls": self.remote_calls,
            "remote_failures": self.remote_failures,
            "hit_rate": f"{hit_rate:.1f}%",
            "session_entries": len(self._session[Dimension.BLOCKER]),
            "persistent_enabled": self.persistent_enabled,
        }
        for dimension, store in self._stores.items():
            try:
                stats[f"cached_{dimension.value}_entries"] = len(store)
            except StoreError:
                stats[f"cached_{dimension.value}_entries"] = None
        return stats

    def __enter__(self) -> "IssueClassificationCache":
        return self

    def __exit__(self, *args) -> None:
        self.close()
