"""Folds commit streams into per-author statistics."""

import asyncio
from typing import Awaitable, Dict, Iterable, List, NamedTuple, Optional, TypeVar

import structlog

from committracer.analysis.stats import AggregationResult, AuthorStats
from committracer.analysis.test_files import commit_touches_tests
from committracer.analysis.tickets import extract_tickets
from committracer.cache.classification import IssueClassificationCache
from committracer.models import Commit

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def gather_or_cancel(*aws: Awaitable[T]) -> List[T]:
    """Run awaitables concurrently; on the first error cancel the rest.

    Unlike a bare ``asyncio.gather``, no sibling keeps running after the
    call has raised.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class _CommitFacts(NamedTuple):
    """Everything the fold step needs about one commit."""

    tickets: List[str]
    blocker_tickets: List[str]
    regression_tickets: List[str]
    touches_tests: bool


class AggregationEngine:
    """Builds author statistics from commits, tickets and test-file heuristics."""

    def __init__(
        self,
        classification_cache: IssueClassificationCache,
        max_workers: int = 8,
    ) -> None:
        """Initialize the engine.

        Args:
            classification_cache: Cache used to classify referenced tickets
            max_workers: Number of commits processed concurrently
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.classification_cache = classification_cache
        self.max_workers = max_workers

    async def aggregate(
        self,
        commits: Iterable[Commit],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AggregationResult:
        """Fold commits into per-author statistics.

        Commits are processed in batches of ``max_workers``. Setting
        ``cancel_event`` stops scheduling new batches; lookups already in
        flight finish and still populate the classification cache. When every
        remote classification call of the run fails, the result reports
        ``tracker_unavailable``.

        Args:
            commits: Commits in any order
            cancel_event: Optional external cancellation signal

        Returns:
            Aggregation result keyed by author email

        Raises:
            TrackerAuthError: If the issue tracker rejects the credentials
        """
        cache = self.classification_cache
        calls_before = cache.remote_calls
        failures_before = cache.remote_failures
        result = AggregationResult()
        author_locks: Dict[str, asyncio.Lock] = {}
        commit_list = list(commits)

        for i in range(0, len(commit_list), self.max_workers):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    "aggregation_cancelled",
                    processed=result.processed_commits,
                    remaining=len(commit_list) - i,
                )
                result.cancelled = True
                break

            batch = commit_list[i : i + self.max_workers]
            await gather_or_cancel(
                *(self._process_commit(commit, result, author_locks) for commit in batch)
            )

        result.classification_calls = cache.remote_calls - calls_before
        result.classification_failures = cache.remote_failures - failures_before
        for ticket in result.tickets():
            summary = cache.summary(ticket)
            if summary:
                result.ticket_summaries[ticket] = summary

        if result.tracker_unavailable:
            logger.warning(
                "tracker_unavailable",
                calls=result.classification_calls,
                failures=result.classification_failures,
            )

        logger.info(
            "aggregation_finished",
            authors=len(result.authors),
            processed=result.processed_commits,
            skipped=result.skipped_commits,
        )
        return result

    async def _process_commit(
        self,
        commit: Commit,
        result: AggregationResult,
        author_locks: Dict[str, asyncio.Lock],
    ) -> None:
        if commit.is_malformed:
            logger.warning(
                "commit_skipped",
                commit=commit.id,
                reason="missing author" if not commit.author_email else "missing date",
            )
            result.skipped_commits += 1
            return

        facts = await self.collect_facts(commit)

        author = commit.author_email
        lock = author_locks.setdefault(author, asyncio.Lock())
        async with lock:
            stats = result.authors.get(author)
            if stats is None:
                stats = AuthorStats(
                    author=author,
                    first_commit_at=commit.authored_at,
                    last_commit_at=commit.authored_at,
                )
                result.authors[author] = stats

            stats.record_commit(
                commit_id=commit.id,
                authored_at=commit.authored_at,
                tickets=facts.tickets,
                blocker_tickets=facts.blocker_tickets,
                regression_tickets=facts.regression_tickets,
                touches_tests=facts.touches_tests,
            )
            result.processed_commits += 1

    async def collect_facts(self, commit: Commit) -> _CommitFacts:
        """Extract and classify the tickets of a commit and check for tests."""
        tickets = sorted(extract_tickets(commit.message))
        classifications = await gather_or_cancel(
            *(self.classification_cache.classify(ticket) for ticket in tickets)
        )

        return _CommitFacts(
            tickets=tickets,
            blocker_tickets=[t for t, c in zip(tickets, classifications) if c.is_blocker],
            regression_tickets=[t for t, c in zip(tickets, classifications) if c.is_regression],
            touches_tests=commit_touches_tests(commit.changed_files),
        )
