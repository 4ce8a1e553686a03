"""Tests for the aggregation engine."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from committracer.analysis import AggregationEngine
from committracer.cache import IssueClassificationCache
from committracer.exceptions import IssueNotFoundError, TrackerAuthError, TrackerTransientError
from committracer.models import ChangedFile, ChangeKind, Commit, IssueDetails

ISSUES = {
    "ABC-1": IssueDetails(id="ABC-1", summary="Crash on startup", tags=["blocking-release"]),
    "ABC-2": IssueDetails(id="ABC-2", summary="Regression in search", tags=[]),
    "ABC-3": IssueDetails(id="ABC-3", summary="Polish settings page", tags=["ui"]),
}


async def fake_fetch(ticket_id):
    if ticket_id not in ISSUES:
        raise IssueNotFoundError(f"Issue {ticket_id} not found", ticket_id)
    return ISSUES[ticket_id]


def at(day, hour=12):
    return datetime(2024, 3, day, hour, 0, tzinfo=timezone.utc)


def make_commit(commit_id, author="alice@example.com", when=None, message="", paths=()):
    return Commit(
        id=commit_id,
        author_email=author,
        author_name=author.split("@")[0] if author else None,
        authored_at=when if when is not None else at(1),
        message=message,
        changed_files=[ChangedFile(path=p, change_kind=ChangeKind.MODIFIED) for p in paths],
    )


@pytest.fixture
def mock_classifier():
    """Create mock issue classifier."""
    classifier = MagicMock()
    classifier.fetch = AsyncMock(side_effect=fake_fetch)
    return classifier


@pytest.fixture
def cache(mock_classifier):
    """Create a session-only classification cache."""
    cache = IssueClassificationCache(mock_classifier, persistent=False)
    yield cache
    cache.close()


@pytest.fixture
def engine(cache):
    return AggregationEngine(cache, max_workers=2)


def test_engine_rejects_zero_workers(cache):
    with pytest.raises(ValueError):
        AggregationEngine(cache, max_workers=0)


@pytest.mark.asyncio
async def test_single_author_scenario(engine, mock_classifier):
    """Test three commits by one author over three days."""
    commits = [
        make_commit("c1", when=at(1), message="ABC-1 fix crash", paths=["src/main/App.kt"]),
        make_commit("c2", when=at(1), message="ABC-1 follow-up", paths=["src/main/App.kt"]),
        make_commit("c3", when=at(3), message="cleanup", paths=["README.md"]),
    ]

    result = await engine.aggregate(commits)
    stats = result.get_author("alice@example.com")

    assert stats.commit_count == 3
    assert stats.active_days == 3
    assert stats.commits_per_day == 1.0
    assert stats.test_coverage_percent == 0.0
    assert stats.blocker_count == 1
    assert stats.regression_count == 0
    assert sorted(stats.ticket_to_commits["ABC-1"]) == ["c1", "c2"]
    assert stats.is_blocker("ABC-1")
    # ABC-1 was classified once despite two referencing commits
    assert mock_classifier.fetch.await_count == 1


@pytest.mark.asyncio
async def test_regression_and_test_tracking(engine):
    """Test regression tickets and test-touching commits."""
    commits = [
        make_commit(
            "c1",
            message="ABC-2 restore search ranking",
            paths=["src/search/Ranker.kt", "src/test/RankerTest.kt", "src/test/data/case.txt"],
        ),
        make_commit("c2", message="ABC-3 tweak labels", paths=["ui/Settings.kt"]),
    ]

    result = await engine.aggregate(commits)
    stats = result.get_author("alice@example.com")

    assert stats.regression_count == 1
    assert stats.is_regression("ABC-2")
    assert not stats.is_blocker("ABC-3")
    # Several test files in one commit still count the commit once
    assert stats.test_touched_commit_count == 1
    assert stats.test_coverage_percent == 50.0


@pytest.mark.asyncio
async def test_malformed_commits_are_skipped(engine):
    """Test that commits without author or date are counted as skipped."""
    commits = [
        make_commit("c1", message="ABC-3"),
        make_commit("c2", author=None),
        Commit(id="c3", author_email="bob@example.com", authored_at=None, message="ABC-1"),
    ]

    result = await engine.aggregate(commits)

    assert result.processed_commits == 1
    assert result.skipped_commits == 2
    assert list(result.authors) == ["alice@example.com"]


@pytest.mark.asyncio
async def test_commit_counts_add_up(engine):
    """Test that per-author counts sum to the processed commits."""
    commits = [
        make_commit(f"a{i}", author="alice@example.com", when=at(1 + i % 5), message=f"ABC-{1 + i % 3}")
        for i in range(7)
    ] + [
        make_commit(f"b{i}", author="bob@example.com", when=at(10 + i), message="ABC-3 and ABC-1")
        for i in range(4)
    ]

    result = await engine.aggregate(commits)

    assert result.processed_commits == 11
    assert result.total_commits == 11
    assert sum(s.commit_count for s in result.authors.values()) == result.processed_commits
    for stats in result.authors.values():
        assert stats.first_commit_at <= stats.last_commit_at
    assert [s.author for s in result.sorted_authors()] == ["alice@example.com", "bob@example.com"]


@pytest.mark.asyncio
async def test_order_does_not_matter(cache):
    """Test that the result is independent of commit order."""
    commits = [
        make_commit("c1", when=at(5), message="ABC-1"),
        make_commit("c2", when=at(2), message="ABC-2"),
        make_commit("c3", when=at(9), message="no ticket"),
    ]

    forward = await AggregationEngine(cache, max_workers=1).aggregate(commits)
    backward = await AggregationEngine(cache, max_workers=3).aggregate(reversed(commits))

    a = forward.get_author("alice@example.com")
    b = backward.get_author("alice@example.com")
    assert a.summary() == b.summary()
    assert a.first_commit_at == at(2)
    assert a.last_commit_at == at(9)


@pytest.mark.asyncio
async def test_excluded_prefixes_are_not_tickets(engine, mock_classifier):
    """Test that review references are not looked up."""
    result = await engine.aggregate([make_commit("c1", message="MR-12 CR-5 EA-7 only")])

    assert result.get_author("alice@example.com").ticket_count == 0
    mock_classifier.fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_ticket_counts_as_plain(engine):
    """Test that unknown tickets are recorded without flags."""
    result = await engine.aggregate([make_commit("c1", message="XYZ-404 mystery")])
    stats = result.get_author("alice@example.com")

    assert stats.ticket_to_commits == {"XYZ-404": ["c1"]}
    assert stats.blocker_count == 0


@pytest.mark.asyncio
async def test_ticket_queries(engine):
    """Test cross-author ticket queries."""
    commits = [
        make_commit("c1", author="alice@example.com", message="ABC-1"),
        make_commit("c2", author="bob@example.com", message="ABC-1 ABC-3"),
    ]

    result = await engine.aggregate(commits)

    assert result.tickets() == ["ABC-1", "ABC-3"]
    assert sorted(result.commits_for_ticket("ABC-1")) == ["c1", "c2"]
    assert result.authors_for_ticket("ABC-1") == ["alice@example.com", "bob@example.com"]
    assert result.authors_for_ticket("ABC-3") == ["bob@example.com"]


@pytest.mark.asyncio
async def test_cancelled_before_start(engine, mock_classifier):
    """Test that a pre-set cancel event yields an empty partial result."""
    cancel_event = asyncio.Event()
    cancel_event.set()

    result = await engine.aggregate(
        [make_commit("c1", message="ABC-1"), make_commit("c2")], cancel_event=cancel_event
    )

    assert result.cancelled is True
    assert result.processed_commits == 0
    mock_classifier.fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancel_stops_after_current_batch(cache, mock_classifier):
    """Test that cancellation lets the running batch finish."""
    cancel_event = asyncio.Event()

    async def fetch_then_cancel(ticket_id):
        cancel_event.set()
        return await fake_fetch(ticket_id)

    mock_classifier.fetch.side_effect = fetch_then_cancel
    commits = [make_commit(f"c{i}", message="ABC-1") for i in range(6)]

    result = await AggregationEngine(cache, max_workers=2).aggregate(commits, cancel_event=cancel_event)

    assert result.cancelled is True
    assert result.processed_commits == 2
    assert result.get_author("alice@example.com").commit_count == 2


@pytest.mark.asyncio
async def test_auth_error_aborts(engine, mock_classifier):
    """Test that rejected credentials abort the run."""
    mock_classifier.fetch.side_effect = TrackerAuthError("rejected", "ABC-1")

    with pytest.raises(TrackerAuthError):
        await engine.aggregate([make_commit("c1", message="ABC-1")])


@pytest.mark.asyncio
async def test_tracker_outage_is_reported(engine, mock_classifier):
    """Test that a run where every remote call fails is flagged."""
    mock_classifier.fetch.side_effect = TrackerTransientError("connection refused")
    commits = [make_commit(f"c{i}", message=f"ABC-{i + 10}") for i in range(5)]

    result = await engine.aggregate(commits)

    assert result.processed_commits == 5
    assert result.classification_calls == 5
    assert result.classification_failures == 5
    assert result.tracker_unavailable is True
    assert result.get_author("alice@example.com").blocker_count == 0


@pytest.mark.asyncio
async def test_partial_tracker_failures(engine, mock_classifier):
    """Test that some failed lookups are counted without flagging an outage."""

    async def flaky_fetch(ticket_id):
        if ticket_id == "ABC-2":
            raise TrackerTransientError("timeout", ticket_id)
        return await fake_fetch(ticket_id)

    mock_classifier.fetch.side_effect = flaky_fetch

    result = await engine.aggregate([make_commit("c1", message="ABC-1 ABC-2")])

    assert result.classification_calls == 2
    assert result.classification_failures == 1
    assert result.tracker_unavailable is False


@pytest.mark.asyncio
async def test_no_remote_calls_is_not_an_outage(cache):
    """Test that a fully cached or ticketless run is not flagged."""
    result = await AggregationEngine(cache).aggregate([make_commit("c1", message="no ticket")])

    assert result.classification_calls == 0
    assert result.tracker_unavailable is False


@pytest.mark.asyncio
async def test_auth_error_cancels_batch(cache, mock_classifier):
    """Test that no lookups keep running after an auth abort."""
    finished = []

    async def fetch(ticket_id):
        if ticket_id == "A-1":
            raise TrackerAuthError("rejected", ticket_id)
        await asyncio.sleep(0.2)
        finished.append(ticket_id)
        return IssueDetails(id=ticket_id)

    mock_classifier.fetch.side_effect = fetch
    commits = [make_commit(f"c{i}", message=f"A-{i}") for i in range(1, 5)]

    with pytest.raises(TrackerAuthError):
        await AggregationEngine(cache, max_workers=4).aggregate(commits)

    pending = [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]
    assert pending == []
    await asyncio.sleep(0.3)
    assert finished == []
    assert cache._ticket_locks == {}


@pytest.mark.asyncio
async def test_ticket_summaries(engine):
    """Test that fetched summaries are exposed per ticket."""
    result = await engine.aggregate(
        [make_commit("c1", message="ABC-1"), make_commit("c2", message="XYZ-404")]
    )

    assert result.ticket_summaries == {"ABC-1": "Crash on startup"}


@pytest.mark.asyncio
async def test_mixed_naive_and_aware_timestamps(engine):
    """Test that naive author dates fold together with aware ones."""
    commits = [
        make_commit("c1", when=datetime(2024, 3, 1, 12, 0)),
        make_commit("c2", when=at(3)),
    ]

    result = await engine.aggregate(commits)
    stats = result.get_author("alice@example.com")

    assert stats.commit_count == 2
    assert stats.first_commit_at == at(1)
    assert stats.active_days == 3
