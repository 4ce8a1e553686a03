"""Per-author statistics and aggregation results."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from committracer.models.commit import as_utc


class AuthorStats(BaseModel):
    """Rolling statistics for one author.

    Counters only grow and the date bounds only widen while commits are folded
    in; derived metrics are computed on access.
    """

    author: str = Field(..., description="Author identity (email)")
    commit_count: int = Field(0, description="Number of commits folded in")
    first_commit_at: datetime = Field(..., description="Earliest author timestamp")
    last_commit_at: datetime = Field(..., description="Latest author timestamp")
    ticket_to_commits: Dict[str, List[str]] = Field(
        default_factory=dict, description="Ticket ID -> IDs of commits referencing it"
    )
    blocker_ticket_to_commits: Dict[str, List[str]] = Field(
        default_factory=dict, description="Same as ticket_to_commits, blocker tickets only"
    )
    regression_ticket_to_commits: Dict[str, List[str]] = Field(
        default_factory=dict, description="Same as ticket_to_commits, regression tickets only"
    )
    test_touched_commit_count: int = Field(0, description="Commits touching at least one test file")

    @field_validator("first_commit_at", "last_commit_at")
    @classmethod
    def normalize_bounds(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def active_days(self) -> int:
        """Whole days elapsed between first and last commit, plus one."""
        return (self.last_commit_at - self.first_commit_at).days + 1

    @property
    def commits_per_day(self) -> float:
        """Average commits per active day."""
        days = self.active_days
        return self.commit_count / days if days > 0 else 0.0

    @property
    def test_coverage_percent(self) -> float:
        """Share of commits that touched tests, in percent."""
        if self.commit_count == 0:
            return 0.0
        return 100.0 * self.test_touched_commit_count / self.commit_count

    @property
    def ticket_count(self) -> int:
        return len(self.ticket_to_commits)

    @property
    def blocker_count(self) -> int:
        return len(self.blocker_ticket_to_commits)

    @property
    def regression_count(self) -> int:
        return len(self.regression_ticket_to_commits)

    def is_blocker(self, ticket_id: str) -> bool:
        return ticket_id in self.blocker_ticket_to_commits

    def is_regression(self, ticket_id: str) -> bool:
        return ticket_id in self.regression_ticket_to_commits

    def record_commit(
        self,
        commit_id: str,
        authored_at: datetime,
        tickets: List[str],
        blocker_tickets: List[str],
        regression_tickets: List[str],
        touches_tests: bool,
    ) -> None:
        """Fold one commit into the statistics. Callers serialize per author."""
        authored_at = as_utc(authored_at)
        self.commit_count += 1
        self.first_commit_at = min(self.first_commit_at, authored_at)
        self.last_commit_at = max(self.last_commit_at, authored_at)

        for ticket in tickets:
            self.ticket_to_commits.setdefault(ticket, []).append(commit_id)
        for ticket in blocker_tickets:
            self.blocker_ticket_to_commits.setdefault(ticket, []).append(commit_id)
        for ticket in regression_tickets:
            self.regression_ticket_to_commits.setdefault(ticket, []).append(commit_id)

        if touches_tests:
            self.test_touched_commit_count += 1

    def summary(self) -> dict:
        """Flat view with derived metrics, suitable for tables and JSON."""
        return {
            "author": self.author,
            "commits": self.commit_count,
            "tickets": self.ticket_count,
            "blockers": self.blocker_count,
            "regressions": self.regression_count,
            "test_commits": self.test_touched_commit_count,
            "test_coverage_percent": round(self.test_coverage_percent, 2),
            "first_commit": self.first_commit_at.isoformat(),
            "last_commit": self.last_commit_at.isoformat(),
            "active_days": self.active_days,
            "commits_per_day": round(self.commits_per_day, 2),
        }


class AggregationResult(BaseModel):
    """Outcome of folding a commit stream, keyed by author identity."""

    authors: Dict[str, AuthorStats] = Field(default_factory=dict)
    processed_commits: int = Field(0, description="Commits folded into author stats")
    skipped_commits: int = Field(0, description="Malformed commits that were skipped")
    cancelled: bool = Field(False, description="Whether the run stopped early")
    classification_calls: int = Field(0, description="Remote classification calls made during the run")
    classification_failures: int = Field(
        0, description="Remote calls that timed out or failed during the run"
    )
    ticket_summaries: Dict[str, str] = Field(
        default_factory=dict, description="Ticket ID -> issue summary, for tickets fetched this run"
    )

    @property
    def tracker_unavailable(self) -> bool:
        """Whether every remote classification call of the run failed."""
        return self.classification_calls > 0 and self.classification_failures == self.classification_calls

    def get_author(self, author: str) -> Optional[AuthorStats]:
        return self.authors.get(author)

    @property
    def total_commits(self) -> int:
        return sum(stats.commit_count for stats in self.authors.values())

    def tickets(self) -> List[str]:
        """All ticket IDs referenced by any author, sorted."""
        found = set()
        for stats in self.authors.values():
            found.update(stats.ticket_to_commits)
        return sorted(found)

    def commits_for_ticket(self, ticket_id: str) -> List[str]:
        """IDs of every commit that references ``ticket_id``."""
        commits: List[str] = []
        for stats in self.authors.values():
            commits.extend(stats.ticket_to_commits.get(ticket_id, []))
        return commits

    def authors_for_ticket(self, ticket_id: str) -> List[str]:
        """Authors who referenced ``ticket_id``, sorted."""
        return sorted(
            author
            for author, stats in self.authors.items()
            if ticket_id in stats.ticket_to_commits
        )

    def sorted_authors(self) -> List[AuthorStats]:
        """Author stats ordered by commit count, busiest first."""
        return sorted(self.authors.values(), key=lambda s: (-s.commit_count, s.author))
