"""Commit history extraction from Git repositories."""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import List, Optional

import git
import structlog
from git import Diff, Repo

from committracer.exceptions import CommitSourceError
from committracer.models import ChangedFile, ChangeKind, Commit

logger = structlog.get_logger(__name__)


class CommitSource(ABC):
    """Provides the commits of a repository in a date range."""

    @abstractmethod
    def history(self, repo_root: Path, from_date: date, to_date: date) -> List[Commit]:
        """Return commits authored between ``from_date`` and ``to_date`` inclusive.

        Raises:
            CommitSourceError: If the history cannot be read
        """
        pass


class GitCommitSource(CommitSource):
    """Reads commit history with GitPython."""

    def __init__(self, branch: str = "HEAD") -> None:
        """Initialize the commit source.

        Args:
            branch: Branch or revision to walk
        """
        self.branch = branch

    def history(self, repo_root: Path, from_date: date, to_date: date) -> List[Commit]:
        """Return commits authored between ``from_date`` and ``to_date`` inclusive.

        Args:
            repo_root: Path to the Git repository
            from_date: First day of the range
            to_date: Last day of the range (up to 23:59:59)

        Returns:
            List of Commit records, newest first

        Raises:
            CommitSourceError: If the repository is invalid or git fails
        """
        repo = self._open(repo_root)
        since = datetime.combine(from_date, time.min)
        until = datetime.combine(to_date, time(23, 59, 59))

        try:
            commits = [
                self._to_commit(commit)
                for commit in repo.iter_commits(
                    self.branch,
                    since=since.isoformat(),
                    until=until.isoformat(),
                )
            ]
        except (git.exc.GitCommandError, ValueError) as e:
            raise CommitSourceError(f"Failed to read history of {repo_root}: {e}") from e

        logger.info("history_loaded", repo=str(repo_root), commits=len(commits))
        return commits

    def _open(self, repo_root: Path) -> Repo:
        repo_root = Path(repo_root)
        if not repo_root.exists():
            raise CommitSourceError(f"Repository path does not exist: {repo_root}")
        try:
            return Repo(repo_root)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            raise CommitSourceError(f"Invalid Git repository: {repo_root}") from e

    def _to_commit(self, commit: git.Commit) -> Commit:
        """Convert a GitPython Commit object into a Commit record."""
        author = commit.author
        return Commit(
            id=commit.hexsha,
            author_email=author.email or None,
            author_name=author.name or None,
            authored_at=datetime.fromtimestamp(commit.authored_date, tz=timezone.utc),
            message=commit.message.strip(),
            changed_files=self._changed_files(commit),
        )

    def _changed_files(self, commit: git.Commit) -> List[ChangedFile]:
        # Root commit: everything in the tree is new
        if not commit.parents:
            return [
                ChangedFile(path=item.path, change_kind=ChangeKind.ADDED)
                for item in commit.tree.traverse()
                if item.type == "blob"
            ]

        changed = []
        for diff in commit.parents[0].diff(commit):
            changed_file = self._to_changed_file(diff)
            if changed_file is not None:
                changed.append(changed_file)
        return changed

    @staticmethod
    def _to_changed_file(diff: Diff) -> Optional[ChangedFile]:
        if diff.new_file:
            kind = ChangeKind.ADDED
        elif diff.deleted_file:
            kind = ChangeKind.DELETED
        else:
            kind = ChangeKind.MODIFIED

        # Deleted files only have their old path
        path = diff.a_path if kind is ChangeKind.DELETED else diff.b_path or diff.a_path
        if not path:
            return None
        return ChangedFile(path=path, change_kind=kind)
