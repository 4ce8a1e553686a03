"""Commit history extraction."""

from committracer.extraction.git_extractor import CommitSource, GitCommitSource

__all__ = ["CommitSource", "GitCommitSource"]
