"""Data models for commit analytics."""

from committracer.models.commit import ChangeKind, ChangedFile, Commit
from committracer.models.config import Settings
from committracer.models.issue import UNCLASSIFIED, Classification, IssueDetails

__all__ = [
    "Commit",
    "ChangedFile",
    "ChangeKind",
    "IssueDetails",
    "Classification",
    "UNCLASSIFIED",
    "Settings",
]
