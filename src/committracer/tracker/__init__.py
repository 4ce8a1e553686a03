"""Issue tracker integration for ticket classification."""

from committracer.tracker.base import BaseIssueClassifier
from committracer.tracker.youtrack import YouTrackClient

__all__ = [
    "BaseIssueClassifier",
    "YouTrackClient",
]
