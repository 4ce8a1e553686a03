"""Base class for issue classifiers."""

from abc import ABC, abstractmethod

from committracer.models import IssueDetails


class BaseIssueClassifier(ABC):
    """Abstract source of issue details used to classify tickets."""

    @abstractmethod
    async def fetch(self, ticket_id: str) -> IssueDetails:
        """Fetch summary and tags of an issue.

        Args:
            ticket_id: Readable issue ID, e.g. ``IDEA-12345``

        Returns:
            Issue details

        Raises:
            IssueNotFoundError: If the tracker has no such issue
            TrackerAuthError: If credentials are missing or rejected
            TrackerTransientError: On timeouts, transport or server errors
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
