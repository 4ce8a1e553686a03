"""Exception hierarchy for Commit Tracer."""


class CommitTracerError(Exception):
    """Base class for all Commit Tracer errors."""


class CommitSourceError(CommitTracerError):
    """Commit history could not be retrieved."""


class TrackerError(CommitTracerError):
    """Base class for issue tracker failures."""

    def __init__(self, message: str, ticket_id: str = "") -> None:
        super().__init__(message)
        self.ticket_id = ticket_id


class IssueNotFoundError(TrackerError):
    """The tracker has no issue with the requested ID."""


class TrackerAuthError(TrackerError):
    """Credentials were rejected or are missing. Not retried automatically."""


class TrackerTransientError(TrackerError):
    """Timeout, transport failure or unexpected server response. Safe to retry."""


class StoreError(CommitTracerError):
    """Base class for persistent store failures."""


class StoreCorruptedError(StoreError):
    """The on-disk store exists but cannot be opened or read."""


class StoreInUseError(StoreError):
    """The store directory is already opened by another instance."""
