"""Data models for commit history records."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps so that all author dates are comparable."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ChangeKind(str, Enum):
    """Kind of change a commit made to a file."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class ChangedFile(BaseModel):
    """A single file touched by a commit."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Repository-relative path of the file")
    change_kind: ChangeKind = Field(ChangeKind.MODIFIED, description="Kind of change")

    @property
    def is_test_file(self) -> bool:
        """Whether this path looks like a test file.

        Derived on every access so that a change to the classification rules
        never leaves stale flags behind.
        """
        from committracer.analysis.test_files import is_test_file

        return is_test_file(self.path)


class Commit(BaseModel):
    """Represents a single commit as produced by a commit source.

    ``author_email`` and ``authored_at`` are optional so that malformed records
    can be represented; the aggregation engine skips them.
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "abc123def456",
                "author_email": "alice@example.com",
                "author_name": "Alice",
                "authored_at": "2024-01-15T10:30:00Z",
                "message": "IDEA-1234 Fix caret position after paste",
                "changed_files": [
                    {"path": "src/main/Editor.kt", "change_kind": "modified"},
                    {"path": "src/test/EditorTest.kt", "change_kind": "added"},
                ],
            }
        },
    )

    id: str = Field(..., description="Full commit SHA hash")
    author_email: Optional[str] = Field(None, description="Author email, used as author identity")
    author_name: Optional[str] = Field(None, description="Author display name")
    authored_at: Optional[datetime] = Field(None, description="Author timestamp")
    message: str = Field("", description="Full commit message")
    changed_files: List[ChangedFile] = Field(default_factory=list, description="Files touched by the commit")

    @field_validator("authored_at")
    @classmethod
    def normalize_authored_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return None if value is None else as_utc(value)

    @property
    def short_id(self) -> str:
        """Short commit hash (7 chars)."""
        return self.id[:7]

    @property
    def message_summary(self) -> str:
        """First line of the commit message."""
        lines = self.message.strip().split("\n")
        return lines[0] if lines else ""

    @property
    def is_malformed(self) -> bool:
        """Whether the record lacks the author identity or the author date."""
        return not self.author_email or self.authored_at is None
