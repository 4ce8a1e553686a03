"""Data models for issue tracker data."""

from typing import List

from pydantic import BaseModel, ConfigDict, Field


class IssueDetails(BaseModel):
    """Typed issue payload returned by an issue classifier."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Readable issue ID, e.g. IDEA-12345")
    summary: str = Field("", description="Issue summary line")
    tags: List[str] = Field(default_factory=list, description="Tag names attached to the issue")


class Classification(BaseModel):
    """Blocker/regression status of a ticket."""

    model_config = ConfigDict(frozen=True)

    is_blocker: bool = Field(False, description="Any tag starts with 'blocking-'")
    is_regression: bool = Field(False, description="A tag or the summary mentions 'regression'")


UNCLASSIFIED = Classification(is_blocker=False, is_regression=False)
