"""Issue document model."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, List

from pydantic import BaseModel, BeforeValidator, Field


class IssueStatus(StrEnum):
    OPEN = "open"
    OCCUPIED = "occupied"
    CLOSED = "closed"


class PrStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    MERGED = "merged"
    REJECTED = "rejected"


def _ensure_utc(value: datetime | int | float | str | None) -> datetime | None:
    """Coerce epoch milliseconds, ISO string or datetime to an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value / 1000, tz=UTC)
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


Instant = Annotated[datetime | None, BeforeValidator(_ensure_utc)]


class Issue(BaseModel):
    """Claimable unit of work as stored in the issues collection."""

    id: str = Field(..., description="Opaque document id")
    title: str = Field(default="", description="Issue title")
    repo: str | None = Field(default=None, description="Repository name the issue belongs to")
    description: str = Field(default="", description="Issue description")
    tags: List[str] = Field(
        default_factory=list,
        description="Ordered tags; the first one is the difficulty (easy, medium, hard)",
    )
    status: IssueStatus = Field(default=IssueStatus.OPEN, description="open, occupied or closed")
    assigned_to: str | None = Field(default=None, description="Team holding the issue")
    occupied_at: Instant = Field(default=None, description="When the current holder claimed it")
    closed_at: Instant = Field(default=None, description="When the holder closed it with a PR")
    pr_url: str | None = Field(default=None, description="Pull request submitted on close")
    pr_status: PrStatus | None = Field(default=None, description="Review state of the pull request")
    last_updated: Instant = Field(default=None, description="Last write by a claim")
    expiry_penalty_for: Instant = Field(
        default=None,
        description="occupied_at of the claim whose expiry penalty was already taken",
    )

    model_config = {"extra": "ignore", "populate_by_name": True}

    @property
    def difficulty(self) -> str | None:
        """Primary difficulty tag (first tag, lowercased), None if untagged."""
        if not self.tags:
            return None
        return self.tags[0].strip().lower()

    def is_held_by(self, team_id: str) -> bool:
        return self.status == IssueStatus.OCCUPIED and self.assigned_to == team_id
