"""Claim outcome and the transient per-call attempt record."""

from enum import StrEnum
from typing import List

from pydantic import BaseModel, Field

QUOTA_MESSAGE = "Your team has already occupied {quota} issues. Please close an issue before occupying a new one."
UNAVAILABLE_MESSAGE = "The service is temporarily unavailable. Please try again."


class ClaimErrorKind(StrEnum):
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    ALREADY_RESOLVED = "already_resolved"
    ALREADY_SELF = "already_self"
    QUOTA_EXCEEDED = "quota_exceeded"
    RETRIES_EXHAUSTED = "retries_exhausted"
    UNAVAILABLE = "unavailable"
    PERMISSION_DENIED = "permission_denied"


class ClaimResult(BaseModel):
    """What occupy() returns; failures never raise."""

    success: bool
    error_kind: ClaimErrorKind | None = None
    message: str | None = None

    @classmethod
    def ok(cls) -> "ClaimResult":
        return cls(success=True)

    @classmethod
    def fail(cls, kind: ClaimErrorKind, message: str) -> "ClaimResult":
        return cls(success=False, error_kind=kind, message=message)


class ClaimAttempt(BaseModel):
    """State of one occupy() call; never persisted."""

    issue_id: str
    team_id: str
    attempt: int = 0
    errors: List[str] = Field(default_factory=list)

    @property
    def last_error(self) -> str | None:
        return self.errors[-1] if self.errors else None
