"""Data models for issues, teams, repositories, claims and feed snapshots (Pydantic)."""

from occupy.models.claim import ClaimAttempt, ClaimErrorKind, ClaimResult
from occupy.models.feed import ISSUES, REPOSITORIES, TEAMS, FeedSnapshot
from occupy.models.issue import Issue, IssueStatus, PrStatus
from occupy.models.team import Repository, Team

__all__ = [
    "ClaimAttempt",
    "ClaimErrorKind",
    "ClaimResult",
    "FeedSnapshot",
    "ISSUES",
    "Issue",
    "IssueStatus",
    "PrStatus",
    "REPOSITORIES",
    "Repository",
    "TEAMS",
    "Team",
]
