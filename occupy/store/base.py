"""Abstract contracts of the document store collaborators.

IssueStore is the durable, authoritative home of issues; TeamLedger holds
team points and session flags. Both are async: every call is a suspension
point. Failures are raised as occupy.errors.StoreError subclasses.
"""

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import Any, Callable, List

from occupy.models import FeedSnapshot, Issue, IssueStatus, Repository, Team

Precondition = Callable[[Issue], bool]
Mutation = Callable[[Issue], Issue]
OnChange = Callable[[FeedSnapshot], Any]
OnError = Callable[[Exception], Any]
Unsubscribe = Callable[[], None]


class UpdateOutcome(StrEnum):
    COMMITTED = "committed"
    PRECONDITION_FAILED = "precondition_failed"


class IssueStore(ABC):
    """Issue collection with point reads, queries, transactions and a live feed."""

    @abstractmethod
    async def read_one(self, issue_id: str) -> Issue:
        """Fetch issue by id. Raises IssueNotFound."""
        ...

    @abstractmethod
    async def query_by_assignee_and_status(self, team_id: str, status: IssueStatus, limit: int) -> List[Issue]:
        """Up to limit issues assigned to team_id with the given status. Order is unspecified."""
        ...

    @abstractmethod
    async def list_by_status(self, status: IssueStatus) -> List[Issue]:
        """All issues with the given status."""
        ...

    @abstractmethod
    async def atomic_conditional_update(
        self,
        issue_id: str,
        precondition: Precondition,
        mutation: Mutation,
    ) -> UpdateOutcome:
        """Read-check-write one issue as a single transaction.

        precondition sees the issue as of transaction time; mutation receives
        a copy and returns the new document. Conflicting transactions on the
        same issue never both commit. Raises IssueNotFound if the document is
        gone, TransientStoreError on transport failure.
        """
        ...

    @abstractmethod
    async def create_issue(self, issue: Issue) -> Issue:
        """Insert a new issue; the store assigns the id when issue.id is empty."""
        ...

    @abstractmethod
    async def delete_issue(self, issue_id: str) -> None:
        """Remove an issue document (admin action)."""
        ...

    @abstractmethod
    def subscribe(self, collection: str, on_change: OnChange, on_error: OnError) -> Unsubscribe:
        """Deliver a FeedSnapshot of the collection now and after every change.

        After on_error is called the subscription is dead; the caller must
        subscribe again.
        """
        ...


class TeamLedger(ABC):
    """Team documents: points and the one-session flag."""

    @abstractmethod
    async def read_team(self, team_id: str) -> Team:
        """Fetch team by name. Raises TeamNotFound."""
        ...

    @abstractmethod
    async def list_teams(self) -> List[Team]:
        ...

    @abstractmethod
    async def create_team(self, team: Team) -> None:
        """Insert the team unless a team with that name exists."""
        ...

    @abstractmethod
    async def write_points(self, team_id: str, points: int) -> None:
        """Overwrite the team's points. Not atomic with any issue write."""
        ...

    @abstractmethod
    async def set_active(self, team_id: str, active: bool) -> None:
        ...

    async def read_points(self, team_id: str) -> int:
        team = await self.read_team(team_id)
        return team.points


class RepositoryCatalog(ABC):
    """Repository list, only seeded and read by the core."""

    @abstractmethod
    async def list_repositories(self) -> List[Repository]:
        ...

    @abstractmethod
    async def create_repository(self, repo: Repository) -> Repository:
        ...
