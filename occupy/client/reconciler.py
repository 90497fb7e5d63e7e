"""Client reconciliation layer.

Holds the client's view of issues, teams and repositories, fed by live
change-feed subscriptions. A claim is shown immediately as an optimistic
local change and then reconciled with the coordinator's answer:

    CONFIRMED --claim--> PENDING_LOCAL --success--> CONFIRMED
                                       --failure--> ROLLING_BACK --> CONFIRMED

While an issue is PENDING_LOCAL, feed updates for it are held back so the
optimistic copy is not overwritten mid-attempt. On failure the whole issue
list is restored to the exact pre-attempt snapshot; feed snapshots that
arrived during the attempt are then re-applied on top of it.

Feed snapshots flagged from_cache (local echoes of writes the server has not
confirmed) are ignored. A broken subscription is re-established after
resubscribe_seconds.
"""

import asyncio
import logging
from datetime import datetime
from enum import StrEnum
from typing import Any, Callable, Dict, List

from occupy.config import FeedConfig
from occupy.models import (
    ISSUES,
    REPOSITORIES,
    TEAMS,
    ClaimErrorKind,
    ClaimResult,
    FeedSnapshot,
    Issue,
    IssueStatus,
    Repository,
    Team,
)
from occupy.services.coordinator import ClaimCoordinator
from occupy.services.teams import TeamSessions
from occupy.store.base import IssueStore, Unsubscribe
from occupy.utils.clock import utcnow

LOG = logging.getLogger("occupy.client.reconciler")

FEEDS = (ISSUES, TEAMS, REPOSITORIES)

_MISSING: Any = object()


class SyncState(StrEnum):
    CONFIRMED = "confirmed"
    PENDING_LOCAL = "pending_local"
    ROLLING_BACK = "rolling_back"


def _log_message(message: str) -> None:
    LOG.warning("%s", message)


class ClientReconciler:
    """Optimistic claims plus the live view of the contest for one client."""

    def __init__(
        self,
        store: IssueStore,
        coordinator: ClaimCoordinator,
        sessions: TeamSessions | None = None,
        config: FeedConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
        is_online: Callable[[], bool] = lambda: True,
        on_message: Callable[[str], None] = _log_message,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._sessions = sessions
        self.resubscribe_seconds = (config or FeedConfig()).resubscribe_seconds
        self._clock = clock
        self._is_online = is_online
        self._on_message = on_message

        self.issues: List[Issue] = []
        self.teams: List[Team] = []
        self.repositories: List[Repository] = []
        self.current_team: Team | None = None

        self._states: Dict[str, SyncState] = {}
        self._deferred: Dict[str, Issue | None] = {}
        self._last_issue_feed: List[Issue] | None = None
        self._issue_feed_version = 0
        self._unsubscribes: Dict[str, Unsubscribe] = {}
        self._retry_tasks: Dict[str, asyncio.Task] = {}

    # subscriptions

    def start(self) -> None:
        """Subscribe to the issues, teams and repositories feeds."""
        for collection in FEEDS:
            self._subscribe(collection)

    async def stop(self) -> None:
        """Drop every subscription and pending re-subscribe."""
        for unsubscribe in self._unsubscribes.values():
            unsubscribe()
        self._unsubscribes.clear()
        tasks = list(self._retry_tasks.values())
        self._retry_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def subscribed(self) -> List[str]:
        return sorted(self._unsubscribes)

    def _subscribe(self, collection: str) -> None:
        self._unsubscribes[collection] = self._store.subscribe(
            collection,
            self.handle_snapshot,
            lambda error: self._on_feed_error(collection, error),
        )
        LOG.debug("Subscribed to %s feed", collection)

    def _on_feed_error(self, collection: str, error: Exception) -> None:
        LOG.warning("%s feed failed: %s; re-subscribing in %ss", collection, error, self.resubscribe_seconds)
        self._unsubscribes.pop(collection, None)
        if collection in self._retry_tasks:
            return
        self._retry_tasks[collection] = asyncio.ensure_future(self._resubscribe_later(collection))

    async def _resubscribe_later(self, collection: str) -> None:
        try:
            await asyncio.sleep(self.resubscribe_seconds)
        finally:
            self._retry_tasks.pop(collection, None)
        self._subscribe(collection)

    def handle_snapshot(self, snapshot: FeedSnapshot) -> None:
        """Apply a feed snapshot unless it is an unconfirmed local echo."""
        if snapshot.from_cache:
            LOG.debug("Ignoring local-cache snapshot of %s", snapshot.collection)
            return
        if snapshot.collection == ISSUES:
            items = [i if isinstance(i, Issue) else Issue.model_validate(i) for i in snapshot.items]
            self._last_issue_feed = items
            self._issue_feed_version += 1
            self._apply_issues(items)
        elif snapshot.collection == TEAMS:
            self._apply_teams([t if isinstance(t, Team) else Team.model_validate(t) for t in snapshot.items])
        elif snapshot.collection == REPOSITORIES:
            self.repositories = [
                r if isinstance(r, Repository) else Repository.model_validate(r) for r in snapshot.items
            ]

    def _apply_issues(self, items: List[Issue]) -> None:
        merged = []
        seen = set()
        for item in items:
            seen.add(item.id)
            if self.state_of(item.id) == SyncState.PENDING_LOCAL:
                self._deferred[item.id] = item
                merged.append(self.find(item.id) or item)
            else:
                merged.append(item)
        for issue_id, state in self._states.items():
            if state == SyncState.PENDING_LOCAL and issue_id not in seen:
                self._deferred[issue_id] = None
                local = self.find(issue_id)
                if local is not None:
                    merged.append(local)
        self.issues = merged

    def _apply_teams(self, teams: List[Team]) -> None:
        self.teams = teams
        if self.current_team is not None:
            updated = next((t for t in teams if t.name == self.current_team.name), None)
            if updated is not None:
                self.current_team = updated

    # local view

    def find(self, issue_id: str) -> Issue | None:
        return next((i for i in self.issues if i.id == issue_id), None)

    def state_of(self, issue_id: str) -> SyncState:
        return self._states.get(issue_id, SyncState.CONFIRMED)

    def _replace(self, issue: Issue) -> None:
        self.issues = [issue if i.id == issue.id else i for i in self.issues]

    def _remove(self, issue_id: str) -> None:
        self.issues = [i for i in self.issues if i.id != issue_id]

    # sessions

    async def login(self, team_id: str) -> Team:
        if self._sessions is None:
            raise RuntimeError("No team sessions configured")
        self.current_team = await self._sessions.login(team_id)
        return self.current_team

    async def logout(self) -> None:
        if self.current_team is None:
            return
        if self._sessions is not None:
            await self._sessions.logout(self.current_team.name)
        self.current_team = None

    # claims

    def _fail(self, kind: ClaimErrorKind, message: str) -> ClaimResult:
        self._on_message(message)
        return ClaimResult.fail(kind, message)

    async def claim(self, issue_id: str) -> ClaimResult:
        """Occupy issue_id for the logged-in team with an optimistic local update."""
        if self.current_team is None:
            return self._fail(ClaimErrorKind.INVALID_INPUT, "You must be logged in to occupy an issue.")
        if not self._is_online():
            return self._fail(ClaimErrorKind.UNAVAILABLE, "No internet connection")
        local = self.find(issue_id)
        if local is None:
            return self._fail(ClaimErrorKind.NOT_FOUND, "Issue not found.")
        if self.state_of(issue_id) != SyncState.CONFIRMED:
            return self._fail(ClaimErrorKind.INVALID_INPUT, "A claim on this issue is already in progress.")

        team_id = self.current_team.name
        snapshot = [i.model_copy(deep=True) for i in self.issues]
        feed_version = self._issue_feed_version
        before = local.model_copy(deep=True)

        self._states[issue_id] = SyncState.PENDING_LOCAL
        self._replace(
            before.model_copy(
                update={"status": IssueStatus.OCCUPIED, "assigned_to": team_id, "occupied_at": self._clock()}
            )
        )
        LOG.debug("Optimistic occupy of %s by %s", issue_id, team_id)

        try:
            result = await self._coordinator.occupy(issue_id, team_id, local=before)
        except BaseException:
            self._rollback(issue_id, snapshot, feed_version)
            raise

        if result.success:
            self._confirm(issue_id)
        else:
            LOG.warning("Reverting optimistic occupy of %s: %s", issue_id, result.message)
            self._rollback(issue_id, snapshot, feed_version)
            self._on_message(result.message or "Failed to occupy issue.")
        return result

    def _confirm(self, issue_id: str) -> None:
        self._states.pop(issue_id, None)
        deferred = self._deferred.pop(issue_id, _MISSING)
        if deferred is _MISSING:
            return
        if deferred is None:
            self._remove(issue_id)
        elif deferred.status != IssueStatus.OPEN:
            self._replace(deferred)
        # An open copy predates the commit; the next snapshot will carry it

    def _rollback(self, issue_id: str, snapshot: List[Issue], feed_version: int) -> None:
        self._states[issue_id] = SyncState.ROLLING_BACK
        self._deferred.pop(issue_id, None)
        # Other issues keep what concurrent claims made of them since the snapshot
        current = {i.id: i for i in self.issues if i.id != issue_id}
        self.issues = [current.get(i.id) or i for i in snapshot]
        if feed_version != self._issue_feed_version and self._last_issue_feed is not None:
            self._apply_issues(self._last_issue_feed)
        self._states.pop(issue_id, None)
