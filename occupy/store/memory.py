"""In-process document store.

Documents live in plain dicts keyed by collection and id (JSON-mode dumps of
the models, so every read hands out an independent copy). One asyncio.Lock per
document gives transaction isolation: conflicting read-check-write cycles on
the same issue are serialized and only the first sees the pre-write state.
Every change is pushed to subscribers as a full collection snapshot.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, List

from occupy.errors import IssueNotFound, TeamNotFound
from occupy.models import ISSUES, REPOSITORIES, TEAMS, FeedSnapshot, Issue, IssueStatus, Repository, Team
from occupy.store.base import (
    IssueStore,
    Mutation,
    OnChange,
    OnError,
    Precondition,
    RepositoryCatalog,
    TeamLedger,
    Unsubscribe,
    UpdateOutcome,
)

LOG = logging.getLogger("occupy.store.memory")


def new_document_id() -> str:
    return uuid.uuid4().hex[:20]


class _Listener:
    def __init__(self, on_change: OnChange, on_error: OnError) -> None:
        self.on_change = on_change
        self.on_error = on_error


class MemoryStore(IssueStore, TeamLedger, RepositoryCatalog):
    """Issue store, team ledger and repository catalog in one process.

    latency (seconds) is awaited on every operation to model network I/O.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self._docs: Dict[str, Dict[str, dict]] = {ISSUES: {}, TEAMS: {}, REPOSITORIES: {}}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._listeners: Dict[str, List[_Listener]] = {}

    # storage hooks, overridden by the yaml backend

    def _get(self, collection: str, doc_id: str) -> dict | None:
        doc = self._docs.setdefault(collection, {}).get(doc_id)
        return dict(doc) if doc is not None else None

    def _put(self, collection: str, doc_id: str, data: dict) -> None:
        self._docs.setdefault(collection, {})[doc_id] = dict(data)

    def _remove(self, collection: str, doc_id: str) -> bool:
        return self._docs.setdefault(collection, {}).pop(doc_id, None) is not None

    def _all(self, collection: str) -> Dict[str, dict]:
        return {k: dict(v) for k, v in self._docs.setdefault(collection, {}).items()}

    # helpers

    async def _pause(self) -> None:
        await asyncio.sleep(self.latency)

    def _lock(self, collection: str, doc_id: str) -> asyncio.Lock:
        key = f"{collection}/{doc_id}"
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _issues(self) -> List[Issue]:
        return [Issue.model_validate({**data, "id": doc_id}) for doc_id, data in self._all(ISSUES).items()]

    def _snapshot(self, collection: str) -> FeedSnapshot:
        items: List[Any]
        if collection == ISSUES:
            items = self._issues()
        elif collection == TEAMS:
            items = [Team.model_validate(d) for d in self._all(TEAMS).values()]
        elif collection == REPOSITORIES:
            items = [Repository.model_validate({**d, "id": k}) for k, d in self._all(REPOSITORIES).items()]
        else:
            items = list(self._all(collection).values())
        return FeedSnapshot(collection=collection, items=items)

    def _notify(self, collection: str) -> None:
        listeners = list(self._listeners.get(collection) or [])
        if not listeners:
            return
        snapshot = self._snapshot(collection)
        for listener in listeners:
            try:
                listener.on_change(snapshot.model_copy(deep=True))
            except Exception as e:
                LOG.exception("Subscriber of %s failed: %s", collection, e)

    # IssueStore

    async def read_one(self, issue_id: str) -> Issue:
        await self._pause()
        data = self._get(ISSUES, issue_id)
        if data is None:
            raise IssueNotFound(issue_id)
        return Issue.model_validate({**data, "id": issue_id})

    async def query_by_assignee_and_status(self, team_id: str, status: IssueStatus, limit: int) -> List[Issue]:
        await self._pause()
        out = [i for i in self._issues() if i.assigned_to == team_id and i.status == status]
        return out[:limit]

    async def list_by_status(self, status: IssueStatus) -> List[Issue]:
        await self._pause()
        return [i for i in self._issues() if i.status == status]

    async def atomic_conditional_update(
        self,
        issue_id: str,
        precondition: Precondition,
        mutation: Mutation,
    ) -> UpdateOutcome:
        async with self._lock(ISSUES, issue_id):
            await self._pause()
            data = self._get(ISSUES, issue_id)
            if data is None:
                raise IssueNotFound(issue_id)
            current = Issue.model_validate({**data, "id": issue_id})
            if not precondition(current.model_copy(deep=True)):
                return UpdateOutcome.PRECONDITION_FAILED
            updated = mutation(current.model_copy(deep=True))
            self._put(ISSUES, issue_id, updated.model_dump(mode="json", exclude={"id"}))
        LOG.debug("Committed transaction on issue %s", issue_id)
        self._notify(ISSUES)
        return UpdateOutcome.COMMITTED

    async def create_issue(self, issue: Issue) -> Issue:
        await self._pause()
        issue_id = issue.id or new_document_id()
        created = issue.model_copy(update={"id": issue_id})
        self._put(ISSUES, issue_id, created.model_dump(mode="json", exclude={"id"}))
        self._notify(ISSUES)
        return created

    async def delete_issue(self, issue_id: str) -> None:
        await self._pause()
        if not self._remove(ISSUES, issue_id):
            raise IssueNotFound(issue_id)
        self._notify(ISSUES)

    def subscribe(self, collection: str, on_change: OnChange, on_error: OnError) -> Unsubscribe:
        listener = _Listener(on_change, on_error)
        self._listeners.setdefault(collection, []).append(listener)
        on_change(self._snapshot(collection))

        def unsubscribe() -> None:
            listeners = self._listeners.get(collection) or []
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def interrupt_feed(self, collection: str, error: Exception) -> None:
        """Terminate every subscription on collection with error."""
        listeners = self._listeners.pop(collection, [])
        LOG.warning("Feed %s interrupted for %d subscriber(s): %s", collection, len(listeners), error)
        for listener in listeners:
            listener.on_error(error)

    # TeamLedger

    async def read_team(self, team_id: str) -> Team:
        await self._pause()
        data = self._get(TEAMS, team_id)
        if data is None:
            raise TeamNotFound(team_id)
        return Team.model_validate(data)

    async def list_teams(self) -> List[Team]:
        await self._pause()
        return [Team.model_validate(d) for d in self._all(TEAMS).values()]

    async def create_team(self, team: Team) -> None:
        async with self._lock(TEAMS, team.name):
            await self._pause()
            if self._get(TEAMS, team.name) is not None:
                return
            self._put(TEAMS, team.name, team.model_dump(mode="json"))
        self._notify(TEAMS)

    async def _update_team(self, team_id: str, **fields: Any) -> None:
        async with self._lock(TEAMS, team_id):
            await self._pause()
            data = self._get(TEAMS, team_id)
            if data is None:
                raise TeamNotFound(team_id)
            team = Team.model_validate({**data, **fields})
            self._put(TEAMS, team_id, team.model_dump(mode="json"))
        self._notify(TEAMS)

    async def write_points(self, team_id: str, points: int) -> None:
        await self._update_team(team_id, points=points)

    async def set_active(self, team_id: str, active: bool) -> None:
        await self._update_team(team_id, active=active)

    # RepositoryCatalog

    async def list_repositories(self) -> List[Repository]:
        await self._pause()
        return [Repository.model_validate({**d, "id": k}) for k, d in self._all(REPOSITORIES).items()]

    async def create_repository(self, repo: Repository) -> Repository:
        await self._pause()
        repo_id = repo.id or new_document_id()
        self._put(REPOSITORIES, repo_id, repo.model_dump(mode="json", exclude={"id"}))
        self._notify(REPOSITORIES)
        return repo.model_copy(update={"id": repo_id})
