"""Shared fixtures: in-memory store, a store that fails on demand, fake clocks."""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import List

import pytest

from occupy.config import ClaimConfig
from occupy.models import Issue, IssueStatus, Team
from occupy.services import ClaimCoordinator, TeamQuotaCache
from occupy.store import MemoryStore

START = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Datetime clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeMsClock:
    """Millisecond clock for the quota cache."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingSleep:
    """Stands in for asyncio.sleep; records delays and yields once."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await asyncio.sleep(0)


class FlakyStore(MemoryStore):
    """MemoryStore that raises queued errors or stalls before doing the work."""

    def __init__(self) -> None:
        super().__init__()
        self.transaction_errors: List[Exception] = []
        self.query_errors: List[Exception] = []
        self.points_errors: List[Exception] = []
        self.transaction_delay = 0.0
        self.transaction_calls = 0
        self.query_calls = 0

    async def query_by_assignee_and_status(self, team_id, status, limit):
        self.query_calls += 1
        if self.query_errors:
            raise self.query_errors.pop(0)
        return await super().query_by_assignee_and_status(team_id, status, limit)

    async def atomic_conditional_update(self, issue_id, precondition, mutation):
        self.transaction_calls += 1
        if self.transaction_errors:
            raise self.transaction_errors.pop(0)
        if self.transaction_delay:
            await asyncio.sleep(self.transaction_delay)
        return await super().atomic_conditional_update(issue_id, precondition, mutation)

    async def write_points(self, team_id, points):
        if self.points_errors:
            raise self.points_errors.pop(0)
        return await super().write_points(team_id, points)


@pytest.fixture
def store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ms_clock() -> FakeMsClock:
    return FakeMsClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def cache(ms_clock: FakeMsClock) -> TeamQuotaCache:
    return TeamQuotaCache(ttl_ms=5000, sweep_probability=0.0, clock=ms_clock)


@pytest.fixture
def coordinator(store: FlakyStore, cache: TeamQuotaCache, clock: FakeClock, sleep: RecordingSleep) -> ClaimCoordinator:
    return ClaimCoordinator(
        store,
        cache,
        config=ClaimConfig(attempt_timeout_seconds=1.0, store_timeout_seconds=0.5),
        clock=clock,
        sleep=sleep,
    )


async def add_issue(store: MemoryStore, issue_id: str, tag: str = "easy", **fields) -> Issue:
    """Insert an issue with a fixed id (open unless fields say otherwise)."""
    return await store.create_issue(Issue(id=issue_id, title=f"Issue {issue_id}", tags=[tag], **fields))


async def add_occupied(store: MemoryStore, issue_id: str, team: str, at: datetime, tag: str = "easy") -> Issue:
    return await add_issue(store, issue_id, tag, status=IssueStatus.OCCUPIED, assigned_to=team, occupied_at=at)


async def add_team(store: MemoryStore, name: str, points: int = 0) -> None:
    await store.create_team(Team(name=name, points=points))
