"""Tests for the expiry sweeper (overdue release, floored penalty, idempotency)."""

import asyncio

import pytest
from conftest import START, add_issue, add_occupied, add_team

from occupy.config import SweeperConfig
from occupy.errors import TransientStoreError
from occupy.models import IssueStatus
from occupy.services import ExpirySweeper, SweepReport, TeamQuotaCache


@pytest.fixture
def sweeper(store, clock) -> ExpirySweeper:
    return ExpirySweeper(store, store, clock=clock)


class TestSweepOnce:
    """One pass over the occupied issues."""

    @pytest.mark.asyncio
    async def test_overdue_issue_reset_and_penalized(self, sweeper, store, clock) -> None:
        """medium: 40 minutes, 10 points."""
        await add_team(store, "TeamA", points=25)
        await add_occupied(store, "I1", "TeamA", START, tag="medium")
        clock.advance(minutes=41)
        report = await sweeper.sweep_once()
        assert report.expired == ["I1"]
        assert report.penalties == {"I1": 10}
        issue = await store.read_one("I1")
        assert issue.status == IssueStatus.OPEN
        assert issue.assigned_to is None
        assert issue.occupied_at is None
        assert issue.expiry_penalty_for is None
        assert await store.read_points("TeamA") == 15

    @pytest.mark.asyncio
    async def test_within_limit_untouched(self, sweeper, store, clock) -> None:
        await add_team(store, "TeamA", points=25)
        await add_occupied(store, "I1", "TeamA", START, tag="easy")
        clock.advance(minutes=19, seconds=59)
        report = await sweeper.sweep_once()
        assert report.expired == []
        assert (await store.read_one("I1")).assigned_to == "TeamA"
        assert await store.read_points("TeamA") == 25

    @pytest.mark.asyncio
    async def test_exact_limit_is_overdue(self, sweeper, store, clock) -> None:
        await add_team(store, "TeamA", points=25)
        await add_occupied(store, "I1", "TeamA", START, tag="easy")
        clock.advance(minutes=20)
        assert (await sweeper.sweep_once()).expired == ["I1"]

    @pytest.mark.asyncio
    async def test_penalty_floored_at_zero(self, sweeper, store, clock) -> None:
        """A team with 3 points losing a hard issue ends at 0, not -12."""
        await add_team(store, "TeamA", points=3)
        await add_occupied(store, "I1", "TeamA", START, tag="hard")
        clock.advance(minutes=61)
        report = await sweeper.sweep_once()
        assert report.penalties == {"I1": 3}
        assert await store.read_points("TeamA") == 0

    @pytest.mark.asyncio
    async def test_unknown_tag_uses_default_limit_without_penalty(self, sweeper, store, clock) -> None:
        await add_team(store, "TeamA", points=7)
        await add_occupied(store, "I1", "TeamA", START, tag="docs")
        clock.advance(minutes=39)
        assert (await sweeper.sweep_once()).expired == []
        clock.advance(minutes=1)
        report = await sweeper.sweep_once()
        assert report.expired == ["I1"]
        assert report.penalties == {"I1": 0}
        assert await store.read_points("TeamA") == 7

    @pytest.mark.asyncio
    async def test_closed_and_open_issues_ignored(self, sweeper, store, clock) -> None:
        await add_team(store, "TeamA", points=20)
        await add_issue(store, "I1", status=IssueStatus.CLOSED, assigned_to="TeamA", occupied_at=START)
        await add_issue(store, "I2")
        clock.advance(hours=5)
        assert (await sweeper.sweep_once()).expired == []
        assert await store.read_points("TeamA") == 20

    @pytest.mark.asyncio
    async def test_unknown_team_still_released(self, sweeper, store, clock) -> None:
        await add_occupied(store, "I1", "Ghosts", START, tag="easy")
        clock.advance(minutes=30)
        report = await sweeper.sweep_once()
        assert report.expired == ["I1"]
        assert report.penalties == {"I1": 0}

    @pytest.mark.asyncio
    async def test_store_error_leaves_issue_for_next_pass(self, sweeper, store, clock) -> None:
        await add_team(store, "TeamA", points=20)
        await add_occupied(store, "I1", "TeamA", START, tag="easy")
        clock.advance(minutes=30)
        store.transaction_errors = [TransientStoreError("unreachable")]
        report = await sweeper.sweep_once()
        assert report.failed == ["I1"]
        assert (await store.read_one("I1")).status == IssueStatus.OCCUPIED
        report = await sweeper.sweep_once()
        assert report.expired == ["I1"]
        assert await store.read_points("TeamA") == 15

    @pytest.mark.asyncio
    async def test_quota_cache_refreshed(self, store, clock) -> None:
        cache = TeamQuotaCache(sweep_probability=0.0)
        cache.set("TeamA", 3)
        sweeper = ExpirySweeper(store, store, cache=cache, clock=clock)
        await add_team(store, "TeamA", points=20)
        await add_occupied(store, "I1", "TeamA", START, tag="easy")
        await add_occupied(store, "I2", "TeamA", START, tag="hard")
        clock.advance(minutes=21)
        await sweeper.sweep_once()
        assert cache.get("TeamA") == 1


class TestPenaltyOnce:
    """The same claim is never charged twice."""

    @pytest.mark.asyncio
    async def test_reset_failure_after_deduction(self, sweeper, store, clock) -> None:
        """Stamp and deduction succeed, reset fails: the retry only finishes the reset."""
        await add_team(store, "TeamA", points=20)
        await add_occupied(store, "I1", "TeamA", START, tag="easy")
        clock.advance(minutes=25)

        original = store.atomic_conditional_update
        calls = []

        async def fail_second(issue_id, precondition, mutation):
            calls.append(issue_id)
            if len(calls) == 2:
                raise TransientStoreError("lost connection")
            return await original(issue_id, precondition, mutation)

        store.atomic_conditional_update = fail_second
        first = await sweeper.sweep_once()
        assert first.failed == ["I1"]
        assert await store.read_points("TeamA") == 15
        stamped = await store.read_one("I1")
        assert stamped.status == IssueStatus.OCCUPIED
        assert stamped.expiry_penalty_for == START

        second = await sweeper.sweep_once()
        assert second.expired == ["I1"]
        assert second.penalties == {}
        assert await store.read_points("TeamA") == 15

    @pytest.mark.asyncio
    async def test_failed_deduction_retried_next_pass(self, sweeper, store, clock) -> None:
        """A points write that fails clears the stamp; the next pass charges and resets."""
        await add_team(store, "TeamA", points=50)
        await add_occupied(store, "I1", "TeamA", START, tag="hard")
        clock.advance(minutes=61)
        store.points_errors.append(TransientStoreError("lost connection"))

        first = await sweeper.sweep_once()
        assert first.failed == ["I1"]
        assert first.penalties == {}
        held = await store.read_one("I1")
        assert held.status == IssueStatus.OCCUPIED
        assert held.assigned_to == "TeamA"
        assert held.expiry_penalty_for is None
        assert await store.read_points("TeamA") == 50

        second = await sweeper.sweep_once()
        assert second.expired == ["I1"]
        assert second.penalties == {"I1": 15}
        assert await store.read_points("TeamA") == 35
        assert (await store.read_one("I1")).status == IssueStatus.OPEN

    @pytest.mark.asyncio
    async def test_concurrent_sweeps_charge_once(self, store, clock) -> None:
        store.latency = 0.001
        await add_team(store, "TeamA", points=20)
        await add_occupied(store, "I1", "TeamA", START, tag="easy")
        clock.advance(minutes=25)
        a = ExpirySweeper(store, store, clock=clock)
        b = ExpirySweeper(store, store, clock=clock)
        reports = await asyncio.gather(a.sweep_once(), b.sweep_once())
        assert sum(len(r.expired) for r in reports) == 1
        assert await store.read_points("TeamA") == 15

    @pytest.mark.asyncio
    async def test_reclaimed_issue_not_reset(self, sweeper, store, clock) -> None:
        """An issue re-claimed between listing and reset keeps its new holder."""
        await add_team(store, "TeamA", points=20)
        await add_occupied(store, "I1", "TeamA", START, tag="easy")
        clock.advance(minutes=25)
        stale = await store.read_one("I1")
        await add_occupied(store, "I1", "TeamB", clock.now, tag="easy")
        report = await sweeper.sweep_once()
        assert report.expired == []

        report = SweepReport()
        await sweeper._expire(stale, report)
        assert report.expired == []
        assert report.penalties == {}
        assert (await store.read_one("I1")).assigned_to == "TeamB"
        assert await store.read_points("TeamA") == 20


class TestLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, store, clock) -> None:
        await add_team(store, "TeamA", points=20)
        await add_occupied(store, "I1", "TeamA", START, tag="easy")
        clock.advance(minutes=25)
        sweeper = ExpirySweeper(store, store, config=SweeperConfig(interval_seconds=0.01), clock=clock)
        await sweeper.start()
        assert sweeper.is_running
        await sweeper.start()
        for _ in range(50):
            if (await store.read_one("I1")).status == IssueStatus.OPEN:
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()
        assert not sweeper.is_running
        assert (await store.read_one("I1")).status == IssueStatus.OPEN
        assert await store.read_points("TeamA") == 15

    @pytest.mark.asyncio
    async def test_stop_without_start(self, sweeper) -> None:
        await sweeper.stop()
        assert not sweeper.is_running
