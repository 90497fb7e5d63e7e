"""Expiry sweeper: every interval, release issues held past their time limit.

For each occupied issue whose claim is older than the difficulty's time
limit, the holding team loses the difficulty's penalty (never below zero
points) and the issue goes back to open with its assignment cleared.

The penalty and the reset are separate writes. To keep a retried or
restarted sweep from charging the same claim twice, the sweeper first stamps
expiry_penalty_for = occupied_at on the issue in a conditional update and
only the sweep whose stamp commits deducts points. The reset clears the
stamp. A crash after the deduction leaves the issue occupied and stamped; the
next pass skips the deduction and finishes the reset. A deduction that fails
with a store error clears the stamp again and leaves the issue occupied, so
the next pass retries the penalty.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List

from pydantic import BaseModel, Field

from occupy.config import SweeperConfig
from occupy.errors import StoreError, TeamNotFound
from occupy.models import Issue, IssueStatus
from occupy.policy import ContestPolicy
from occupy.services.quota_cache import TeamQuotaCache
from occupy.store.base import IssueStore, TeamLedger, UpdateOutcome
from occupy.utils.clock import utcnow

LOG = logging.getLogger("occupy.services.sweeper")


class SweepReport(BaseModel):
    """Outcome of one sweep pass."""

    expired: List[str] = Field(default_factory=list, description="Issues reset to open")
    penalties: Dict[str, int] = Field(default_factory=dict, description="Points actually deducted, by issue id")
    failed: List[str] = Field(default_factory=list, description="Overdue issues left for the next pass")


class ExpirySweeper:
    """Periodic release and penalty of overdue claims."""

    def __init__(
        self,
        store: IssueStore,
        ledger: TeamLedger,
        policy: ContestPolicy | None = None,
        config: SweeperConfig | None = None,
        cache: TeamQuotaCache | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._policy = policy or ContestPolicy()
        self.interval_seconds = (config or SweeperConfig()).interval_seconds
        self._cache = cache
        self._clock = clock
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_overdue(self, issue: Issue, now: datetime) -> bool:
        if issue.status != IssueStatus.OCCUPIED or issue.occupied_at is None or not issue.assigned_to:
            return False
        return now - issue.occupied_at >= self._policy.time_limit(issue)

    async def sweep_once(self, now: datetime | None = None) -> SweepReport:
        """Expire every overdue claim once."""
        now = now or self._clock()
        report = SweepReport()
        for issue in await self._store.list_by_status(IssueStatus.OCCUPIED):
            if not self.is_overdue(issue, now):
                continue
            try:
                await self._expire(issue, report)
            except StoreError as e:
                LOG.warning("Failed to expire issue %s: %s", issue.id, e)
                report.failed.append(issue.id)
        return report

    async def _expire(self, issue: Issue, report: SweepReport) -> None:
        team_id = issue.assigned_to or ""
        claimed_at = issue.occupied_at

        def same_claim(current: Issue) -> bool:
            return (
                current.status == IssueStatus.OCCUPIED
                and current.assigned_to == team_id
                and current.occupied_at == claimed_at
            )

        if issue.expiry_penalty_for != claimed_at:
            stamped = await self._store.atomic_conditional_update(
                issue.id,
                lambda current: same_claim(current) and current.expiry_penalty_for != claimed_at,
                lambda current: current.model_copy(update={"expiry_penalty_for": claimed_at}),
            )
            if stamped == UpdateOutcome.COMMITTED:
                try:
                    report.penalties[issue.id] = await self._deduct(team_id, self._policy.penalty(issue))
                except StoreError:
                    await self._release_stamp(issue.id, same_claim, claimed_at)
                    raise

        reset = await self._store.atomic_conditional_update(
            issue.id,
            same_claim,
            lambda current: current.model_copy(
                update={
                    "status": IssueStatus.OPEN,
                    "assigned_to": None,
                    "occupied_at": None,
                    "closed_at": None,
                    "expiry_penalty_for": None,
                }
            ),
        )
        if reset != UpdateOutcome.COMMITTED:
            LOG.debug("Issue %s changed before its expiry reset; skipped", issue.id)
            return
        report.expired.append(issue.id)
        LOG.info(
            "Time expired for %r (issue %s); %s points deducted from %s",
            issue.title,
            issue.id,
            report.penalties.get(issue.id, 0),
            team_id,
        )
        await self._refresh_quota(team_id)

    async def _release_stamp(
        self,
        issue_id: str,
        same_claim: Callable[[Issue], bool],
        claimed_at: datetime | None,
    ) -> None:
        """Clear the penalty stamp after a failed deduction so the next pass charges again."""
        try:
            await self._store.atomic_conditional_update(
                issue_id,
                lambda current: same_claim(current) and current.expiry_penalty_for == claimed_at,
                lambda current: current.model_copy(update={"expiry_penalty_for": None}),
            )
        except StoreError as e:
            LOG.error("Penalty for issue %s not taken and its stamp could not be cleared: %s", issue_id, e)

    async def _deduct(self, team_id: str, penalty: int) -> int:
        """Take penalty points from the team, floored at zero. Returns points taken."""
        if penalty <= 0:
            return 0
        try:
            points = await self._ledger.read_points(team_id)
        except TeamNotFound:
            LOG.warning("Expired claim held by unknown team %s; no penalty", team_id)
            return 0
        new_points = max(0, points - penalty)
        await self._ledger.write_points(team_id, new_points)
        return points - new_points

    async def _refresh_quota(self, team_id: str) -> None:
        if self._cache is None:
            return
        held = await self._store.query_by_assignee_and_status(team_id, IssueStatus.OCCUPIED, self._policy.team_quota)
        self._cache.set(team_id, len(held))

    async def start(self) -> None:
        """Start the sweep loop as a background task."""
        if self.is_running:
            LOG.warning("Expiry sweeper already running")
            return
        self._task = asyncio.create_task(self._run_loop())
        LOG.info("Expiry sweeper started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        LOG.info("Expiry sweeper stopped")

    async def _run_loop(self) -> None:
        while True:
            try:
                report = await self.sweep_once()
                if report.expired or report.failed:
                    LOG.debug("Sweep: expired=%s failed=%s", report.expired, report.failed)
            except Exception as e:
                LOG.exception("Sweep pass error: %s", e)
            await asyncio.sleep(self.interval_seconds)
