"""Issue lifecycle after a claim: close with a PR, review the PR, award points.

Also carries the admin overrides (create, assign, move, delete, manual
points). Every issue write goes through the store's conditional update so a
state check and its write cannot interleave with a claim or an expiry.
"""

import logging
from datetime import datetime
from typing import Callable, List

from occupy.errors import LifecycleError, StoreError, TeamNotFound
from occupy.models import Issue, IssueStatus, PrStatus
from occupy.policy import ContestPolicy
from occupy.services.quota_cache import TeamQuotaCache
from occupy.store.base import IssueStore, TeamLedger, UpdateOutcome
from occupy.utils.clock import utcnow

LOG = logging.getLogger("occupy.services.lifecycle")

REVIEW_STATUSES = (PrStatus.APPROVED, PrStatus.MERGED, PrStatus.REJECTED)


class IssueLifecycle:
    """Close, PR review and admin actions on issues."""

    def __init__(
        self,
        store: IssueStore,
        ledger: TeamLedger,
        policy: ContestPolicy | None = None,
        cache: TeamQuotaCache | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._policy = policy or ContestPolicy()
        self._cache = cache
        self._clock = clock

    async def create_issue(
        self,
        title: str,
        repo: str | None = None,
        description: str = "",
        tags: List[str] | None = None,
    ) -> Issue:
        """Add a new open, unassigned issue."""
        if not title or not title.strip():
            raise LifecycleError("Issue title is required")
        issue = await self._store.create_issue(
            Issue(id="", title=title.strip(), repo=repo, description=description, tags=list(tags or []))
        )
        LOG.info("Created issue %s %r (tags=%s)", issue.id, issue.title, issue.tags)
        return issue

    async def close_issue(self, issue_id: str, team_id: str, pr_url: str) -> None:
        """Close an issue the team holds, recording its pull request."""
        pr_url = (pr_url or "").strip()
        if not pr_url:
            raise LifecycleError("PR URL is required")
        now = self._clock()
        outcome = await self._store.atomic_conditional_update(
            issue_id,
            lambda current: current.is_held_by(team_id),
            lambda current: current.model_copy(
                update={
                    "status": IssueStatus.CLOSED,
                    "closed_at": now,
                    "pr_url": pr_url,
                    "pr_status": PrStatus.PENDING,
                }
            ),
        )
        if outcome != UpdateOutcome.COMMITTED:
            raise LifecycleError("Only the team holding an occupied issue can close it.")
        LOG.info("Issue %s closed by %s with PR %s", issue_id, team_id, pr_url)
        await self._refresh_quota(team_id)

    async def update_pr_status(self, issue_id: str, status: PrStatus | str) -> int:
        """Record a review decision on a closed issue's PR.

        merged awards the difficulty's merge points to the holder. A merged PR
        is final, so a repeated merged never awards twice. Returns points awarded.
        """
        try:
            status = PrStatus(status)
        except ValueError:
            raise LifecycleError(f"Unknown PR status: {status}") from None
        if status not in REVIEW_STATUSES:
            raise LifecycleError(f"PR status cannot be set to {status.value}")

        seen: list[Issue] = []

        def precondition(current: Issue) -> bool:
            seen.append(current)
            return current.status == IssueStatus.CLOSED and current.pr_status != PrStatus.MERGED

        outcome = await self._store.atomic_conditional_update(
            issue_id,
            precondition,
            lambda current: current.model_copy(update={"pr_status": status}),
        )
        if outcome != UpdateOutcome.COMMITTED:
            current = seen[-1] if seen else None
            if current is not None and current.pr_status == PrStatus.MERGED:
                LOG.info("PR of issue %s already merged; %s ignored", issue_id, status.value)
                return 0
            raise LifecycleError("PR status can only change on a closed issue.")

        issue = seen[-1]
        if status == PrStatus.MERGED:
            points = self._policy.merge_points(issue)
            if issue.assigned_to and points:
                try:
                    await self.award_points(issue.assigned_to, points)
                except (LifecycleError, StoreError):
                    await self._unmerge(issue_id, issue.pr_status)
                    raise
                LOG.info("%s awarded %d points for %r", issue.assigned_to, points, issue.title)
                return points
            return 0
        if status == PrStatus.REJECTED:
            LOG.info("PR of issue %s rejected; %s receives no points", issue_id, issue.assigned_to)
        else:
            LOG.info("PR of issue %s approved; waiting for merge", issue_id)
        return 0

    async def _unmerge(self, issue_id: str, previous: PrStatus | None) -> None:
        """Put back the PR status a merge replaced when its points were not awarded."""
        try:
            await self._store.atomic_conditional_update(
                issue_id,
                lambda current: current.status == IssueStatus.CLOSED and current.pr_status == PrStatus.MERGED,
                lambda current: current.model_copy(update={"pr_status": previous}),
            )
        except StoreError as e:
            LOG.error("Merge points for issue %s not awarded and its PR status could not be restored: %s", issue_id, e)

    async def award_points(self, team_id: str, points: int) -> int:
        """Add (or with a negative value, take) points. Returns the new total."""
        try:
            current = await self._ledger.read_points(team_id)
        except TeamNotFound:
            raise LifecycleError(f"Team {team_id} not found") from None
        total = max(0, current + points)
        await self._ledger.write_points(team_id, total)
        return total

    async def assign_issue(self, issue_id: str, team_id: str | None) -> None:
        """Admin override: hand the issue to team_id, or release it with None."""
        now = self._clock()
        previous: list[Issue] = []

        def mutation(current: Issue) -> Issue:
            previous.append(current)
            if team_id:
                update = {"status": IssueStatus.OCCUPIED, "assigned_to": team_id, "occupied_at": now}
            else:
                update = {"status": IssueStatus.OPEN, "assigned_to": None, "occupied_at": None, "closed_at": None}
            return current.model_copy(update={**update, "expiry_penalty_for": None})

        await self._store.atomic_conditional_update(issue_id, lambda current: True, mutation)
        LOG.info("Issue %s %s", issue_id, f"assigned to {team_id}" if team_id else "unassigned")
        for team in {team_id, *(p.assigned_to for p in previous)}:
            if team:
                await self._refresh_quota(team)

    async def move_issue(self, issue_id: str, status: IssueStatus | str) -> None:
        """Admin override of the status; keeps the assignment invariant."""
        status = IssueStatus(status)
        now = self._clock()

        def allowed(current: Issue) -> bool:
            return status == IssueStatus.OPEN or bool(current.assigned_to)

        def mutation(current: Issue) -> Issue:
            if status == IssueStatus.OPEN:
                return current.model_copy(
                    update={
                        "status": status,
                        "assigned_to": None,
                        "occupied_at": None,
                        "closed_at": None,
                        "expiry_penalty_for": None,
                    }
                )
            if status == IssueStatus.OCCUPIED:
                return current.model_copy(update={"status": status, "occupied_at": current.occupied_at or now})
            return current.model_copy(update={"status": status, "closed_at": current.closed_at or now})

        outcome = await self._store.atomic_conditional_update(issue_id, allowed, mutation)
        if outcome != UpdateOutcome.COMMITTED:
            raise LifecycleError("Assign a team before moving the issue out of open.")
        LOG.info("Issue %s moved to %s", issue_id, status.value)

    async def delete_issue(self, issue_id: str) -> None:
        await self._store.delete_issue(issue_id)
        LOG.info("Issue %s deleted", issue_id)

    async def _refresh_quota(self, team_id: str) -> None:
        if self._cache is None:
            return
        held = await self._store.query_by_assignee_and_status(team_id, IssueStatus.OCCUPIED, self._policy.team_quota)
        self._cache.set(team_id, len(held))
