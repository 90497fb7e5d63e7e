"""Claim coordinator: decides whether a team gets an open issue.

occupy() runs cheap local checks first (input, the caller's snapshot of the
issue, the team's quota from the cache or a capped query), then one atomic
conditional transaction in the store. The transaction re-reads the issue, so
of any number of racing claims exactly one moves it from open to occupied;
every other one sees the post-write state and gets a terminal failure.

Transport failures and timeouts are retried with linear backoff. Business
rule failures, store capacity errors and permission errors are returned
immediately. Nothing raises out of occupy(): every outcome is a ClaimResult.

A timed-out attempt is abandoned, not cancelled. The store may still commit
it, in which case the team holds the issue although the caller was told the
claim failed; the change feed brings the client back in line.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable

from occupy.config import ClaimConfig
from occupy.errors import (
    IssueNotFound,
    OperationTimeout,
    PermissionDeniedError,
    StoreUnavailableError,
    TransientStoreError,
)
from occupy.models import ClaimAttempt, ClaimErrorKind, ClaimResult, Issue, IssueStatus
from occupy.models.claim import QUOTA_MESSAGE, UNAVAILABLE_MESSAGE
from occupy.services.quota_cache import TeamQuotaCache
from occupy.store.base import IssueStore, UpdateOutcome
from occupy.utils.clock import utcnow
from occupy.utils.race import first_of

LOG = logging.getLogger("occupy.services.coordinator")

# Network unreachable, connection reset, deadline lost: worth another attempt
TRANSIENT_ERRORS = (TransientStoreError, OperationTimeout, TimeoutError, ConnectionError, OSError)


def claim_rejection(issue: Issue, team_id: str) -> ClaimResult | None:
    """Business-rule verdict on claiming issue for team_id; None means claimable."""
    if issue.is_held_by(team_id):
        return ClaimResult.fail(ClaimErrorKind.ALREADY_SELF, "Your team is already assigned to this issue.")
    if issue.status != IssueStatus.OPEN:
        return ClaimResult.fail(
            ClaimErrorKind.ALREADY_RESOLVED,
            f"This issue is already {issue.status.value}. Please choose another issue.",
        )
    return None


class ClaimCoordinator:
    """occupy(issue_id, team_id) with quota, retry and timeout handling."""

    def __init__(
        self,
        store: IssueStore,
        cache: TeamQuotaCache,
        config: ClaimConfig | None = None,
        team_quota: int = 3,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        config = config or ClaimConfig()
        self._store = store
        self._cache = cache
        self.team_quota = team_quota
        self.max_retries = config.max_retries
        self.backoff_step_ms = config.backoff_step_ms
        self.backoff_cap_ms = config.backoff_cap_ms
        self.attempt_timeout = config.attempt_timeout_seconds
        self.store_timeout = config.store_timeout_seconds
        self._clock = clock
        self._sleep = sleep

    def backoff_seconds(self, attempt_number: int) -> float:
        """Delay after failed attempt number attempt_number (1-based)."""
        return min(self.backoff_step_ms * attempt_number, self.backoff_cap_ms) / 1000

    async def occupy(self, issue_id: str, team_id: str, local: Issue | None = None) -> ClaimResult:
        """Claim issue_id for team_id.

        local is the caller's last known copy of the issue, if any; a claim it
        already shows as impossible fails without a store round trip.
        """
        issue_id = (issue_id or "").strip()
        team_id = (team_id or "").strip()
        if not issue_id or not team_id:
            return ClaimResult.fail(ClaimErrorKind.INVALID_INPUT, "Issue ID and team name are required")

        if local is not None:
            rejected = claim_rejection(local, team_id)
            if rejected is not None:
                LOG.debug("Claim %s by %s rejected locally: %s", issue_id, team_id, rejected.error_kind)
                return rejected

        attempt = ClaimAttempt(issue_id=issue_id, team_id=team_id)
        while attempt.attempt < self.max_retries:
            attempt.attempt += 1
            LOG.debug("Claim %s by %s: attempt %d/%d", issue_id, team_id, attempt.attempt, self.max_retries)
            try:
                result = await first_of(
                    self._attempt(issue_id, team_id),
                    self.attempt_timeout,
                    label=f"claim of {issue_id} by {team_id}",
                )
            except TRANSIENT_ERRORS as e:
                attempt.errors.append(str(e) or type(e).__name__)
                LOG.warning(
                    "Claim %s by %s: transient failure on attempt %d: %s",
                    issue_id,
                    team_id,
                    attempt.attempt,
                    attempt.last_error,
                )
                if attempt.attempt < self.max_retries:
                    await self._sleep(self.backoff_seconds(attempt.attempt))
                continue
            except IssueNotFound:
                return ClaimResult.fail(ClaimErrorKind.NOT_FOUND, "Issue no longer exists")
            except StoreUnavailableError as e:
                LOG.warning("Claim %s by %s: store unavailable: %s", issue_id, team_id, e)
                return ClaimResult.fail(ClaimErrorKind.UNAVAILABLE, UNAVAILABLE_MESSAGE)
            except PermissionDeniedError as e:
                return ClaimResult.fail(ClaimErrorKind.PERMISSION_DENIED, str(e))
            except Exception as e:
                LOG.exception("Claim %s by %s: unexpected error: %s", issue_id, team_id, e)
                return ClaimResult.fail(
                    ClaimErrorKind.UNAVAILABLE, "An unexpected error occurred. Please try again."
                )

            if result.success:
                LOG.info("Issue %s occupied by %s (attempt %d)", issue_id, team_id, attempt.attempt)
            else:
                LOG.info("Claim %s by %s rejected: %s", issue_id, team_id, result.message)
            return result

        return ClaimResult.fail(
            ClaimErrorKind.RETRIES_EXHAUSTED,
            f"Failed to occupy issue after {attempt.attempt} attempts: {attempt.last_error}",
        )

    async def _team_count(self, team_id: str) -> int:
        count = self._cache.get(team_id)
        if count is not None:
            return count
        held = await first_of(
            self._store.query_by_assignee_and_status(team_id, IssueStatus.OCCUPIED, self.team_quota),
            self.store_timeout,
            label=f"quota query for {team_id}",
        )
        count = len(held)
        self._cache.set(team_id, count)
        return count

    async def _attempt(self, issue_id: str, team_id: str) -> ClaimResult:
        """One pass: quota, then the transaction. Raises on store failures."""
        if await self._team_count(team_id) >= self.team_quota:
            return ClaimResult.fail(ClaimErrorKind.QUOTA_EXCEEDED, QUOTA_MESSAGE.format(quota=self.team_quota))

        seen: list[Issue] = []

        def precondition(issue: Issue) -> bool:
            seen.append(issue)
            return claim_rejection(issue, team_id) is None

        def mutation(issue: Issue) -> Issue:
            now = self._clock()
            return issue.model_copy(
                update={
                    "status": IssueStatus.OCCUPIED,
                    "assigned_to": team_id,
                    "occupied_at": now,
                    "last_updated": now,
                }
            )

        outcome = await first_of(
            self._store.atomic_conditional_update(issue_id, precondition, mutation),
            self.store_timeout,
            label=f"claim transaction on {issue_id}",
        )
        if outcome == UpdateOutcome.PRECONDITION_FAILED:
            rejected = claim_rejection(seen[-1], team_id) if seen else None
            return rejected or ClaimResult.fail(
                ClaimErrorKind.ALREADY_RESOLVED,
                "The issue status has changed. Please refresh and try again.",
            )
        self._cache.increment(team_id)
        return ClaimResult.ok()
