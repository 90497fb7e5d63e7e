"""Contest services: quota cache, claim coordinator, expiry sweeper, lifecycle, team sessions."""

from occupy.services.coordinator import ClaimCoordinator, claim_rejection
from occupy.services.lifecycle import IssueLifecycle
from occupy.services.quota_cache import TeamQuotaCache
from occupy.services.sweeper import ExpirySweeper, SweepReport
from occupy.services.teams import TeamSessions, seed_repositories

__all__ = [
    "ClaimCoordinator",
    "ExpirySweeper",
    "IssueLifecycle",
    "SweepReport",
    "TeamQuotaCache",
    "TeamSessions",
    "claim_rejection",
    "seed_repositories",
]
