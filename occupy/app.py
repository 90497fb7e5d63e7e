"""Wiring: one store, one quota cache and the services built on them."""

import logging

from occupy.client.reconciler import ClientReconciler
from occupy.config import AppConfig
from occupy.models import Repository
from occupy.policy import ContestPolicy
from occupy.services import (
    ClaimCoordinator,
    ExpirySweeper,
    IssueLifecycle,
    TeamQuotaCache,
    TeamSessions,
    seed_repositories,
)
from occupy.store import MemoryStore, make_store

LOG = logging.getLogger("occupy.app")

INITIAL_REPOSITORIES = [
    Repository(name="awesome-repo", url="https://github.com/example/awesome-repo"),
    Repository(name="ui-kit", url="https://github.com/example/ui-kit"),
    Repository(name="lib-helpers", url="https://github.com/example/lib-helpers"),
]


class Contest:
    """All core services sharing one store and one quota cache."""

    def __init__(self, config: AppConfig, store: MemoryStore | None = None) -> None:
        self.config = config
        self.store = store if store is not None else make_store(config.store)
        self.policy = ContestPolicy(config.contest)
        self.cache = TeamQuotaCache.from_config(config.quota_cache)
        self.coordinator = ClaimCoordinator(
            self.store,
            self.cache,
            config=config.claim,
            team_quota=self.policy.team_quota,
        )
        self.sweeper = ExpirySweeper(
            self.store,
            self.store,
            policy=self.policy,
            config=config.sweeper,
            cache=self.cache,
        )
        self.lifecycle = IssueLifecycle(self.store, self.store, policy=self.policy, cache=self.cache)
        self.sessions = TeamSessions(self.store, config.contest.teams)

    async def bootstrap(self) -> None:
        """First-start seeding: teams, repositories, stale sessions cleared."""
        await self.sessions.initialize_teams()
        await self.sessions.reset_stale_sessions()
        added = await seed_repositories(self.store, INITIAL_REPOSITORIES)
        if added:
            LOG.info("Seeded %d repositories", added)

    def client(self, **kwargs) -> ClientReconciler:
        """A reconciler for one client session."""
        return ClientReconciler(self.store, self.coordinator, sessions=self.sessions, config=self.config.feed, **kwargs)
