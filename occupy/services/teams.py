"""Team roster and the one-live-session-per-team flag."""

import logging
from typing import Iterable, List

from occupy.errors import SessionError, TeamNotFound
from occupy.models import Repository, Team
from occupy.store.base import RepositoryCatalog, TeamLedger

LOG = logging.getLogger("occupy.services.teams")


class TeamSessions:
    """Login/logout against the team ledger; only rostered teams may log in."""

    def __init__(self, ledger: TeamLedger, roster: Iterable[str]) -> None:
        self._ledger = ledger
        self.roster = list(roster)

    async def initialize_teams(self) -> List[Team]:
        """Create every rostered team that does not exist yet (0 points, inactive)."""
        for name in self.roster:
            await self._ledger.create_team(Team(name=name))
        return await self._ledger.list_teams()

    async def reset_stale_sessions(self) -> int:
        """Clear active flags left behind by a previous run. Returns how many were cleared."""
        cleared = 0
        for team in await self._ledger.list_teams():
            if team.active:
                await self._ledger.set_active(team.name, False)
                cleared += 1
        if cleared:
            LOG.info("Reset %d stale team session(s)", cleared)
        return cleared

    async def login(self, team_id: str) -> Team:
        if team_id not in self.roster:
            raise SessionError("Team not recognized. Contact admin.")
        try:
            team = await self._ledger.read_team(team_id)
        except TeamNotFound:
            raise SessionError("Team not found.") from None
        if team.active:
            raise SessionError("This team is already active. Only one active session allowed.")
        await self._ledger.set_active(team_id, True)
        LOG.info("Team %s logged in", team_id)
        return team.model_copy(update={"active": True})

    async def logout(self, team_id: str) -> None:
        await self._ledger.set_active(team_id, False)
        LOG.info("Team %s logged out", team_id)


async def seed_repositories(catalog: RepositoryCatalog, repos: Iterable[Repository]) -> int:
    """Insert repos when the catalog is empty. Returns how many were added."""
    if await catalog.list_repositories():
        return 0
    added = 0
    for repo in repos:
        await catalog.create_repository(repo)
        added += 1
    return added
