"""Per-difficulty contest rules: how long a claim may last, what expiry costs,
what a merge earns. Only the first tag of an issue is looked at."""

from datetime import timedelta

from occupy.config import ContestConfig
from occupy.models import Issue


class ContestPolicy:
    """Lookup tables built from ContestConfig."""

    def __init__(self, config: ContestConfig | None = None) -> None:
        config = config or ContestConfig()
        self.team_quota = config.team_quota
        self._time_limits = {k.lower(): v for k, v in config.time_limits_minutes.items()}
        self._penalties = {k.lower(): v for k, v in config.penalties.items()}
        self._merge_points = {k.lower(): v for k, v in config.merge_points.items()}
        self._default_difficulty = config.default_difficulty.lower()

    def time_limit(self, issue: Issue) -> timedelta:
        """Unknown or missing tag falls back to the default difficulty."""
        minutes = self._time_limits.get(issue.difficulty or "")
        if minutes is None:
            minutes = self._time_limits.get(self._default_difficulty, 40)
        return timedelta(minutes=minutes)

    def penalty(self, issue: Issue) -> int:
        """Unknown tag costs nothing."""
        return self._penalties.get(issue.difficulty or "", 0)

    def merge_points(self, issue: Issue) -> int:
        """Unknown tag earns nothing."""
        return self._merge_points.get(issue.difficulty or "", 0)
