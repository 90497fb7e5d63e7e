"""Team quota cache: short-lived per-team count of occupied issues.

Derived data, never authoritative. It lets the claim coordinator reject an
obviously over-quota claim without a store query. Entries are valid for
ttl_ms after sampling; a successful claim bumps the entry in place so the
next claim in the same window sees it.

The store transaction does not re-check quota, so this cache (with the query
that refreshes it) is the only quota enforcement. Two concurrent claims by
one team can both read a sub-quota count and both commit: the cache is
best-effort, not a safety mechanism.
"""

import logging
import random
from typing import Callable, Dict

from occupy.config import QuotaCacheConfig
from occupy.utils.clock import monotonic_ms

LOG = logging.getLogger("occupy.services.quota_cache")


class QuotaEntry:
    """Occupied count and when it was sampled (ms on the cache clock)."""

    def __init__(self, count: int, sampled_at: float) -> None:
        self.count = count
        self.sampled_at = sampled_at


class TeamQuotaCache:
    """get / set / increment / sweep_expired over team id -> QuotaEntry."""

    def __init__(
        self,
        ttl_ms: int = 5000,
        sweep_probability: float = 0.1,
        clock: Callable[[], float] = monotonic_ms,
        rng: random.Random | None = None,
    ) -> None:
        self.ttl_ms = ttl_ms
        self.sweep_probability = sweep_probability
        self._clock = clock
        self._rng = rng or random.Random()
        self._entries: Dict[str, QuotaEntry] = {}

    @classmethod
    def from_config(cls, config: QuotaCacheConfig, **kwargs) -> "TeamQuotaCache":
        return cls(ttl_ms=config.ttl_ms, sweep_probability=config.sweep_probability, **kwargs)

    def _fresh(self, entry: QuotaEntry, now: float) -> bool:
        return now - entry.sampled_at < self.ttl_ms

    def get(self, team_id: str) -> int | None:
        """Cached count, or None when missing or older than the TTL."""
        if self._rng.random() < self.sweep_probability:
            self.sweep_expired()
        entry = self._entries.get(team_id)
        if entry is None or not self._fresh(entry, self._clock()):
            return None
        return entry.count

    def set(self, team_id: str, count: int) -> None:
        self._entries[team_id] = QuotaEntry(count=count, sampled_at=self._clock())

    def increment(self, team_id: str) -> None:
        """Count one more claim and restart the entry's TTL.

        No entry means nothing was sampled yet; the next query will count the claim.
        """
        entry = self._entries.get(team_id)
        if entry is None:
            return
        entry.count += 1
        entry.sampled_at = self._clock()

    def sweep_expired(self) -> int:
        """Drop every entry past the TTL. Returns how many were dropped."""
        now = self._clock()
        stale = [team for team, entry in self._entries.items() if not self._fresh(entry, now)]
        for team in stale:
            del self._entries[team]
        if stale:
            LOG.debug("Quota cache dropped %d expired entr(y/ies)", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)
