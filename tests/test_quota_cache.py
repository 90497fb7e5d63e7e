"""Tests for the team quota cache (TTL, in-place increment, probabilistic sweep)."""

import random

from conftest import FakeMsClock

from occupy.config import QuotaCacheConfig
from occupy.services import TeamQuotaCache


class _AlwaysSweep(random.Random):
    def random(self) -> float:
        return 0.0


class TestTeamQuotaCache:
    def test_missing_entry(self, cache: TeamQuotaCache) -> None:
        assert cache.get("TeamA") is None

    def test_fresh_entry_returned(self, cache: TeamQuotaCache, ms_clock: FakeMsClock) -> None:
        cache.set("TeamA", 2)
        ms_clock.now += 4999
        assert cache.get("TeamA") == 2

    def test_entry_expires_at_ttl(self, cache: TeamQuotaCache, ms_clock: FakeMsClock) -> None:
        cache.set("TeamA", 2)
        ms_clock.now += 5000
        assert cache.get("TeamA") is None

    def test_increment_bumps_count_and_restarts_ttl(self, cache: TeamQuotaCache, ms_clock: FakeMsClock) -> None:
        cache.set("TeamA", 1)
        ms_clock.now += 4000
        cache.increment("TeamA")
        ms_clock.now += 4000
        assert cache.get("TeamA") == 2

    def test_increment_without_entry_is_noop(self, cache: TeamQuotaCache) -> None:
        cache.increment("TeamA")
        assert cache.get("TeamA") is None
        assert len(cache) == 0

    def test_set_overwrites(self, cache: TeamQuotaCache) -> None:
        cache.set("TeamA", 3)
        cache.set("TeamA", 0)
        assert cache.get("TeamA") == 0

    def test_sweep_expired_drops_only_stale(self, cache: TeamQuotaCache, ms_clock: FakeMsClock) -> None:
        cache.set("TeamA", 1)
        ms_clock.now += 3000
        cache.set("TeamB", 2)
        ms_clock.now += 2500
        assert cache.sweep_expired() == 1
        assert len(cache) == 1
        assert cache.get("TeamB") == 2

    def test_get_sweeps_when_sampled(self) -> None:
        """A get() that hits the sweep probability clears stale entries of other teams."""
        clock = FakeMsClock()
        cache = TeamQuotaCache(ttl_ms=100, sweep_probability=0.5, clock=clock, rng=_AlwaysSweep())
        cache.set("TeamA", 1)
        cache.set("TeamB", 1)
        clock.now += 100
        assert cache.get("TeamC") is None
        assert len(cache) == 0

    def test_no_sweep_with_zero_probability(self, cache: TeamQuotaCache, ms_clock: FakeMsClock) -> None:
        cache.set("TeamA", 1)
        ms_clock.now += 10_000
        cache.get("TeamB")
        assert len(cache) == 1

    def test_from_config(self) -> None:
        cache = TeamQuotaCache.from_config(QuotaCacheConfig(ttl_ms=250, sweep_probability=0.0))
        assert cache.ttl_ms == 250
        assert cache.sweep_probability == 0.0
