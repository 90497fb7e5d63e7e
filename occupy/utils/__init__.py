"""Shared utilities (timeout race, clocks)."""

from occupy.utils.clock import monotonic_ms, utcnow
from occupy.utils.race import first_of

__all__ = ["first_of", "monotonic_ms", "utcnow"]
