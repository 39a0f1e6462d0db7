"""
Cache freshness policy for a user's ACTIVE recommendation set.

A cached set is served without re-evaluation when it is non-empty and at
least one of its rows was created inside the freshness window:

    fresh  ⇔  now - created_at < window      (strictly less)

A row created "in the future" relative to ``now`` (clock skew between
writers) counts as fresh.

The policy is a pure function of ``(now, created_at)``; the lifecycle manager
injects it, so tests can substitute a fixed-window or always-stale policy.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from farm_advisor.utils.time_utils import ensure_utc


@dataclass(frozen=True)
class FreshnessPolicy:
    """Fixed-window freshness rule.

    Attributes:
        window: Maximum age of a row that still counts as fresh.
    """

    window: timedelta = timedelta(minutes=60)

    @classmethod
    def from_minutes(cls, minutes: int) -> "FreshnessPolicy":
        if minutes < 0:
            raise ValueError(f"Freshness window must be >= 0 minutes, got {minutes}.")
        return cls(window=timedelta(minutes=minutes))

    def is_fresh(self, now: datetime, created_at: datetime) -> bool:
        return ensure_utc(now) - ensure_utc(created_at) < self.window

    def any_fresh(self, now: datetime, created_ats: Iterable[datetime]) -> bool:
        """True if any timestamp in ``created_ats`` is fresh."""
        return any(self.is_fresh(now, created_at) for created_at in created_ats)
