"""
auth/ratelimit.py -- Per-account, per-purpose, per-calendar-day attempt counter.

Complements the per-IP HTTP limiter in api/limiter.py (slowapi). This one
caps how many one-time codes a single account can request per day, which
also protects the mailer from being used to flood an inbox.

Keys are typed (AttemptKey) rather than interpolated strings, so the reset
and reactivation counters can never collide. The calendar day is part of the
key, which resets the count implicitly at midnight UTC.

Read-then-check is best effort: two racing requests can both pass
can_attempt() at count 4. That off-by-one is acceptable for abuse
prevention; the increment itself is atomic in the cache.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable

from cache.store import KeyedCache

_COUNTER_TTL = 24 * 60 * 60


@dataclass(frozen=True)
class AttemptKey:
    account_id: int
    purpose: str
    day: date

    def render(self) -> str:
        return f"otc-attempts:{self.purpose}:{self.account_id}:{self.day.isoformat()}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DailyAttemptLimiter:
    def __init__(
        self,
        cache: KeyedCache,
        purpose: str,
        limit: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._cache = cache
        self._purpose = purpose
        self.limit = limit
        self._clock = clock

    def key_for(self, account_id: int) -> AttemptKey:
        return AttemptKey(account_id=account_id, purpose=self._purpose, day=self._clock().date())

    def attempts(self, account_id: int) -> int:
        return int(self._cache.get(self.key_for(account_id).render(), 0))

    def can_attempt(self, account_id: int) -> bool:
        return self.attempts(account_id) < self.limit

    def record(self, account_id: int) -> int:
        return self._cache.incr(self.key_for(account_id).render(), ttl=_COUNTER_TTL)

    def clear(self, account_id: int) -> None:
        self._cache.delete(self.key_for(account_id).render())

    def remaining(self, account_id: int) -> int:
        return max(0, self.limit - self.attempts(account_id))
