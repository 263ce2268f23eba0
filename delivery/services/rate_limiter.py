from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import update

from ..db.session import get_session
from ..models.rate_limit_counter import RateLimitCounter
from ..utils.clock import utcnow


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime


class RateLimiter:
    """Fixed-window request counter per client, stored in the database.

    Counters live in a shared table rather than process memory, so every
    app instance sees the same count. A window expires ``window_seconds``
    after its first hit and the next hit starts a new one.
    """

    def __init__(self, session_factory=get_session, *, limit: int = 100, window_seconds: int = 15 * 60, clock=utcnow):
        self._session_factory = session_factory
        self._limit = limit
        self._window = timedelta(seconds=window_seconds)
        self._clock = clock

    def hit(self, client_key: str) -> RateLimitResult:
        now = self._clock()
        cutoff = now - self._window
        with self._session_factory() as session:
            bumped = session.execute(
                update(RateLimitCounter)
                .where(RateLimitCounter.client_key == client_key, RateLimitCounter.window_started_at > cutoff)
                .values(count=RateLimitCounter.count + 1)
            )
            if bumped.rowcount == 0:
                reset = session.execute(
                    update(RateLimitCounter)
                    .where(RateLimitCounter.client_key == client_key)
                    .values(count=1, window_started_at=now)
                )
                if reset.rowcount == 0:
                    session.add(RateLimitCounter(client_key=client_key, window_started_at=now, count=1))
                    session.flush()
            row = session.get(RateLimitCounter, client_key)
            session.refresh(row)
            count, started = row.count, row.window_started_at
        return RateLimitResult(
            allowed=count <= self._limit,
            remaining=max(0, self._limit - count),
            reset_at=started + self._window,
        )
