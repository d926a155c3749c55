"""Fixed-window request counter keyed by action and actor.

A counter lives for ``window`` from its first request. Once the window has
elapsed the next request resets it to one. Counters are kept in an injected
``RateLimitStore`` so tests can use ``InMemoryRateLimitStore`` and production
shares counters across workers through ``SqlRateLimitStore``.

Concurrency: two requests for the same key may read the same count before
either increments it, so a race can admit one request beyond ``max_requests``
(the SQL store increments atomically, which narrows but does not close the
gap). This bound is accepted in exchange for not serialising requests.

Store failures fail open: the request is allowed and the failure is logged.
Deployments that need fail-closed enforcement should construct the limiter
with ``fail_open=False``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from invoicedesk.db.base import utcnow
from invoicedesk.models.rate_limit import RateLimitCounter

logger = logging.getLogger(__name__)


class RateLimitStoreError(RuntimeError):
    pass


@dataclass(frozen=True)
class CounterSnapshot:
    count: int
    window_start: datetime


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: datetime


class RateLimitStore(Protocol):
    def get(self, key: str) -> Optional[CounterSnapshot]:
        ...

    def upsert(self, key: str, *, count: int, window_start: datetime) -> None:
        ...

    def increment(self, key: str) -> None:
        ...


class InMemoryRateLimitStore:
    def __init__(self) -> None:
        self._counters: Dict[str, CounterSnapshot] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CounterSnapshot]:
        with self._lock:
            return self._counters.get(key)

    def upsert(self, key: str, *, count: int, window_start: datetime) -> None:
        with self._lock:
            self._counters[key] = CounterSnapshot(count=count, window_start=window_start)

    def increment(self, key: str) -> None:
        with self._lock:
            current = self._counters.get(key)
            if current is not None:
                self._counters[key] = CounterSnapshot(count=current.count + 1, window_start=current.window_start)


class SqlRateLimitStore:
    """Counters in ``rate_limit_counters``, each call in its own short transaction."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[CounterSnapshot]:
        try:
            with self._session_factory() as db:
                row = db.execute(select(RateLimitCounter).where(RateLimitCounter.key == key)).scalar_one_or_none()
                if row is None:
                    return None
                return CounterSnapshot(count=row.count, window_start=row.window_start)
        except SQLAlchemyError as exc:
            raise RateLimitStoreError(str(exc)) from exc

    def upsert(self, key: str, *, count: int, window_start: datetime) -> None:
        try:
            with self._session_factory() as db:
                result = db.execute(
                    update(RateLimitCounter)
                    .where(RateLimitCounter.key == key)
                    .values(count=count, window_start=window_start)
                )
                if result.rowcount == 0:
                    db.add(RateLimitCounter(key=key, count=count, window_start=window_start))
                try:
                    db.commit()
                except IntegrityError:
                    # Another request created the row first; take it over.
                    db.rollback()
                    db.execute(
                        update(RateLimitCounter)
                        .where(RateLimitCounter.key == key)
                        .values(count=count, window_start=window_start)
                    )
                    db.commit()
        except SQLAlchemyError as exc:
            raise RateLimitStoreError(str(exc)) from exc

    def increment(self, key: str) -> None:
        try:
            with self._session_factory() as db:
                db.execute(
                    update(RateLimitCounter)
                    .where(RateLimitCounter.key == key)
                    .values(count=RateLimitCounter.count + 1)
                )
                db.commit()
        except SQLAlchemyError as exc:
            raise RateLimitStoreError(str(exc)) from exc


def rate_limit_key(action: str, actor: str | int) -> str:
    """Namespace a counter by action and actor, e.g. ``invoice:send:42``."""
    return f"{action}:{actor}"


class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        fail_open: bool = True,
    ) -> None:
        self.store = store
        self.clock = clock
        self.fail_open = fail_open

    def check(self, key: str, max_requests: int, window: timedelta) -> RateLimitDecision:
        now = self.clock()
        try:
            counter = self.store.get(key)
            if counter is None or now - counter.window_start >= window:
                self.store.upsert(key, count=1, window_start=now)
                return RateLimitDecision(allowed=True, remaining=max_requests - 1, reset_at=now + window)

            reset_at = counter.window_start + window
            if counter.count >= max_requests:
                return RateLimitDecision(allowed=False, remaining=0, reset_at=reset_at)

            self.store.increment(key)
            return RateLimitDecision(
                allowed=True,
                remaining=max(0, max_requests - counter.count - 1),
                reset_at=reset_at,
            )
        except RateLimitStoreError:
            logger.exception("rate_limit_store_failure key=%s", key)
            if not self.fail_open:
                return RateLimitDecision(allowed=False, remaining=0, reset_at=now + window)
            return RateLimitDecision(allowed=True, remaining=max_requests, reset_at=now + window)
