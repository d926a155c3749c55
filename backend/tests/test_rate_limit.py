from __future__ import annotations

from datetime import datetime, timedelta, timezone

from invoicedesk.core.rate_limit import (
    InMemoryRateLimitStore,
    RateLimiter,
    RateLimitStoreError,
    SqlRateLimitStore,
    rate_limit_key,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class BrokenStore:
    def get(self, key):
        raise RateLimitStoreError("store down")

    def upsert(self, key, *, count, window_start):
        raise RateLimitStoreError("store down")

    def increment(self, key):
        raise RateLimitStoreError("store down")


WINDOW = timedelta(minutes=1)


def test_request_past_the_limit_is_denied_until_the_window_resets():
    clock = FakeClock()
    limiter = RateLimiter(InMemoryRateLimitStore(), clock=clock)
    key = rate_limit_key("invoice:send", 7)

    decisions = [limiter.check(key, 3, WINDOW) for _ in range(3)]
    assert all(decision.allowed for decision in decisions)
    assert [decision.remaining for decision in decisions] == [2, 1, 0]

    denied = limiter.check(key, 3, WINDOW)
    assert not denied.allowed
    assert denied.remaining == 0
    assert denied.reset_at > clock.now
    assert denied.reset_at == datetime(2026, 1, 1, 12, 1, tzinfo=timezone.utc)

    clock.advance(seconds=59)
    assert not limiter.check(key, 3, WINDOW).allowed

    clock.advance(seconds=1)
    fresh = limiter.check(key, 3, WINDOW)
    assert fresh.allowed
    assert fresh.remaining == 2
    assert fresh.reset_at == clock.now + WINDOW


def test_keys_are_isolated_by_action_and_actor():
    limiter = RateLimiter(InMemoryRateLimitStore(), clock=FakeClock())
    assert limiter.check(rate_limit_key("invoice:send", 1), 1, WINDOW).allowed
    assert not limiter.check(rate_limit_key("invoice:send", 1), 1, WINDOW).allowed

    assert limiter.check(rate_limit_key("invoice:send", 2), 1, WINDOW).allowed
    assert limiter.check(rate_limit_key("invoice:cancel", 1), 1, WINDOW).allowed


def test_store_failure_fails_open_by_default():
    limiter = RateLimiter(BrokenStore(), clock=FakeClock())
    decision = limiter.check("invoice:send:1", 1, WINDOW)
    assert decision.allowed


def test_store_failure_can_fail_closed():
    limiter = RateLimiter(BrokenStore(), clock=FakeClock(), fail_open=False)
    decision = limiter.check("invoice:send:1", 1, WINDOW)
    assert not decision.allowed


def test_sql_store_counts_across_limiter_instances(session_factory):
    clock = FakeClock()
    store = SqlRateLimitStore(session_factory)
    first = RateLimiter(store, clock=clock)
    second = RateLimiter(SqlRateLimitStore(session_factory), clock=clock)

    assert first.check("auth:login:10.0.0.1", 2, WINDOW).allowed
    assert second.check("auth:login:10.0.0.1", 2, WINDOW).allowed
    assert not first.check("auth:login:10.0.0.1", 2, WINDOW).allowed

    snapshot = store.get("auth:login:10.0.0.1")
    assert snapshot is not None
    assert snapshot.count == 2

    clock.advance(minutes=1)
    assert second.check("auth:login:10.0.0.1", 2, WINDOW).allowed
    assert store.get("auth:login:10.0.0.1").count == 1
