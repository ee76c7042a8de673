from datetime import UTC, datetime, timedelta

import pytest

from app.services.inbox.cache import TTLCache
from app.services.inbox.circuit_breaker import CircuitBreaker, CircuitOpenError


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def _boom():
    raise RuntimeError("provider down")


def _breaker(clock, **kwargs):
    return CircuitBreaker("test", clock=clock, **kwargs)


def test_cache_expires_entries():
    clock = FakeClock()
    cache = TTLCache(60, clock=clock)
    cache.set("chat-1", "contact-1")

    clock.advance(59)
    assert cache.get("chat-1") == "contact-1"
    clock.advance(1)
    assert cache.get("chat-1") is None


def test_cache_per_entry_ttl_and_invalidation():
    clock = FakeClock()
    cache = TTLCache(60, clock=clock)
    cache.set("a", 1, ttl_seconds=5)
    cache.set("b", 2)

    clock.advance(10)
    assert cache.get("a") is None
    assert cache.get("b") == 2
    cache.invalidate("b")
    assert cache.get("b") is None


def test_breaker_opens_after_threshold():
    clock = FakeClock()
    breaker = _breaker(clock, failure_threshold=3, recovery_timeout=30)

    for _ in range(3):
        with pytest.raises(RuntimeError):
            breaker.call(_boom)

    assert breaker.state == "open"
    with pytest.raises(CircuitOpenError):
        breaker.call(lambda: "never")


def test_breaker_half_open_probe_closes_on_success():
    clock = FakeClock()
    breaker = _breaker(clock, failure_threshold=1, recovery_timeout=30)
    with pytest.raises(RuntimeError):
        breaker.call(_boom)

    clock.advance(30)

    assert breaker.call(lambda: "ok") == "ok"
    assert breaker.state == "closed"


def test_breaker_failed_probe_reopens():
    clock = FakeClock()
    breaker = _breaker(clock, failure_threshold=1, recovery_timeout=30)
    with pytest.raises(RuntimeError):
        breaker.call(_boom)
    clock.advance(31)

    with pytest.raises(RuntimeError):
        breaker.call(_boom)

    assert breaker.state == "open"
    with pytest.raises(CircuitOpenError):
        breaker.call(lambda: "ok")


def test_breaker_success_resets_failure_count():
    breaker = CircuitBreaker("test", failure_threshold=2)
    with pytest.raises(RuntimeError):
        breaker.call(_boom)
    breaker.call(lambda: None)
    with pytest.raises(RuntimeError):
        breaker.call(_boom)

    assert breaker.state == "closed"
    breaker.reset()
    assert breaker.state == "closed"


def test_breaker_ignores_errors_rejected_by_predicate():
    breaker = CircuitBreaker("test", failure_threshold=1, is_failure=lambda exc: not isinstance(exc, ValueError))

    def _rejected():
        raise ValueError("recipient unknown")

    for _ in range(3):
        with pytest.raises(ValueError):
            breaker.call(_rejected)

    assert breaker.state == "closed"
    with pytest.raises(RuntimeError):
        breaker.call(_boom)
    assert breaker.state == "open"
