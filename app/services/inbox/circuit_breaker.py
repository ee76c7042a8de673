"""Per-provider circuit breaker for outbound delivery stages.

After ``failure_threshold`` consecutive outage failures (as judged by
``is_failure``) the stage is skipped for ``recovery_timeout`` seconds; the
next call is a single half-open probe.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock

from app.services.inbox.context import get_inbox_logger
from app.services.inbox.observability import CIRCUIT_STATE_CHANGES

logger = get_inbox_logger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half-open"


class CircuitOpenError(RuntimeError):
    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class CircuitState:
    failure_count: int = 0
    opened_at: datetime | None = None
    state: str = CLOSED


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        clock: Callable[[], datetime] = _utcnow,
        is_failure: Callable[[Exception], bool] | None = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = timedelta(seconds=recovery_timeout)
        self._clock = clock
        self._is_failure = is_failure or (lambda exc: True)
        self._state = CircuitState()
        self._lock = Lock()

    @property
    def state(self) -> str:
        return self._state.state

    def _transition(self, state: str) -> None:
        if self._state.state == state:
            return
        self._state.state = state
        if state == OPEN:
            self._state.opened_at = self._clock()
        CIRCUIT_STATE_CHANGES.labels(name=self.name, state=state).inc()
        logger.info("circuit_state_changed name=%s state=%s failures=%s", self.name, state, self._state.failure_count)

    def _before_call(self) -> None:
        with self._lock:
            if self._state.state != OPEN:
                return
            if self._clock() - self._state.opened_at >= self.recovery_timeout:
                self._transition(HALF_OPEN)
                return
            raise CircuitOpenError(f"Circuit breaker {self.name} is open")

    def _record_failure(self) -> None:
        with self._lock:
            self._state.failure_count += 1
            if self._state.state == HALF_OPEN or self._state.failure_count >= self.failure_threshold:
                self._transition(OPEN)

    def _record_success(self) -> None:
        with self._lock:
            self._state.failure_count = 0
            self._state.opened_at = None
            self._transition(CLOSED)

    def call(self, func, *args, **kwargs):
        self._before_call()
        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            # Errors that prove the provider answered do not count as an outage.
            if self._is_failure(exc):
                self._record_failure()
            else:
                self._record_success()
            raise
        self._record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState()
