"""Small in-memory TTL cache.

Per-process only; entries are lost on restart and are not shared between
workers.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock
from typing import Any


@dataclass
class _CacheEntry:
    value: Any
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TTLCache:
    def __init__(self, ttl_seconds: int, clock: Callable[[], datetime] = _utcnow):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._lock = Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = _CacheEntry(value=value, expires_at=self._clock() + timedelta(seconds=ttl))

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
