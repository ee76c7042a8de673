"""Cached provider access tokens."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock

from app.services.inbox.context import get_inbox_logger

logger = get_inbox_logger(__name__)


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    expires_at: datetime
    base: str | None = None


TokenFetcher = Callable[[str | None], TokenGrant | None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenCache:
    """Holds one access token, its expiry and the API base that issued it.

    ``fetcher`` is called with the preferred base (or None) and returns a
    fresh grant, or None when no credential could be obtained. Tokens are
    refreshed ``refresh_margin_seconds`` before they expire.
    """

    def __init__(
        self,
        name: str,
        fetcher: TokenFetcher,
        refresh_margin_seconds: int = 60,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.name = name
        self._fetcher = fetcher
        self._margin = timedelta(seconds=refresh_margin_seconds)
        self._clock = clock
        self._grant: TokenGrant | None = None
        self._lock = Lock()

    @property
    def base(self) -> str | None:
        return self._grant.base if self._grant else None

    def _valid(self, grant: TokenGrant | None, preferred_base: str | None) -> bool:
        if grant is None:
            return False
        if preferred_base and grant.base and grant.base != preferred_base:
            return False
        return grant.expires_at - self._margin > self._clock()

    def get(self, force_refresh: bool = False, preferred_base: str | None = None) -> str | None:
        with self._lock:
            if not force_refresh and self._valid(self._grant, preferred_base):
                return self._grant.access_token
            grant = self._fetcher(preferred_base)
            if grant is None:
                logger.warning("token_fetch_failed name=%s base=%s", self.name, preferred_base)
                return None
            self._grant = grant
            logger.info("token_refreshed name=%s base=%s expires_at=%s", self.name, grant.base, grant.expires_at)
            return grant.access_token

    def invalidate(self) -> None:
        with self._lock:
            self._grant = None


def grant_from_response(data: dict, base: str | None = None, default_ttl: int = 3600) -> TokenGrant | None:
    """Build a grant from an OAuth token response body."""
    token = data.get("access_token") if isinstance(data, dict) else None
    if not token:
        return None
    try:
        expires_in = int(data.get("expires_in") or default_ttl)
    except (TypeError, ValueError):
        expires_in = default_ttl
    return TokenGrant(access_token=token, expires_at=_utcnow() + timedelta(seconds=expires_in), base=base)
