"""SendPulse contact id resolution for Instagram chats.

Inbound Instagram events carry a chat id; the SendPulse send API wants the
SendPulse contact id. Lookups walk every API base and three endpoints in a
fixed order. Only positive answers are cached.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote

import httpx

from app.services.inbox.cache import TTLCache
from app.services.inbox.context import get_inbox_logger
from app.services.inbox.observability import CONTACT_RESOLUTIONS
from app.services.inbox.providers.base import ProviderClient, safe_json
from app.services.inbox.tokens import TokenCache

logger = get_inbox_logger(__name__)

LOOKUP_PATHS = (
    "/instagram/chats/{chat_id}",
    "/instagram/chats/{chat_id}/messages?limit=1",
    "/instagram/contacts/{chat_id}",
)


@dataclass(frozen=True)
class ResolvedContact:
    contact_id: str
    base: str


def _dig(data, *keys):
    current = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _extract_contact_id(payload, allow_id: bool = False) -> str | None:
    """Pull a contact id out of any of the lookup response shapes."""
    if isinstance(payload, dict) and isinstance(payload.get("data"), (dict, list)):
        payload = payload["data"]
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if not isinstance(payload, dict):
        return None
    for path in (
        ("contact", "id"),
        ("contact_id",),
        ("subscriber", "id"),
        ("chat", "contact_id"),
        ("inbox_last_message", "contact_id"),
    ):
        value = _dig(payload, *path)
        if value:
            return str(value)
    # Only the contact endpoint returns the contact itself at the top level.
    if allow_id and payload.get("id"):
        return str(payload["id"])
    return None


class IdentifierResolver(ProviderClient):
    def __init__(
        self,
        token_cache: TokenCache,
        bases: list[str],
        ttl_seconds: int = 900,
        cache: TTLCache | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.token_cache = token_cache
        self.bases = bases
        self.cache = cache or TTLCache(ttl_seconds)

    def _fetch(self, url: str, auth: dict) -> httpx.Response | None:
        """GET with the cached token; one forced refresh when SendPulse answers 401."""
        try:
            response = self._get(url, headers={"Authorization": f"Bearer {auth['token']}"})
            if response.status_code == 401 and not auth["refreshed"]:
                auth["refreshed"] = True
                token = self.token_cache.get(force_refresh=True)
                if not token:
                    return None
                auth["token"] = token
                response = self._get(url, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as exc:
            logger.debug("contact_lookup_error url=%s error=%s", url, exc)
            return None
        return response

    def _lookup(self, base: str, auth: dict, chat_id: str) -> str | None:
        encoded = quote(str(chat_id), safe="")
        for path in LOOKUP_PATHS:
            url = f"{base}{path.format(chat_id=encoded)}"
            response = self._fetch(url, auth)
            if response is None or response.status_code >= 400:
                continue
            contact_id = _extract_contact_id(
                safe_json(response),
                allow_id=path.startswith("/instagram/contacts"),
            )
            if contact_id:
                return contact_id
        return None

    def forget(self, external_chat_id: str) -> None:
        """Drop a cached mapping that SendPulse no longer accepts."""
        self.cache.invalidate(str(external_chat_id))

    def resolve_contact_id(self, external_chat_id: str) -> ResolvedContact | None:
        """Map a chat id to a SendPulse contact id.

        Returns None when no base and endpoint produced one; callers then
        fall back to the chat id itself.
        """
        if not external_chat_id:
            return None
        cached = self.cache.get(str(external_chat_id))
        if cached is not None:
            CONTACT_RESOLUTIONS.labels(result="cache_hit").inc()
            return cached

        # One token serves every base; it is only refreshed when a lookup gets 401.
        token = self.token_cache.get()
        if not token:
            CONTACT_RESOLUTIONS.labels(result="miss").inc()
            logger.warning("contact_resolve_skipped reason=no_token chat_id=%s", external_chat_id)
            return None
        auth = {"token": token, "refreshed": False}
        for base in self.bases:
            contact_id = self._lookup(base, auth, external_chat_id)
            if contact_id:
                resolved = ResolvedContact(contact_id=contact_id, base=base)
                self.cache.set(str(external_chat_id), resolved)
                CONTACT_RESOLUTIONS.labels(result="resolved").inc()
                logger.info(
                    "contact_resolved chat_id=%s contact_id=%s base=%s",
                    external_chat_id,
                    contact_id,
                    base,
                )
                return resolved

        CONTACT_RESOLUTIONS.labels(result="miss").inc()
        logger.info("contact_unresolved chat_id=%s", external_chat_id)
        return None
