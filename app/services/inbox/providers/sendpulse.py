"""SendPulse Instagram API: OAuth client credentials and direct messages."""

from __future__ import annotations

import httpx

from app.logging import get_logger
from app.services.inbox.providers.base import ProviderClient, safe_json
from app.services.inbox.tokens import TokenCache, TokenGrant, grant_from_response

logger = get_logger(__name__)

DEFAULT_BASE = "https://api.sendpulse.com"
EU_BASE = "https://api.eu.sendpulse.com"


def sanitize_base(base: str | None) -> str:
    return (base or "").strip().rstrip("/")


def candidate_bases(configured: str | None) -> list[str]:
    """Configured base first, then the regional alternates, without repeats."""
    bases: list[str] = []
    for base in (sanitize_base(configured) or DEFAULT_BASE, EU_BASE, DEFAULT_BASE):
        if base and base not in bases:
            bases.append(base)
    return bases


class SendPulseTokenFetcher(ProviderClient):
    """Client-credentials grant tried against each base until one succeeds."""

    def __init__(self, client_id: str, client_secret: str, bases: list[str], **kwargs):
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.bases = bases

    def __call__(self, preferred_base: str | None = None) -> TokenGrant | None:
        if not self.client_id or not self.client_secret:
            return None
        order = list(self.bases)
        preferred = sanitize_base(preferred_base)
        if preferred:
            order = [preferred] + [base for base in order if base != preferred]
        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        for base in order:
            try:
                response = self._post(f"{base}/oauth/access_token", data=form)
            except httpx.HTTPError as exc:
                logger.warning("sendpulse_token_error base=%s error=%s", base, exc)
                continue
            if response.status_code >= 400:
                logger.warning("sendpulse_token_rejected base=%s status=%s", base, response.status_code)
                continue
            grant = grant_from_response(safe_json(response) or {}, base=base)
            if grant:
                return grant
        return None


class SendPulseClient(ProviderClient):
    def __init__(self, token_cache: TokenCache, default_base: str = DEFAULT_BASE, **kwargs):
        super().__init__(**kwargs)
        self.token_cache = token_cache
        self.default_base = sanitize_base(default_base) or DEFAULT_BASE

    def send_instagram_message(self, contact_id: str, text: str, base: str | None = None) -> bool:
        """Direct-message send; True when SendPulse accepted it."""
        base = sanitize_base(base) or self.token_cache.base or self.default_base
        token = self.token_cache.get(preferred_base=base)
        if not token:
            logger.warning("sendpulse_send_skipped reason=no_token base=%s", base)
            return False
        payload = {"chat_id": str(contact_id), "contact_id": str(contact_id), "text": text}
        response = self._post(
            f"{base}/instagram/chats/messages",
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )
        if response.status_code == 401:
            self.token_cache.invalidate()
        if response.status_code >= 400:
            logger.warning(
                "sendpulse_send_failed base=%s contact_id=%s status=%s body=%s",
                base,
                contact_id,
                response.status_code,
                response.text[:300],
            )
            return False
        data = safe_json(response)
        if isinstance(data, dict) and data.get("success") is False:
            logger.warning("sendpulse_send_rejected contact_id=%s body=%s", contact_id, data)
            return False
        logger.info("sendpulse_message_sent base=%s contact_id=%s", base, contact_id)
        return True
