"""Microsoft Graph mail transport and token grants.

Application mode sends from a shared mailbox with a client-credentials
token. Personal mode sends as the signed-in Microsoft account using a
long-lived refresh token.
"""

from __future__ import annotations

import httpx

from app.logging import get_logger
from app.services.inbox.providers.base import ProviderClient, safe_json
from app.services.inbox.tokens import TokenCache, TokenGrant, grant_from_response

logger = get_logger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
MESSAGE_FIELDS = "subject,from,bodyPreview,body,conversationId,receivedDateTime"


class GraphAppTokenFetcher(ProviderClient):
    def __init__(self, login_base: str, tenant_id: str, client_id: str, client_secret: str, **kwargs):
        super().__init__(**kwargs)
        self.login_base = login_base.rstrip("/")
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret

    def __call__(self, preferred_base: str | None = None) -> TokenGrant | None:
        if not (self.tenant_id and self.client_id and self.client_secret):
            return None
        try:
            response = self._post(
                f"{self.login_base}/{self.tenant_id}/oauth2/v2.0/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": GRAPH_SCOPE,
                },
            )
        except httpx.HTTPError as exc:
            logger.warning("graph_token_error error=%s", exc)
            return None
        if response.status_code >= 400:
            logger.warning("graph_token_rejected status=%s body=%s", response.status_code, response.text[:300])
            return None
        return grant_from_response(safe_json(response) or {})


class MsaRefreshTokenFetcher(ProviderClient):
    """Personal Microsoft account: exchange the stored refresh token."""

    def __init__(self, login_base: str, client_id: str, refresh_token: str, client_secret: str = "", **kwargs):
        super().__init__(**kwargs)
        self.login_base = login_base.rstrip("/")
        self.client_id = client_id
        self.refresh_token = refresh_token
        self.client_secret = client_secret

    def __call__(self, preferred_base: str | None = None) -> TokenGrant | None:
        if not (self.client_id and self.refresh_token):
            return None
        form = {
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "refresh_token": self.refresh_token,
            "scope": "offline_access Mail.Send Mail.Read",
        }
        if self.client_secret:
            form["client_secret"] = self.client_secret
        try:
            response = self._post(f"{self.login_base}/consumers/oauth2/v2.0/token", data=form)
        except httpx.HTTPError as exc:
            logger.warning("msa_token_error error=%s", exc)
            return None
        if response.status_code >= 400:
            logger.warning("msa_token_rejected status=%s body=%s", response.status_code, response.text[:300])
            return None
        data = safe_json(response) or {}
        if data.get("refresh_token"):
            self.refresh_token = data["refresh_token"]
        return grant_from_response(data)


class OutlookMailClient(ProviderClient):
    def __init__(
        self,
        token_cache: TokenCache,
        mailbox: str = "",
        personal: bool = False,
        graph_base: str = "https://graph.microsoft.com/v1.0",
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.token_cache = token_cache
        self.mailbox = mailbox
        self.personal = personal
        self.graph_base = graph_base.rstrip("/")

    def _mailbox_path(self) -> str:
        if self.personal:
            return f"{self.graph_base}/me"
        if not self.mailbox:
            raise ValueError("MS_MAILBOX is required in application mode")
        return f"{self.graph_base}/users/{self.mailbox}"

    def _auth_headers(self) -> dict[str, str]:
        token = self.token_cache.get()
        if not token:
            raise ValueError("No Microsoft Graph access token available")
        return {"Authorization": f"Bearer {token}"}

    def send_mail(self, to: str, subject: str, text: str) -> None:
        payload = {
            "message": {
                "subject": subject,
                "body": {"contentType": "Text", "content": text},
                "toRecipients": [{"emailAddress": {"address": to}}],
            },
            "saveToSentItems": True,
        }
        response = self._post(f"{self._mailbox_path()}/sendMail", json=payload, headers=self._auth_headers())
        if response.status_code == 401:
            self.token_cache.invalidate()
        if response.status_code >= 400:
            logger.error(
                "outlook_send_failed to=%s status=%s body=%s",
                to,
                response.status_code,
                response.text[:300],
            )
        response.raise_for_status()
        logger.info("outlook_mail_sent to=%s personal=%s", to, self.personal)

    def fetch_message(self, message_id: str) -> dict:
        response = self._get(
            f"{self._mailbox_path()}/messages/{message_id}",
            params={"$select": MESSAGE_FIELDS},
            headers=self._auth_headers(),
        )
        response.raise_for_status()
        return safe_json(response) or {}
