"""Meta Graph Send API for Facebook Messenger and Instagram DMs."""

from __future__ import annotations

from app.logging import get_logger
from app.services.inbox.providers.base import ProviderClient, safe_json

logger = get_logger(__name__)


class MetaGraphClient(ProviderClient):
    def __init__(self, base_url: str, page_token: str = "", instagram_token: str = "", **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.page_token = page_token
        self.instagram_token = instagram_token

    def token_for(self, platform: str) -> str:
        # Instagram falls back to the page token when no dedicated token exists.
        if platform == "instagram":
            return self.instagram_token or self.page_token
        return self.page_token

    def send_message(self, platform: str, recipient_id: str, text: str) -> dict:
        """Send a text reply.

        Raises:
            ValueError: no access token configured for the platform
            httpx.HTTPStatusError: the Graph API rejected the request
        """
        token = self.token_for(platform)
        if not token:
            raise ValueError(f"No Meta access token configured for {platform}")
        payload = {
            "recipient": {"id": str(recipient_id)},
            "message": {"text": text},
            "messaging_type": "RESPONSE",
        }
        response = self._post_with_retry(
            f"{self.base_url}/me/messages",
            params={"access_token": token},
            json=payload,
        )
        if response.status_code >= 400:
            logger.error(
                "meta_message_send_failed platform=%s recipient=%s status=%s body=%s",
                platform,
                str(recipient_id)[:8],
                response.status_code,
                response.text[:300],
            )
        response.raise_for_status()
        data = safe_json(response) or {}
        logger.info(
            "meta_message_sent platform=%s recipient=%s... message_id=%s",
            platform,
            str(recipient_id)[:8],
            data.get("message_id"),
        )
        return {"message_id": data.get("message_id"), "recipient_id": data.get("recipient_id")}
