"""Custom chatbot relay transport."""

from __future__ import annotations

from app.logging import get_logger
from app.services.inbox.providers.base import ProviderClient, safe_json

logger = get_logger(__name__)


class RelayClient(ProviderClient):
    def __init__(self, url: str, instagram_url: str = "", key: str = "", **kwargs):
        super().__init__(**kwargs)
        self.url = url.strip()
        self.instagram_url = instagram_url.strip()
        self.key = key

    def url_for(self, platform: str) -> str:
        if platform == "instagram" and self.instagram_url:
            return self.instagram_url
        return self.url

    def is_configured(self, platform: str) -> bool:
        return bool(self.url_for(platform))

    def send(
        self,
        platform: str,
        chat_id: str,
        text: str,
        conversation_id: int | None = None,
        contact_id: str | None = None,
    ) -> bool:
        """Post the reply to the relay; True only when it accepted the message."""
        url = self.url_for(platform)
        payload: dict = {"platform": platform, "chat_id": str(chat_id), "text": text}
        if conversation_id is not None:
            payload["conversation_id"] = conversation_id
        if contact_id:
            payload["contact_id"] = str(contact_id)
        headers = {"X-Chatbot-Key": self.key} if self.key else {}
        response = self._post(url, json=payload, headers=headers)
        if response.status_code >= 400:
            logger.warning(
                "relay_send_failed platform=%s status=%s body=%s",
                platform,
                response.status_code,
                response.text[:200],
            )
            return False
        data = safe_json(response)
        if isinstance(data, dict) and data.get("ok") is False:
            logger.warning("relay_send_rejected platform=%s body=%s", platform, data)
            return False
        return True
