"""Telegram Bot API."""

from __future__ import annotations

from app.logging import get_logger
from app.services.inbox.providers.base import ProviderClient, safe_json

logger = get_logger(__name__)


class TelegramClient(ProviderClient):
    def __init__(self, bot_token: str, api_base: str = "https://api.telegram.org", **kwargs):
        super().__init__(**kwargs)
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")

    def send_message(self, chat_id: str, text: str) -> dict:
        response = self._post(
            f"{self.api_base}/bot{self.bot_token}/sendMessage",
            json={"chat_id": chat_id, "text": text},
        )
        if response.status_code >= 400:
            logger.error(
                "telegram_send_failed chat_id=%s status=%s body=%s",
                chat_id,
                response.status_code,
                response.text[:300],
            )
        response.raise_for_status()
        data = safe_json(response) or {}
        if not data.get("ok", True):
            raise ValueError(f"Telegram rejected message: {data.get('description')}")
        return data.get("result") or {}
