from __future__ import annotations

from app.services.inbox.normalizers.base import InboundNormalizer, NormalizedInbound, Rejected, dig


class TelegramNormalizer(InboundNormalizer):
    """Bot API ``Update`` objects."""

    channel = "telegram"

    def extract(self, payload) -> list[NormalizedInbound | Rejected]:
        if not isinstance(payload, dict):
            return [Rejected(channel=self.channel, reason="invalid_payload")]
        message = payload.get("message") or payload.get("edited_message") or payload.get("channel_post")
        if not isinstance(message, dict):
            return [Rejected(channel=self.channel, reason="no_message")]

        sender = message.get("from") or {}
        if sender.get("is_bot"):
            return [Rejected(channel=self.channel, reason="echo")]

        chat = message.get("chat") or {}
        first = (chat.get("first_name") or sender.get("first_name") or "").strip()
        last = (chat.get("last_name") or sender.get("last_name") or "").strip()
        name = " ".join(part for part in (first, last) if part)
        if not name:
            name = chat.get("username") or sender.get("username")
        text = message.get("text") or message.get("caption")
        return [self.build(dig(message, "chat", "id"), text, name)]
