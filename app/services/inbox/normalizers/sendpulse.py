"""SendPulse Instagram chatbot webhooks."""

from __future__ import annotations

from app.services.inbox.normalizers.base import InboundNormalizer, NormalizedInbound, Rejected, dig

OUTGOING_TITLES = {"outgoing_message", "outgoing_message_sent"}


class SendPulseInstagramNormalizer(InboundNormalizer):
    """Two shapes arrive: a list of bot events, or a flat test object."""

    channel = "instagram"

    def _from_event(self, item: dict) -> NormalizedInbound | Rejected:
        if str(item.get("title") or "").lower() in OUTGOING_TITLES:
            return Rejected(channel=self.channel, reason="echo")
        if str(dig(item, "info", "message", "direction") or "").lower() == "outgoing":
            return Rejected(channel=self.channel, reason="echo")
        contact = item.get("contact") or {}
        contact_id = contact.get("id")
        chat_id = contact.get("username") or contact_id
        text = dig(item, "info", "message", "channel_data", "message", "text")
        return self.build(chat_id, text, contact.get("name"), contact_id=contact_id)

    def _from_object(self, payload: dict) -> NormalizedInbound | Rejected:
        contact = payload.get("contact") or {}
        contact_id = contact.get("id") or payload.get("contact_id")
        chat_id = dig(contact, "variables", "instagram_id") or payload.get("instagram_id") or contact_id
        name = contact.get("name") or dig(contact, "variables", "first_name")
        message = payload.get("message")
        if isinstance(message, dict):
            text = message.get("text")
        else:
            text = payload.get("text") or message
        return self.build(chat_id, text, name, contact_id=contact_id)

    def extract(self, payload) -> list[NormalizedInbound | Rejected]:
        if isinstance(payload, list):
            return [self._from_event(item) for item in payload if isinstance(item, dict)]
        if isinstance(payload, dict):
            return [self._from_object(payload)]
        return [Rejected(channel=self.channel, reason="invalid_payload")]
