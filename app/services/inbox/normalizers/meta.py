"""Messenger and Instagram webhooks from the Meta platform."""

from __future__ import annotations

from app.services.inbox.normalizers.base import InboundNormalizer, NormalizedInbound, Rejected, dig


class MetaNormalizer(InboundNormalizer):
    """Handles ``entry[].messaging[]`` and ``entry[].changes[]`` shapes.

    With ``platform`` set every event is attributed to that channel (the
    Instagram-only endpoint); otherwise the channel is read off the payload.
    """

    channel = "facebook"

    def __init__(self, platform: str | None = None):
        self.platform = platform

    def _platform_for(self, payload: dict, event: dict) -> str:
        if self.platform:
            return self.platform
        product = str(event.get("messaging_product") or payload.get("object") or "").lower()
        return "instagram" if product == "instagram" else "facebook"

    def _from_messaging(self, payload: dict, event: dict) -> NormalizedInbound | Rejected:
        platform = self._platform_for(payload, event)
        message = event.get("message") or {}
        if message.get("is_echo"):
            return Rejected(channel=platform, reason="echo")
        sender_id = dig(event, "sender", "id") or dig(event, "from", "id")
        text = message.get("text") or message.get("caption") or dig(event, "postback", "title")
        return self.build(sender_id, text, channel=platform)

    def _from_change(self, payload: dict, change: dict) -> NormalizedInbound | Rejected | None:
        value = change.get("value") or {}
        if not isinstance(value, dict):
            return None
        if not self.platform and str(value.get("messaging_product") or "").lower() != "instagram":
            return None
        platform = self.platform or "instagram"
        if dig(value, "message", "is_echo"):
            return Rejected(channel=platform, reason="echo")
        sender_id = dig(value, "from", "id") or value.get("sender_id")
        text = dig(value, "message", "text") or value.get("text") or dig(value, "message", "caption")
        name = dig(value, "from", "username") or dig(value, "from", "name")
        return self.build(sender_id, text, name, channel=platform)

    def extract(self, payload) -> list[NormalizedInbound | Rejected]:
        if not isinstance(payload, dict):
            return [Rejected(channel=self.platform or self.channel, reason="invalid_payload")]
        results: list[NormalizedInbound | Rejected] = []
        for entry in payload.get("entry") or []:
            if not isinstance(entry, dict):
                continue
            for event in entry.get("messaging") or []:
                # Delivery and read receipts carry neither key.
                if isinstance(event, dict) and ("message" in event or "postback" in event):
                    results.append(self._from_messaging(payload, event))
            for change in entry.get("changes") or []:
                if isinstance(change, dict):
                    result = self._from_change(payload, change)
                    if result is not None:
                        results.append(result)
        return results
