from __future__ import annotations

from app.services.inbox.normalizers.base import InboundNormalizer, NormalizedInbound, Rejected


def strip_whatsapp_prefix(value: str | None) -> str:
    value = (value or "").strip()
    if value.lower().startswith("whatsapp:"):
        value = value[len("whatsapp:") :]
    return value.strip()


class WhatsAppNormalizer(InboundNormalizer):
    """Twilio form-encoded WhatsApp webhooks."""

    channel = "whatsapp"

    def extract(self, payload) -> list[NormalizedInbound | Rejected]:
        if not hasattr(payload, "get"):
            return [Rejected(channel=self.channel, reason="invalid_payload")]
        number = strip_whatsapp_prefix(payload.get("From"))
        wa_id = (payload.get("WaId") or "").strip()
        name = (payload.get("ProfileName") or "").strip()
        if not name and (wa_id or number):
            name = f"WhatsApp {wa_id or number}"
        return [self.build(number, payload.get("Body"), name, contact_id=wa_id or None)]
