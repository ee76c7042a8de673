"""Inbound normalization: provider payload in, one uniform record out."""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Any

PLACEHOLDER_TEXT = "[non-text message]"
MAX_CONTENT_LENGTH = 2000
MAX_NAME_LENGTH = 80

DEFAULT_DISPLAY_NAMES = {
    "facebook": "Facebook User",
    "instagram": "Instagram User",
    "telegram": "Telegram User",
    "whatsapp": "WhatsApp User",
    "outlook": "Email User",
    "web": "Customer",
}

_TAG_RE = re.compile(r"<[^>]+>")
_STYLE_RE = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_WS_RE = re.compile(r"[ \t\r\f\v]+")


@dataclass(frozen=True)
class NormalizedInbound:
    channel: str
    external_id: str
    text: str
    display_name: str
    contact_id: str | None = None


@dataclass(frozen=True)
class Rejected:
    channel: str
    reason: str


def clean_text(value: Any) -> str:
    """Trim, cap at the content limit, and substitute the placeholder when empty."""
    text = str(value).strip() if value is not None else ""
    if not text:
        return PLACEHOLDER_TEXT
    return text[:MAX_CONTENT_LENGTH]


def clean_name(value: Any, channel: str) -> str:
    name = str(value).strip() if value is not None else ""
    if not name:
        name = DEFAULT_DISPLAY_NAMES.get(channel, "Customer")
    return name[:MAX_NAME_LENGTH]


def strip_html(value: str | None) -> str:
    if not value:
        return ""
    text = _STYLE_RE.sub("", value)
    text = re.sub(r"<br\s*/?>|</p>|</div>", "\n", text, flags=re.IGNORECASE)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    lines = [_WS_RE.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def dig(data: Any, *keys: str) -> Any:
    current = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def as_id(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


class InboundNormalizer:
    """One per channel.

    Subclasses implement ``extract`` and return every event found in the
    payload; most providers deliver one, Meta batches several.
    """

    channel: str = ""

    def extract(self, payload: Any) -> list[NormalizedInbound | Rejected]:
        raise NotImplementedError

    def build(
        self,
        external_id: Any,
        text: Any,
        display_name: Any = None,
        contact_id: Any = None,
        channel: str | None = None,
    ) -> NormalizedInbound | Rejected:
        channel = channel or self.channel
        external_id = as_id(external_id)
        if not external_id:
            return Rejected(channel=channel, reason="missing_external_id")
        return NormalizedInbound(
            channel=channel,
            external_id=external_id,
            text=clean_text(text),
            display_name=clean_name(display_name, channel),
            contact_id=as_id(contact_id) or None,
        )

    def normalize_all(self, payload: Any) -> list[NormalizedInbound | Rejected]:
        events = self.extract(payload)
        if not events:
            return [Rejected(channel=self.channel, reason="no_events")]
        return events

    def normalize(self, payload: Any) -> NormalizedInbound | Rejected:
        return self.normalize_all(payload)[0]
