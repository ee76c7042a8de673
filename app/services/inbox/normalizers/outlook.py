"""Outlook mail, including the SendPulse email bridge."""

from __future__ import annotations

import re

from app.services.inbox.normalizers.base import (
    InboundNormalizer,
    NormalizedInbound,
    Rejected,
    clean_name,
    clean_text,
    dig,
    strip_html,
)

BRIDGE_MARKER = "[SP]"
BRIDGE_BLOCK_LENGTH = 1500
BRIDGE_PLATFORMS = {"facebook", "instagram"}
_BRIDGE_LINE_RE = re.compile(r"^([a-zA-Z0-9_.\-]+)=(.*)$")


def parse_sendpulse_email_bridge(raw: str | None) -> NormalizedInbound | None:
    """Parse an ``[SP]`` block forwarded by a SendPulse email flow.

    The block is ``key=value`` lines under a ``[SP]`` header line::

        [SP]
        platform=instagram
        chat_id=123
        name=John Doe
        text=Hello there
    """
    body = str(raw or "")
    start = body.find(BRIDGE_MARKER)
    if start == -1:
        return None
    block = body[start : start + BRIDGE_BLOCK_LENGTH]
    lines = [line.strip() for line in block.splitlines() if line.strip()]
    if not lines or lines[0] != BRIDGE_MARKER:
        return None
    fields: dict[str, str] = {}
    for line in lines[1:]:
        match = _BRIDGE_LINE_RE.match(line)
        if match:
            fields[match.group(1).lower()] = match.group(2).strip()

    platform = fields.get("platform", "").lower()
    chat_id = fields.get("chat_id") or fields.get("contact_id") or ""
    text = fields.get("text", "")
    if platform not in BRIDGE_PLATFORMS or not chat_id or not text:
        return None
    return NormalizedInbound(
        channel=platform,
        external_id=chat_id,
        text=clean_text(text),
        display_name=clean_name(fields.get("name") or "User", platform),
        contact_id=fields.get("contact_id") or None,
    )


class OutlookNormalizer(InboundNormalizer):
    """Accepts a Graph message resource or the flat ingest body.

    A message carrying a bridge block is attributed to the bridged social
    channel instead of ``outlook``.
    """

    channel = "outlook"

    def extract(self, payload) -> list[NormalizedInbound | Rejected]:
        if not isinstance(payload, dict):
            return [Rejected(channel=self.channel, reason="invalid_payload")]

        if "fromEmail" in payload or "text" in payload:
            email = payload.get("fromEmail")
            name = payload.get("fromName")
            full_text = payload.get("text") or ""
            text = full_text
        else:
            email = dig(payload, "from", "emailAddress", "address")
            name = dig(payload, "from", "emailAddress", "name")
            body = payload.get("body") or {}
            content = body.get("content") or ""
            if str(body.get("contentType") or "").lower() == "html":
                content = strip_html(content)
            full_text = content or payload.get("bodyPreview") or ""
            text = payload.get("bodyPreview") or content

        bridged = parse_sendpulse_email_bridge(full_text) or parse_sendpulse_email_bridge(text)
        if bridged:
            return [bridged]

        email = str(email or "").strip().lower()
        return [self.build(email, text, name or email or None)]
