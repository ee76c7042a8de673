"""Twilio Programmable Messaging for WhatsApp, plus request signature checks."""

from __future__ import annotations

import base64
import hashlib
import hmac

from app.logging import get_logger
from app.services.inbox.providers.base import ProviderClient, safe_json

logger = get_logger(__name__)


def whatsapp_address(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


class TwilioWhatsAppClient(ProviderClient):
    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        status_callback_url: str = "",
        api_base: str = "https://api.twilio.com",
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = whatsapp_address(from_number)
        self.status_callback_url = status_callback_url
        self.api_base = api_base.rstrip("/")

    def send_message(self, to: str, body: str) -> dict:
        form = {"From": self.from_number, "To": whatsapp_address(to), "Body": body}
        if self.status_callback_url:
            form["StatusCallback"] = self.status_callback_url
        response = self._post(
            f"{self.api_base}/2010-04-01/Accounts/{self.account_sid}/Messages.json",
            data=form,
            auth=(self.account_sid, self.auth_token),
        )
        if response.status_code >= 400:
            logger.error(
                "twilio_send_failed to=%s status=%s body=%s",
                to,
                response.status_code,
                response.text[:300],
            )
        response.raise_for_status()
        data = safe_json(response) or {}
        logger.info("twilio_message_sent to=%s sid=%s status=%s", to, data.get("sid"), data.get("status"))
        return data


def compute_twilio_signature(auth_token: str, url: str, params: dict[str, str]) -> str:
    """HMAC-SHA1 over the full URL followed by the sorted form key/values."""
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_twilio_signature(auth_token: str, signature: str | None, url: str, params: dict[str, str]) -> bool:
    if not auth_token or not signature:
        return False
    expected = compute_twilio_signature(auth_token, url, params)
    return hmac.compare_digest(expected, signature)
