"""Webhook request authentication."""

from __future__ import annotations

import hashlib
import hmac

from app.services.inbox.providers.twilio import validate_twilio_signature


def verify_meta_signature(
    body: bytes,
    app_secret: str,
    signature_256: str | None = None,
    signature_sha1: str | None = None,
) -> bool:
    """Check ``X-Hub-Signature-256`` (preferred) or the legacy sha1 header."""
    if not app_secret:
        return False
    if signature_256:
        expected = "sha256=" + hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature_256.strip())
    if signature_sha1:
        expected = "sha1=" + hmac.new(app_secret.encode("utf-8"), body, hashlib.sha1).hexdigest()
        return hmac.compare_digest(expected, signature_sha1.strip())
    return False


def verify_twilio_signature(auth_token: str, signature: str | None, url: str, params: dict[str, str]) -> bool:
    return validate_twilio_signature(auth_token, signature, url, params)


def verify_telegram_secret(expected: str, provided: str | None) -> bool:
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(expected, provided)


def verify_shared_key(expected: str, provided: str | None) -> bool:
    if not expected:
        return True
    if not provided:
        return False
    if provided.lower().startswith("bearer "):
        provided = provided[7:]
    return hmac.compare_digest(expected, provided.strip())
