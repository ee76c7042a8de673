import base64
import hashlib
import hmac

from app.services.inbox.signatures import (
    verify_meta_signature,
    verify_shared_key,
    verify_telegram_secret,
    verify_twilio_signature,
)

BODY = b'{"object":"page","entry":[]}'


def _meta(secret: str, algorithm=hashlib.sha256, prefix="sha256=") -> str:
    return prefix + hmac.new(secret.encode(), BODY, algorithm).hexdigest()


def test_meta_sha256_signature():
    assert verify_meta_signature(BODY, "s3cret", signature_256=_meta("s3cret"))
    assert not verify_meta_signature(BODY, "s3cret", signature_256=_meta("other"))


def test_meta_legacy_sha1_signature():
    signature = _meta("s3cret", hashlib.sha1, "sha1=")
    assert verify_meta_signature(BODY, "s3cret", signature_sha1=signature)


def test_meta_prefers_sha256_header():
    sha1 = _meta("s3cret", hashlib.sha1, "sha1=")
    assert not verify_meta_signature(BODY, "s3cret", signature_256="sha256=bogus", signature_sha1=sha1)


def test_meta_requires_secret_and_header():
    assert not verify_meta_signature(BODY, "", signature_256=_meta("s3cret"))
    assert not verify_meta_signature(BODY, "s3cret")


def test_twilio_signature():
    url = "https://inbox.example.com/webhooks/whatsapp"
    params = {"From": "whatsapp:+15550001", "Body": "Hi"}
    payload = url + "BodyHi" + "Fromwhatsapp:+15550001"
    signature = base64.b64encode(hmac.new(b"token", payload.encode(), hashlib.sha1).digest()).decode()

    assert verify_twilio_signature("token", signature, url, params)
    assert not verify_twilio_signature("token", signature, url + "?x=1", params)
    assert not verify_twilio_signature("", signature, url, params)
    assert not verify_twilio_signature("token", None, url, params)


def test_telegram_secret():
    assert verify_telegram_secret("", None)
    assert verify_telegram_secret("abc", "abc")
    assert not verify_telegram_secret("abc", "abd")
    assert not verify_telegram_secret("abc", None)


def test_shared_key_accepts_bearer_prefix():
    assert verify_shared_key("", None)
    assert verify_shared_key("key-1", "key-1")
    assert verify_shared_key("key-1", "Bearer key-1")
    assert not verify_shared_key("key-1", "Bearer key-2")
    assert not verify_shared_key("key-1", "")
