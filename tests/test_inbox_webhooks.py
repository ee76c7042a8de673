import hashlib
import hmac
import json
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from app.api.deps import get_outlook_mail_client
from app.api.inbox import webhooks
from app.main import app
from app.models.inbox import Conversation, Message
from app.services.inbox.providers.twilio import compute_twilio_signature

TELEGRAM_UPDATE = {"message": {"chat": {"id": "555"}, "from": {"first_name": "Ann"}, "text": "Hi"}}


@pytest.fixture()
def configure(monkeypatch):
    def _configure(**overrides):
        monkeypatch.setattr(webhooks, "settings", replace(webhooks.settings, **overrides))

    _configure(
        public_base_url="",
        meta_app_secret="",
        meta_verify_token="",
        meta_webhook_strict=False,
        telegram_webhook_secret="",
        telegram_webhook_strict=False,
        twilio_auth_token="",
        twilio_webhook_strict=False,
        sendpulse_webhook_key="",
        sendpulse_webhook_strict=False,
        ms_client_state="",
        integration_ingest_key="",
    )
    return _configure


def test_telegram_webhook_end_to_end(client, db_session, configure):
    response = client.post("/webhooks/telegram", json=TELEGRAM_UPDATE)
    repeat = client.post("/webhooks/telegram", json=TELEGRAM_UPDATE)

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "processed": 1}
    assert repeat.json() == {"status": "ok", "processed": 0}
    conversation = db_session.query(Conversation).one()
    assert conversation.customer_external_id == "555"
    assert conversation.customer_name == "Ann"
    assert db_session.query(Message).count() == 1


def test_telegram_secret_advisory_by_default(client, db_session, configure):
    configure(telegram_webhook_secret="expected")

    response = client.post("/webhooks/telegram", json=TELEGRAM_UPDATE, headers={"X-Telegram-Bot-Api-Secret-Token": "bad"})

    assert response.status_code == 200
    assert db_session.query(Message).count() == 1


def test_telegram_secret_strict(client, db_session, configure):
    configure(telegram_webhook_secret="expected", telegram_webhook_strict=True)

    rejected = client.post("/webhooks/telegram", json=TELEGRAM_UPDATE)
    accepted = client.post(
        "/webhooks/telegram", json=TELEGRAM_UPDATE, headers={"X-Telegram-Bot-Api-Secret-Token": "expected"}
    )

    assert rejected.status_code == 403
    assert accepted.status_code == 200


def test_malformed_payload_is_acknowledged(client, db_session, configure):
    response = client.post("/webhooks/telegram", content=b"{not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}
    assert db_session.query(Message).count() == 0


def test_meta_verify_handshake(client, configure):
    configure(meta_verify_token="verify-me")

    ok = client.get(
        "/webhooks/meta",
        params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345"},
    )
    bad = client.get(
        "/webhooks/instagram",
        params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "12345"},
    )

    assert ok.status_code == 200
    assert ok.text == "12345"
    assert bad.status_code == 403


def _meta_payload():
    return {"object": "page", "entry": [{"messaging": [{"sender": {"id": "psid-1"}, "message": {"text": "Hey"}}]}]}


def test_meta_webhook_valid_signature(client, db_session, configure):
    configure(meta_app_secret="app-secret", meta_webhook_strict=True)
    body = json.dumps(_meta_payload()).encode()
    signature = "sha256=" + hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()

    response = client.post(
        "/webhooks/meta",
        content=body,
        headers={"Content-Type": "application/json", "X-Hub-Signature-256": signature},
    )

    assert response.status_code == 200
    conversation = db_session.query(Conversation).one()
    assert conversation.channel_name == "facebook"


def test_meta_webhook_bad_signature_strict(client, db_session, configure):
    configure(meta_app_secret="app-secret", meta_webhook_strict=True)

    response = client.post("/webhooks/meta", json=_meta_payload(), headers={"X-Hub-Signature-256": "sha256=bad"})

    assert response.status_code == 403
    assert db_session.query(Message).count() == 0


def test_meta_webhook_bad_signature_lenient(client, db_session, configure):
    configure(meta_app_secret="app-secret")

    response = client.post("/webhooks/meta", json=_meta_payload(), headers={"X-Hub-Signature-256": "sha256=bad"})

    assert response.status_code == 200
    assert db_session.query(Message).count() == 1


def test_instagram_webhook_forces_channel(client, db_session, configure):
    payload = {"entry": [{"messaging": [{"sender": {"id": "ig-1"}, "message": {"text": "Hi IG"}}]}]}

    client.post("/webhooks/instagram", json=payload)

    assert db_session.query(Conversation).one().channel_name == "instagram"


def test_sendpulse_webhook_with_key(client, db_session, configure):
    configure(sendpulse_webhook_key="sp-key", sendpulse_webhook_strict=True)
    payload = [
        {
            "title": "incoming_message",
            "contact": {"id": "sp-1", "username": "ig_user", "name": "Ig User"},
            "info": {"message": {"channel_data": {"message": {"text": "Hello"}}}},
        }
    ]

    denied = client.post("/webhooks/sendpulse/instagram", json=payload)
    accepted = client.post("/webhooks/sendpulse/instagram", json=payload, headers={"Authorization": "Bearer sp-key"})

    assert denied.status_code == 403
    assert accepted.json() == {"status": "ok", "processed": 1}
    conversation = db_session.query(Conversation).one()
    assert conversation.customer_contact_id == "sp-1"
    assert conversation.channel_name == "instagram"


def test_whatsapp_webhook_returns_twiml(client, db_session, configure):
    form = {"From": "whatsapp:+15551234567", "WaId": "15551234567", "ProfileName": "Ann", "Body": "Hello"}

    response = client.post("/webhooks/whatsapp", data=form)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert "<Response>" in response.text
    conversation = db_session.query(Conversation).one()
    assert conversation.customer_external_id == "+15551234567"
    assert conversation.customer_contact_id == "15551234567"


def test_whatsapp_signature_strict(client, db_session, configure):
    configure(
        twilio_auth_token="auth",
        twilio_webhook_strict=True,
        public_base_url="https://inbox.example.com",
    )
    form = {"From": "whatsapp:+1555", "Body": "Signed"}
    signature = compute_twilio_signature("auth", "https://inbox.example.com/webhooks/whatsapp", form)

    rejected = client.post("/webhooks/whatsapp", data=form, headers={"X-Twilio-Signature": "nope"})
    accepted = client.post("/webhooks/whatsapp", data=form, headers={"X-Twilio-Signature": signature})

    assert rejected.status_code == 403
    assert accepted.status_code == 200
    assert db_session.query(Message).count() == 1


def test_twilio_status_relays_to_conversation(client, db_session, configure, make_channel, make_conversation, broadcasts):
    conversation = make_conversation(make_channel("whatsapp"), external_id="+1555")

    response = client.post(
        "/webhooks/twilio/status",
        data={"MessageSid": "SM1", "MessageStatus": "delivered", "To": "whatsapp:+1555"},
    )

    assert response.json() == {"status": "ok", "conversationId": conversation.id}
    status_events = [event for event in broadcasts if event[2] == "provider:status"]
    assert status_events[0][1] == f"conv:{conversation.id}"
    assert status_events[0][3]["status"] == "delivered"
    assert status_events[0][3]["messageSid"] == "SM1"


def test_outlook_validation_token(client):
    response = client.post("/webhooks/outlook?validationToken=abc123")
    assert response.status_code == 200
    assert response.text == "abc123"


def test_outlook_notification_fetches_message(client, db_session, configure):
    configure(ms_client_state="state-1")
    mail_client = MagicMock()
    mail_client.fetch_message.return_value = {
        "from": {"emailAddress": {"address": "ann@example.com", "name": "Ann"}},
        "body": {"contentType": "text", "content": "Help please"},
        "bodyPreview": "Help please",
    }
    app.dependency_overrides[get_outlook_mail_client] = lambda: mail_client

    response = client.post(
        "/webhooks/outlook",
        json={
            "value": [
                {"clientState": "wrong", "resourceData": {"id": "m0"}},
                {"clientState": "state-1", "resourceData": {"id": "m1"}},
            ]
        },
    )

    assert response.json() == {"status": "ok", "processed": 1}
    mail_client.fetch_message.assert_called_once_with("m1")
    assert db_session.query(Conversation).one().customer_external_id == "ann@example.com"


def test_ingest_outlook_requires_key(client, configure):
    configure(integration_ingest_key="ingest")

    response = client.post("/ingest/outlook", json={"fromEmail": "a@example.com", "text": "x"})

    assert response.status_code == 403
    assert response.json() == {"error": "Forbidden"}


def test_ingest_outlook_bridge_and_duplicate(client, db_session, configure):
    configure(integration_ingest_key="ingest")
    body = {
        "fromEmail": "flows@sendpulse.com",
        "text": "[SP]\nplatform=facebook\nchat_id=fb-9\nname=Jo\ntext=Bridged hello",
    }

    first = client.post("/ingest/outlook", json=body, headers={"x-ingest-key": "ingest"})
    second = client.post("/ingest/outlook", json=body, headers={"x-ingest-key": "ingest"})

    assert first.json()["ok"] is True
    assert first.json()["duplicate"] is False
    assert second.json()["duplicate"] is True
    conversation = db_session.query(Conversation).one()
    assert conversation.channel_name == "facebook"
    assert conversation.customer_external_id == "fb-9"


def test_ingest_outlook_missing_fields(client, configure):
    configure(integration_ingest_key="ingest")
    response = client.post("/ingest/outlook", json={"fromEmail": "a@example.com"}, headers={"x-ingest-key": "ingest"})
    assert response.status_code == 400
