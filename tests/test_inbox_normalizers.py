from app.services.inbox.normalizers import (
    MetaNormalizer,
    OutlookNormalizer,
    SendPulseInstagramNormalizer,
    TelegramNormalizer,
    WhatsAppNormalizer,
)
from app.services.inbox.normalizers.base import PLACEHOLDER_TEXT, NormalizedInbound, Rejected, clean_text, strip_html
from app.services.inbox.normalizers.outlook import parse_sendpulse_email_bridge
from app.services.inbox.normalizers.whatsapp import strip_whatsapp_prefix


def test_clean_text_placeholder_and_limit():
    assert clean_text(None) == PLACEHOLDER_TEXT
    assert clean_text("   ") == PLACEHOLDER_TEXT
    assert len(clean_text("a" * 5000)) == 2000


def test_strip_html():
    assert strip_html("<div>Hello<br>there &amp; you</div><style>p{}</style>") == "Hello\nthere & you"


def test_telegram_message():
    result = TelegramNormalizer().normalize(
        {"message": {"chat": {"id": 555, "first_name": "Ann", "last_name": "Lee"}, "text": "Hi"}}
    )
    assert result == NormalizedInbound(channel="telegram", external_id="555", text="Hi", display_name="Ann Lee")


def test_telegram_username_and_caption():
    result = TelegramNormalizer().normalize(
        {"edited_message": {"chat": {"id": 1, "username": "annie"}, "caption": "photo caption"}}
    )
    assert result.display_name == "annie"
    assert result.text == "photo caption"


def test_telegram_rejects_bots_and_missing_message():
    normalizer = TelegramNormalizer()
    assert normalizer.normalize({"message": {"chat": {"id": 1}, "from": {"is_bot": True}}}) == Rejected(
        channel="telegram", reason="echo"
    )
    assert isinstance(normalizer.normalize({"update_id": 1}), Rejected)
    assert normalizer.normalize({"message": {"chat": {}, "text": "x"}}).reason == "missing_external_id"


def test_whatsapp_form():
    result = WhatsAppNormalizer().normalize(
        {"From": "whatsapp:+15551234567", "WaId": "15551234567", "ProfileName": "Ann", "Body": "Hello"}
    )
    assert result.external_id == "+15551234567"
    assert result.contact_id == "15551234567"
    assert result.display_name == "Ann"
    assert result.text == "Hello"


def test_whatsapp_default_name_and_placeholder():
    result = WhatsAppNormalizer().normalize({"From": "whatsapp:+1555", "Body": ""})
    assert result.display_name == "WhatsApp +1555"
    assert result.text == PLACEHOLDER_TEXT


def test_strip_whatsapp_prefix():
    assert strip_whatsapp_prefix(" WhatsApp:+1555 ") == "+1555"
    assert strip_whatsapp_prefix(None) == ""


def test_meta_messenger_events():
    payload = {
        "object": "page",
        "entry": [
            {
                "messaging": [
                    {"sender": {"id": "psid-1"}, "message": {"text": "Hey"}},
                    {"sender": {"id": "psid-1"}, "message": {"text": "me", "is_echo": True}},
                    {"sender": {"id": "psid-1"}, "read": {"watermark": 1}},
                    {"sender": {"id": "psid-2"}, "postback": {"title": "Get Started"}},
                ]
            }
        ],
    }

    results = MetaNormalizer().normalize_all(payload)

    assert len(results) == 3
    assert results[0].channel == "facebook"
    assert results[0].external_id == "psid-1"
    assert results[0].display_name == "Facebook User"
    assert results[1] == Rejected(channel="facebook", reason="echo")
    assert results[2].text == "Get Started"


def test_meta_instagram_object():
    payload = {"object": "instagram", "entry": [{"messaging": [{"sender": {"id": "ig-1"}, "message": {"text": "Yo"}}]}]}
    result = MetaNormalizer().normalize(payload)
    assert result.channel == "instagram"
    assert result.display_name == "Instagram User"


def test_meta_instagram_changes():
    payload = {
        "object": "page",
        "entry": [
            {
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "instagram",
                            "from": {"id": "ig-2", "username": "gram"},
                            "message": {"text": "From changes"},
                        },
                    },
                    {"field": "feed", "value": {"item": "status"}},
                ]
            }
        ],
    }
    results = MetaNormalizer().normalize_all(payload)
    assert len(results) == 1
    assert results[0].channel == "instagram"
    assert results[0].display_name == "gram"


def test_meta_forced_platform():
    payload = {"entry": [{"messaging": [{"sender": {"id": "x"}, "message": {"text": "t"}}]}]}
    assert MetaNormalizer(platform="instagram").normalize(payload).channel == "instagram"


def test_meta_empty_payload_rejected():
    assert MetaNormalizer().normalize({"entry": []}).reason == "no_events"


def test_sendpulse_event_list():
    payload = [
        {
            "title": "incoming_message",
            "contact": {"id": "sp-1", "username": "ig_user", "name": "Ig User"},
            "info": {"message": {"channel_data": {"message": {"text": "Hello SP"}}}},
        },
        {"title": "outgoing_message", "contact": {"id": "sp-1"}},
    ]

    results = SendPulseInstagramNormalizer().normalize_all(payload)

    assert results[0] == NormalizedInbound(
        channel="instagram",
        external_id="ig_user",
        text="Hello SP",
        display_name="Ig User",
        contact_id="sp-1",
    )
    assert results[1] == Rejected(channel="instagram", reason="echo")


def test_sendpulse_outgoing_direction_is_echo():
    payload = [{"contact": {"id": "sp-1"}, "info": {"message": {"direction": "outgoing"}}}]
    assert SendPulseInstagramNormalizer().normalize(payload).reason == "echo"


def test_sendpulse_flat_object():
    payload = {"contact_id": "sp-2", "instagram_id": "u123", "text": "flat", "contact": {"name": "Flat"}}
    result = SendPulseInstagramNormalizer().normalize(payload)
    assert result.external_id == "u123"
    assert result.contact_id == "sp-2"
    assert result.display_name == "Flat"


def test_outlook_graph_message():
    message = {
        "from": {"emailAddress": {"address": "Ann@Example.com", "name": "Ann"}},
        "body": {"contentType": "html", "content": "<p>Need help</p>"},
        "bodyPreview": "Need help",
    }
    result = OutlookNormalizer().normalize(message)
    assert result.channel == "outlook"
    assert result.external_id == "ann@example.com"
    assert result.display_name == "Ann"
    assert result.text == "Need help"


def test_outlook_flat_ingest_body():
    result = OutlookNormalizer().normalize({"fromEmail": "bob@example.com", "text": "Hi there"})
    assert result.external_id == "bob@example.com"
    assert result.display_name == "bob@example.com"


def test_sendpulse_email_bridge_routes_to_social_channel():
    body = "Forwarded\n[SP]\nplatform=instagram\nchat_id=123\nname=John Doe\ntext=Hello there\n"

    result = OutlookNormalizer().normalize({"fromEmail": "flows@sendpulse.com", "text": body})

    assert result == NormalizedInbound(
        channel="instagram",
        external_id="123",
        text="Hello there",
        display_name="John Doe",
    )


def test_sendpulse_email_bridge_requires_fields():
    assert parse_sendpulse_email_bridge("no block here") is None
    assert parse_sendpulse_email_bridge("[SP]\nplatform=telegram\nchat_id=1\ntext=x") is None
    assert parse_sendpulse_email_bridge("[SP]\nplatform=facebook\nchat_id=1") is None
    assert parse_sendpulse_email_bridge("[SP]\nplatform=facebook\nchat_id=1\ntext=x").display_name == "User"
