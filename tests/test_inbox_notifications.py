from dataclasses import replace
from unittest.mock import MagicMock

import httpx
import pytest

from app.services.inbox import notifications

notify_new_message = notifications.notify_new_message


@pytest.fixture()
def configure(monkeypatch):
    def _configure(**overrides):
        base = replace(
            notifications.settings,
            internal_notify_enabled=True,
            internal_notify_slack_webhook="",
            internal_notify_discord_webhook="",
            internal_notify_email_to="",
            public_base_url="",
        )
        monkeypatch.setattr(notifications, "settings", replace(base, **overrides))

    return _configure


@pytest.fixture()
def posts(monkeypatch):
    calls = []

    def _post(url, json=None, timeout=None):
        calls.append((url, json))
        return httpx.Response(200)

    monkeypatch.setattr(notifications.httpx, "post", _post)
    return calls


def test_notification_text_includes_link(configure):
    configure(public_base_url="https://inbox.example.com/")

    text = notifications.build_notification_text("telegram", "Ann", "x" * 500, 42)

    lines = text.split("\n")
    assert lines[0] == "New telegram message"
    assert lines[1] == "From: Ann"
    assert lines[3] == "x" * 400
    assert lines[-1] == "Open: https://inbox.example.com/dashboard?conv=42"


def test_notification_text_without_base_url(configure):
    configure()

    text = notifications.build_notification_text("whatsapp", "Bob", "Hi", 1)

    assert "Open:" not in text


def test_deliver_posts_to_slack_and_discord(configure, posts):
    configure(
        internal_notify_slack_webhook="https://hooks.slack.test/1",
        internal_notify_discord_webhook="https://discord.test/hook",
    )

    notifications.deliver_notification("telegram", "Ann", "Hello", 7)

    assert [url for url, _ in posts] == ["https://hooks.slack.test/1", "https://discord.test/hook"]
    assert "text" in posts[0][1]
    assert "content" in posts[1][1]


def test_deliver_survives_webhook_errors(configure, monkeypatch):
    configure(internal_notify_slack_webhook="https://hooks.slack.test/1")

    def _fail(*args, **kwargs):
        raise httpx.ConnectError("unreachable")

    monkeypatch.setattr(notifications.httpx, "post", _fail)

    notifications.deliver_notification("telegram", "Ann", "Hello", 7)


def test_deliver_emails_team(configure, monkeypatch):
    configure(internal_notify_email_to="team@example.com")
    mail_client = MagicMock()
    container = MagicMock()
    container.outlook_mail_client.return_value = mail_client
    monkeypatch.setattr("app.container.get_container", lambda: container)

    notifications.deliver_notification("instagram", "Cara", "Hello", 3)

    address, subject, body = mail_client.send_mail.call_args.args
    assert address == "team@example.com"
    assert subject == "New instagram message - Cara"
    assert "Hello" in body


def test_notify_disabled_or_without_targets(configure):
    configure(internal_notify_enabled=False, internal_notify_slack_webhook="https://hooks.slack.test/1")
    assert notify_new_message("telegram", "Ann", "Hi", 1) is None

    configure()
    assert notify_new_message("telegram", "Ann", "Hi", 1) is None


def test_notify_runs_in_background(configure, posts):
    configure(internal_notify_slack_webhook="https://hooks.slack.test/1")

    future = notify_new_message("telegram", "Ann", "Hi", 1)

    future.result(timeout=5)
    assert posts[0][0] == "https://hooks.slack.test/1"
