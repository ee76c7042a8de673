"""Internal staff notifications for new inbound messages.

Posts to Slack and Discord incoming webhooks and emails a team address
through the Outlook transport. Runs off the request thread; any failure is
logged and dropped.
"""

from __future__ import annotations

import concurrent.futures

import httpx

from app.config import settings
from app.services.inbox.context import get_inbox_logger

logger = get_inbox_logger(__name__)

PREVIEW_LENGTH = 400

_executor = concurrent.futures.ThreadPoolExecutor(max_workers=2, thread_name_prefix="inbox-notify")


def _dashboard_link(conversation_id: int, base_url: str | None) -> str:
    base = (base_url or settings.public_base_url or "").rstrip("/")
    if not base:
        return ""
    return f"{base}/dashboard?conv={conversation_id}"


def build_notification_text(
    platform: str,
    customer_name: str,
    text: str,
    conversation_id: int,
    base_url: str | None = None,
) -> str:
    preview = (text or "")[:PREVIEW_LENGTH]
    lines = [f"New {platform} message", f"From: {customer_name}", "", preview]
    link = _dashboard_link(conversation_id, base_url)
    if link:
        lines += ["", f"Open: {link}"]
    return "\n".join(lines)


def _post_webhook(url: str, payload: dict, label: str) -> None:
    try:
        response = httpx.post(url, json=payload, timeout=10.0)
        if response.status_code >= 400:
            logger.warning("internal_notify_failed target=%s status=%s", label, response.status_code)
    except httpx.HTTPError as exc:
        logger.warning("internal_notify_error target=%s error=%s", label, exc)


def _send_email(body: str, platform: str, customer_name: str) -> None:
    from app.container import get_container

    mail_client = get_container().outlook_mail_client()
    try:
        mail_client.send_mail(
            settings.internal_notify_email_to,
            f"New {platform} message - {customer_name}",
            body,
        )
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("internal_notify_error target=email error=%s", exc)


def deliver_notification(platform: str, customer_name: str, text: str, conversation_id: int, base_url=None) -> None:
    body = build_notification_text(platform, customer_name, text, conversation_id, base_url)
    if settings.internal_notify_slack_webhook:
        _post_webhook(settings.internal_notify_slack_webhook, {"text": body}, "slack")
    if settings.internal_notify_discord_webhook:
        _post_webhook(settings.internal_notify_discord_webhook, {"content": body[:2000]}, "discord")
    if settings.internal_notify_email_to:
        _send_email(body, platform, customer_name)


def _log_failure(future: concurrent.futures.Future) -> None:
    exc = future.exception()
    if exc:
        logger.warning("internal_notify_error error=%s", exc)


def notify_new_message(
    platform: str,
    customer_name: str,
    text: str,
    conversation_id: int,
    base_url: str | None = None,
) -> concurrent.futures.Future | None:
    """Queue a notification; returns the future, or None when disabled."""
    if not settings.internal_notify_enabled:
        return None
    if not (
        settings.internal_notify_slack_webhook
        or settings.internal_notify_discord_webhook
        or settings.internal_notify_email_to
    ):
        return None
    future = _executor.submit(deliver_notification, platform, customer_name, text, conversation_id, base_url)
    future.add_done_callback(_log_failure)
    return future
