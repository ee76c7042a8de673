"""
Duplicate suppression for inbound messages.

Providers retry webhooks, and some deliver the same event through two
routes (for example a Meta webhook and the SendPulse email bridge). A
message is treated as a repeat when the same conversation already holds an
identical (sender, content) pair created inside the dedup window.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.models.inbox import Message, MessageSender


def is_recent_duplicate(
    db: Session,
    conversation_id: int,
    sender: MessageSender | str,
    content: str,
    window_seconds: int | None = None,
    now: datetime | None = None,
) -> bool:
    """Check whether an identical message was stored recently.

    Args:
        db: Database session.
        conversation_id: Conversation the candidate message belongs to.
        sender: ``customer`` or ``agent``.
        content: Exact message text after truncation.
        window_seconds: Lookback window; defaults to ``INBOX_DEDUP_WINDOW_SECONDS``.
        now: Reference time, mainly for tests.

    Returns:
        True when a matching message exists inside the window.
    """
    window = settings.dedup_window_seconds if window_seconds is None else window_seconds
    cutoff = (now or datetime.now(UTC)) - timedelta(seconds=window)
    match = (
        db.query(Message.id)
        .filter(Message.conversation_id == conversation_id)
        .filter(Message.sender == MessageSender(sender))
        .filter(Message.content == content)
        .filter(Message.created_at >= cutoff)
        .first()
    )
    return match is not None
