"""Inbound message ingestion.

Every channel funnels through ``ingest_inbound`` once its payload has been
normalized, so conversation lookup, assignment, dedup, persistence and live
fan-out behave the same for all providers.
"""

from __future__ import annotations

import time
from typing import Any

from sqlalchemy.orm import Session

from app.models.inbox import Message, MessageSender
from app.services.inbox import notifications
from app.services.inbox.channels import get_or_create_channel
from app.services.inbox.context import get_inbox_logger, with_inbox_context
from app.services.inbox.conversations import backfill_contact_id, find_or_create_open_conversation, touch_activity
from app.services.inbox.dedup import is_recent_duplicate
from app.services.inbox.normalizers.base import InboundNormalizer, NormalizedInbound, Rejected
from app.services.inbox.observability import INBOUND_MESSAGES, MESSAGE_PROCESSING_TIME
from app.telemetry import get_tracer
from app.websocket import broadcaster

logger = get_inbox_logger(__name__)
tracer = get_tracer(__name__)


@with_inbox_context
def ingest_inbound(
    db: Session,
    channel_name: str,
    normalized: NormalizedInbound,
    channel_type: str | None = None,
    base_url: str | None = None,
) -> Message | None:
    """Store one normalized inbound message.

    Returns the persisted message, or None when it repeated a message
    already stored inside the dedup window.
    """
    start = time.perf_counter()
    try:
        channel = get_or_create_channel(db, channel_name, channel_type or channel_name)
        conversation, created = find_or_create_open_conversation(
            db,
            channel_id=channel.id,
            external_id=normalized.external_id,
            customer_name=normalized.display_name,
            contact_id=normalized.contact_id,
        )
        if not created and normalized.contact_id and not conversation.customer_contact_id:
            backfill_contact_id(db, conversation.id, normalized.contact_id)

        if is_recent_duplicate(db, conversation.id, MessageSender.customer, normalized.text):
            INBOUND_MESSAGES.labels(channel=channel_name, status="duplicate").inc()
            logger.info(
                "inbound_duplicate_skipped channel=%s conversation_id=%s",
                channel_name,
                conversation.id,
            )
            return None

        message = Message(
            conversation_id=conversation.id,
            username=normalized.display_name,
            content=normalized.text,
            sender=MessageSender.customer,
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        touch_activity(db, conversation.id, MessageSender.customer)
    except Exception:
        INBOUND_MESSAGES.labels(channel=channel_name, status="error").inc()
        raise
    finally:
        MESSAGE_PROCESSING_TIME.labels(channel=channel_name, direction="inbound").observe(
            time.perf_counter() - start
        )

    INBOUND_MESSAGES.labels(channel=channel_name, status="success").inc()
    logger.info(
        "inbound_message_stored channel=%s conversation_id=%s message_id=%s new_conversation=%s",
        channel_name,
        conversation.id,
        message.id,
        created,
    )
    broadcaster.broadcast_conversation_message(message)
    broadcaster.broadcast_inbox_update(conversation.id, MessageSender.customer.value)
    notifications.notify_new_message(
        channel_name,
        normalized.display_name,
        normalized.text,
        conversation.id,
        base_url=base_url,
    )
    return message


def ingest_payload(
    db: Session,
    normalizer: InboundNormalizer,
    payload: Any,
    base_url: str | None = None,
) -> list[Message]:
    """Normalize a raw webhook body and ingest every event it carries."""
    stored: list[Message] = []
    for result in normalizer.normalize_all(payload):
        if isinstance(result, Rejected):
            INBOUND_MESSAGES.labels(channel=result.channel, status="rejected").inc()
            logger.info("inbound_rejected channel=%s reason=%s", result.channel, result.reason)
            continue
        with tracer.start_as_current_span("inbox.ingest", attributes={"inbox.channel": result.channel}) as span:
            message = ingest_inbound(db, result.channel, result, base_url=base_url)
            span.set_attribute("inbox.duplicate", message is None)
        if message is not None:
            stored.append(message)
    return stored
