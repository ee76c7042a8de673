"""Message history, live replies and the manual response API."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.models.inbox import Message, MessageSender
from app.schemas.inbox.message import ManualResponseCreate, ManualResponseResult, OutboundSummary
from app.services.inbox.context import get_inbox_logger
from app.services.inbox.conversations import get_conversation, touch_activity
from app.services.inbox.errors import InboxValidationError
from app.services.inbox.outbound import DispatchResult, OutboundDispatcher
from app.websocket import broadcaster

logger = get_inbox_logger(__name__)

MAX_CONTENT_LENGTH = 2000
MAX_USERNAME_LENGTH = 80
MAX_CHAT_USERNAME_LENGTH = 50
CONVERSATION_HISTORY_LIMIT = 200
LEGACY_HISTORY_LIMIT = 100


@dataclass
class RecordedMessage:
    message: Message
    outbound: DispatchResult | None = None


def clean_content(value) -> str:
    return str(value or "")[:MAX_CONTENT_LENGTH].strip()


def _parse_sender(value) -> MessageSender:
    return MessageSender.agent if str(value or "").lower() == "agent" else MessageSender.customer


def list_messages(db: Session, conversation_id: int | None = None) -> list[Message]:
    """Conversation history in chronological order.

    Without a conversation id the legacy chat feed is returned: the most
    recent messages across the whole inbox, oldest first.
    """
    if conversation_id:
        return (
            db.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .limit(CONVERSATION_HISTORY_LIMIT)
            .all()
        )
    recent = (
        db.query(Message)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(LEGACY_HISTORY_LIMIT)
        .all()
    )
    return list(reversed(recent))


def record_conversation_message(
    db: Session,
    conversation_id: int,
    sender,
    username: str | None,
    content,
    dispatcher: OutboundDispatcher | None = None,
) -> RecordedMessage:
    """Persist a live message and fan it out.

    Agent messages are also pushed to the customer through the channel's
    outbound chain when a dispatcher is given.
    """
    text = clean_content(content)
    if not text:
        raise InboxValidationError("empty_message", "message is empty")
    sender = _parse_sender(sender.value if isinstance(sender, MessageSender) else sender)
    conversation = get_conversation(db, conversation_id)

    name = (username or "").strip()
    if not name:
        if sender == MessageSender.agent:
            name = conversation.assigned_agent.name if conversation.assigned_agent else "Agent"
        else:
            name = conversation.customer_name
    message = Message(
        conversation_id=conversation.id,
        username=name[:MAX_USERNAME_LENGTH],
        content=text,
        sender=sender,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    touch_activity(db, conversation.id, sender)
    logger.info(
        "conversation_message_stored conversation_id=%s message_id=%s sender=%s",
        conversation.id,
        message.id,
        sender.value,
    )

    broadcaster.broadcast_conversation_message(message)
    broadcaster.broadcast_inbox_update(conversation.id, sender.value)

    outbound = None
    if sender == MessageSender.agent and dispatcher is not None:
        outbound = dispatcher.send_for_conversation(db, conversation.id, text)
    return RecordedMessage(message=message, outbound=outbound)


def record_chat_message(db: Session, username: str | None, content) -> Message | None:
    """Legacy conversation-less chat; broadcast to every client."""
    text = clean_content(content)
    if not text:
        return None
    name = (username or "").strip()[:MAX_CHAT_USERNAME_LENGTH] or "Anonymous"
    message = Message(conversation_id=None, username=name, content=text, sender=MessageSender.customer)
    db.add(message)
    db.commit()
    db.refresh(message)
    broadcaster.broadcast_chat_message(message)
    return message


def _coerce_conversation_id(value) -> int:
    try:
        conversation_id = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise InboxValidationError("invalid_conversation_id", "conversationId must be an integer") from exc
    if conversation_id < 1:
        raise InboxValidationError("invalid_conversation_id", "conversationId must be an integer")
    return conversation_id


def send_manual_response(
    db: Session,
    payload: ManualResponseCreate,
    dispatcher: OutboundDispatcher,
) -> ManualResponseResult:
    if payload.conversation_id in (None, "") or not payload.message:
        raise InboxValidationError("missing_fields", "conversationId and message are required")
    conversation_id = _coerce_conversation_id(payload.conversation_id)
    if not clean_content(payload.message):
        raise InboxValidationError("empty_message", "message is empty")

    recorded = record_conversation_message(
        db,
        conversation_id,
        payload.sender,
        payload.username,
        payload.message,
        dispatcher=dispatcher,
    )
    result = ManualResponseResult(success=True, message_id=recorded.message.id)
    outbound = recorded.outbound
    if outbound is not None:
        result.outbound = OutboundSummary(
            sent=outbound.sent,
            method=outbound.method,
            channel=outbound.channel,
            contact_id=outbound.contact_id,
            external_id=outbound.external_id,
        )
        # Web visitors read replies over the live socket.
        if not outbound.sent and outbound.channel != "web":
            result.warning = f"Message saved but delivery via {outbound.method} failed"
    return result
