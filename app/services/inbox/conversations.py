"""Conversation storage and the conversation REST operations."""

from __future__ import annotations

import threading
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from app.models.inbox import Agent, Channel, Conversation, ConversationStatus, MessageSender
from app.services.inbox.channels import get_or_create_channel
from app.services.inbox.context import get_inbox_logger
from app.services.inbox.errors import InboxConflictError, InboxNotFoundError, InboxValidationError
from app.services.inbox.observability import ASSIGNMENTS
from app.services.inbox.routing import pick_least_loaded_agent
from app.websocket import broadcaster

logger = get_inbox_logger(__name__)

MAX_NAME_LENGTH = 80
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200

_LOCK_STRIPES = tuple(threading.Lock() for _ in range(64))


def _pair_lock(channel_id: int, external_id: str | None) -> threading.Lock:
    return _LOCK_STRIPES[hash((channel_id, external_id)) % len(_LOCK_STRIPES)]


def _now() -> datetime:
    return datetime.now(UTC)


def find_open_conversation(db: Session, channel_id: int, external_id: str) -> Conversation | None:
    return (
        db.query(Conversation)
        .filter(Conversation.channel_id == channel_id)
        .filter(Conversation.customer_external_id == external_id)
        .filter(Conversation.status == ConversationStatus.open)
        .order_by(Conversation.created_at.desc(), Conversation.id.desc())
        .first()
    )


def find_latest_conversation(db: Session, channel_name: str, external_id: str) -> Conversation | None:
    """Newest conversation for a customer on a channel, whatever its status."""
    return (
        db.query(Conversation)
        .join(Conversation.channel)
        .filter(Channel.name == channel_name)
        .filter(Conversation.customer_external_id == external_id)
        .order_by(Conversation.created_at.desc(), Conversation.id.desc())
        .first()
    )


def create_conversation(
    db: Session,
    channel_id: int,
    external_id: str | None,
    customer_name: str,
    contact_id: str | None = None,
    assigned_agent_id: int | None = None,
) -> Conversation:
    now = _now()
    conversation = Conversation(
        channel_id=channel_id,
        customer_external_id=external_id,
        customer_contact_id=contact_id,
        customer_name=(customer_name or "Customer")[:MAX_NAME_LENGTH],
        status=ConversationStatus.open,
        assigned_agent_id=assigned_agent_id,
        created_at=now,
        last_activity_at=now,
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def find_or_create_open_conversation(
    db: Session,
    channel_id: int,
    external_id: str,
    customer_name: str,
    contact_id: str | None = None,
) -> tuple[Conversation, bool]:
    """Return the open conversation for a customer, creating it when absent.

    New conversations go to the least-loaded online agent. The in-process
    lock covers same-worker races; the partial unique index covers the
    rest, and a losing insert re-reads the winner.
    """
    with _pair_lock(channel_id, external_id):
        existing = find_open_conversation(db, channel_id, external_id)
        if existing:
            return existing, False

        agent = pick_least_loaded_agent(db)
        try:
            conversation = create_conversation(
                db,
                channel_id=channel_id,
                external_id=external_id,
                customer_name=customer_name,
                contact_id=contact_id,
                assigned_agent_id=agent.id if agent else None,
            )
        except IntegrityError:
            db.rollback()
            winner = find_open_conversation(db, channel_id, external_id)
            if winner is None:
                raise
            logger.info(
                "conversation_create_race channel_id=%s external_id=%s winner=%s",
                channel_id,
                external_id,
                winner.id,
            )
            return winner, False

    logger.info(
        "conversation_created id=%s channel_id=%s agent_id=%s",
        conversation.id,
        channel_id,
        agent.id if agent else None,
    )
    if agent:
        ASSIGNMENTS.labels(source="new_conversation").inc()
        if agent.socket_id:
            broadcaster.notify_conversation_assigned(agent.socket_id, conversation)
    return conversation, True


def touch_activity(db: Session, conversation_id: int, last_sender: MessageSender | str) -> None:
    (
        db.query(Conversation)
        .filter(Conversation.id == conversation_id)
        .update(
            {
                Conversation.last_activity_at: _now(),
                Conversation.last_sender: MessageSender(last_sender),
            },
            synchronize_session=False,
        )
    )
    db.commit()


def backfill_contact_id(db: Session, conversation_id: int, contact_id: str | None) -> bool:
    """Store the contact id only if none is stored yet."""
    if not contact_id:
        return False
    updated = (
        db.query(Conversation)
        .filter(Conversation.id == conversation_id)
        .filter(Conversation.customer_contact_id.is_(None))
        .update({Conversation.customer_contact_id: str(contact_id)}, synchronize_session=False)
    )
    db.commit()
    if updated:
        logger.info("contact_id_backfilled conversation_id=%s contact_id=%s", conversation_id, contact_id)
    return bool(updated)


def get_conversation(db: Session, conversation_id: int) -> Conversation:
    conversation = db.get(Conversation, conversation_id)
    if not conversation:
        raise InboxNotFoundError("conversation_not_found", "Conversation not found")
    return conversation


def _parse_status(value: str | None) -> ConversationStatus:
    if not value:
        raise InboxValidationError("status_required", "status is required")
    try:
        return ConversationStatus(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in ConversationStatus)
        raise InboxValidationError("invalid_status", f"status must be one of: {allowed}") from exc


def list_conversations(
    db: Session,
    status: str | None = None,
    assigned_to: str | None = None,
    limit: int | None = None,
) -> list[Conversation]:
    """Inbox listing, most recently active first.

    ``assigned_to`` is an agent id, or the literal ``"null"`` for the
    unassigned queue.
    """
    query = db.query(Conversation).options(joinedload(Conversation.channel))
    if status:
        query = query.filter(Conversation.status == _parse_status(status))
    if assigned_to is not None and assigned_to != "":
        if assigned_to == "null":
            query = query.filter(Conversation.assigned_agent_id.is_(None))
        else:
            try:
                agent_id = int(assigned_to)
            except ValueError as exc:
                raise InboxValidationError("invalid_assigned_to", "assignedTo must be an agent id or null") from exc
            query = query.filter(Conversation.assigned_agent_id == agent_id)
    limit = DEFAULT_LIST_LIMIT if not limit or limit < 1 else min(limit, MAX_LIST_LIMIT)
    return (
        query.order_by(Conversation.last_activity_at.desc().nulls_last(), Conversation.id.desc())
        .limit(limit)
        .all()
    )


def list_agent_conversations(db: Session, agent_id: int) -> list[Conversation]:
    return (
        db.query(Conversation)
        .filter(Conversation.assigned_agent_id == agent_id)
        .filter(Conversation.status == ConversationStatus.open)
        .order_by(Conversation.created_at.asc(), Conversation.id.asc())
        .all()
    )


def claim_conversation(db: Session, conversation_id: int, agent_name: str | None) -> Conversation:
    agent_name = (agent_name or "").strip()
    if not agent_name:
        raise InboxValidationError("agent_name_required", "agentName is required")
    agent = db.query(Agent).filter(Agent.name == agent_name).first()
    if not agent:
        raise InboxNotFoundError("agent_not_found", "Agent not found")
    conversation = get_conversation(db, conversation_id)

    conversation.assigned_agent_id = agent.id
    db.commit()
    db.refresh(conversation)
    ASSIGNMENTS.labels(source="claim").inc()
    logger.info("conversation_claimed id=%s agent_id=%s", conversation.id, agent.id)
    broadcaster.broadcast_conversation_agent(conversation.id, agent)
    return conversation


def update_status(db: Session, conversation_id: int, status: str | None) -> Conversation:
    """Change a conversation's status.

    Reopening is refused while another conversation for the same customer
    on the same channel is open.
    """
    new_status = _parse_status(status)
    conversation = get_conversation(db, conversation_id)
    if new_status == ConversationStatus.open and conversation.status != ConversationStatus.open:
        other = (
            db.query(Conversation.id)
            .filter(Conversation.channel_id == conversation.channel_id)
            .filter(Conversation.customer_external_id == conversation.customer_external_id)
            .filter(Conversation.status == ConversationStatus.open)
            .filter(Conversation.id != conversation.id)
            .first()
        )
        if conversation.customer_external_id is not None and other:
            raise InboxConflictError(
                "open_conversation_exists",
                f"Conversation {other.id} is already open for this customer",
            )

    conversation.status = new_status
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InboxConflictError(
            "open_conversation_exists",
            "Another conversation is already open for this customer",
        ) from exc
    db.refresh(conversation)
    logger.info("conversation_status_updated id=%s status=%s", conversation.id, new_status.value)
    return conversation


def start_web_conversation(db: Session, customer_name: str | None) -> tuple[Conversation, Agent | None]:
    """Open a live-chat conversation for a website visitor."""
    name = (customer_name or "").strip()[:MAX_NAME_LENGTH] or "Customer"
    channel = get_or_create_channel(db, "web", "web")
    agent = pick_least_loaded_agent(db)
    conversation = create_conversation(
        db,
        channel_id=channel.id,
        external_id=None,
        customer_name=name,
        assigned_agent_id=agent.id if agent else None,
    )
    if agent:
        ASSIGNMENTS.labels(source="new_conversation").inc()
    logger.info("web_conversation_started id=%s agent_id=%s", conversation.id, agent.id if agent else None)
    return conversation, agent
