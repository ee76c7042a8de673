"""Agent assignment: least-loaded selection and backlog claiming."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.models.inbox import Agent, Conversation, ConversationStatus
from app.services.inbox.context import get_inbox_logger
from app.services.inbox.observability import ASSIGNMENTS
from app.websocket import broadcaster

logger = get_inbox_logger(__name__)


def _open_load():
    return (
        select(func.count(Conversation.id))
        .where(Conversation.assigned_agent_id == Agent.id)
        .where(Conversation.status == ConversationStatus.open)
        .correlate(Agent)
        .scalar_subquery()
    )


def pick_least_loaded_agent(db: Session) -> Agent | None:
    """Online agent with a live connection and the fewest open conversations.

    Ties go to the lowest agent id so the choice is deterministic.
    """
    return (
        db.query(Agent)
        .filter(Agent.online.is_(True))
        .filter(Agent.socket_id.isnot(None))
        .order_by(_open_load().asc(), Agent.id.asc())
        .first()
    )


def auto_assign_backlog(
    db: Session,
    agent_id: int,
    cap: int | None = None,
    notify: bool = True,
) -> list[Conversation]:
    """Claim up to ``cap`` of the oldest unassigned open conversations.

    Rows are locked with SKIP LOCKED where the database supports it and the
    update re-checks ``assigned_agent_id IS NULL``, so two agents registering
    at once never claim the same conversation.
    """
    cap = settings.backlog_cap if cap is None else cap
    if cap <= 0:
        return []

    candidate_ids = [
        row.id
        for row in db.query(Conversation.id)
        .filter(Conversation.status == ConversationStatus.open)
        .filter(Conversation.assigned_agent_id.is_(None))
        .order_by(Conversation.created_at.asc(), Conversation.id.asc())
        .limit(cap)
        .with_for_update(skip_locked=True)
        .all()
    ]
    if not candidate_ids:
        return []

    (
        db.query(Conversation)
        .filter(Conversation.id.in_(candidate_ids))
        .filter(Conversation.assigned_agent_id.is_(None))
        .update({Conversation.assigned_agent_id: agent_id}, synchronize_session=False)
    )
    db.commit()

    assigned = (
        db.query(Conversation)
        .filter(Conversation.id.in_(candidate_ids))
        .filter(Conversation.assigned_agent_id == agent_id)
        .order_by(Conversation.created_at.asc(), Conversation.id.asc())
        .all()
    )
    if assigned:
        ASSIGNMENTS.labels(source="backlog").inc(len(assigned))
        logger.info("backlog_assigned agent_id=%s count=%s", agent_id, len(assigned))
    if notify and assigned:
        agent = db.get(Agent, agent_id)
        if agent:
            notify_backlog_assignment(agent, assigned)
    return assigned


def notify_backlog_assignment(agent: Agent, conversations: list[Conversation]) -> None:
    for conversation in conversations:
        if agent.socket_id:
            broadcaster.notify_conversation_assigned(agent.socket_id, conversation)
        broadcaster.broadcast_conversation_agent(conversation.id, agent)
