"""Dashboard counters."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.inbox import Agent, Conversation, ConversationStatus, Message, MessageSender
from app.schemas.inbox.analytics import AnalyticsSummary

MESSAGE_WINDOW = timedelta(hours=24)


def _count(*criteria):
    return select(func.count()).select_from(Conversation).where(*criteria).scalar_subquery()


def summary(db: Session, now: datetime | None = None) -> AnalyticsSummary:
    """Open/pending/closed totals, online agents and 24h message volume.

    ``notifications_unread`` counts open, unassigned conversations whose
    last message came from the customer.
    """
    since = (now or datetime.now(UTC)) - MESSAGE_WINDOW
    is_open = Conversation.status == ConversationStatus.open
    row = db.execute(
        select(
            _count(is_open).label("total_open"),
            _count(is_open, Conversation.assigned_agent_id.is_(None)).label("unassigned_open"),
            _count(Conversation.status == ConversationStatus.pending).label("pending"),
            _count(Conversation.status == ConversationStatus.closed).label("closed"),
            select(func.count()).select_from(Agent).where(Agent.online.is_(True)).scalar_subquery().label(
                "online_agents"
            ),
            select(func.count())
            .select_from(Message)
            .where(Message.created_at >= since)
            .scalar_subquery()
            .label("messages_24h"),
            _count(
                is_open,
                Conversation.last_sender == MessageSender.customer,
                Conversation.assigned_agent_id.is_(None),
            ).label("notifications_unread"),
        )
    ).one()
    return AnalyticsSummary.model_validate(dict(row._mapping))
