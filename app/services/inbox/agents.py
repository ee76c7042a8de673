"""Agent presence."""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.inbox import Agent, Conversation
from app.services.inbox.context import get_inbox_logger
from app.services.inbox.conversations import list_agent_conversations
from app.services.inbox.errors import InboxValidationError
from app.services.inbox.routing import auto_assign_backlog
from app.websocket.registry import ConnectionRegistry

logger = get_inbox_logger(__name__)

MAX_AGENT_NAME_LENGTH = 50


@dataclass
class AgentRegistration:
    agent: Agent
    assigned: list[Conversation] = field(default_factory=list)
    conversations: list[Conversation] = field(default_factory=list)


def _upsert_online(db: Session, name: str, connection_id: str) -> Agent:
    agent = db.query(Agent).filter(Agent.name == name).first()
    if agent is None:
        agent = Agent(name=name, online=True, socket_id=connection_id)
        db.add(agent)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            agent = db.query(Agent).filter(Agent.name == name).one()
        else:
            db.refresh(agent)
            return agent
    agent.online = True
    agent.socket_id = connection_id
    db.commit()
    db.refresh(agent)
    return agent


def register_agent(
    db: Session,
    name: str | None,
    connection_id: str,
    registry: ConnectionRegistry,
) -> AgentRegistration:
    """Bring an agent online on a connection and hand it the backlog.

    Backlog notifications are left to the caller so they can follow the
    ``agent:registered`` acknowledgement.
    """
    name = (name or "").strip()[:MAX_AGENT_NAME_LENGTH]
    if not name:
        raise InboxValidationError("agent_name_required", "name is required")

    agent = _upsert_online(db, name, connection_id)
    registry.register(agent.id, connection_id)
    assigned = auto_assign_backlog(db, agent.id, notify=False)
    conversations = list_agent_conversations(db, agent.id)
    logger.info(
        "agent_registered agent_id=%s connection_id=%s backlog=%s open=%s",
        agent.id,
        connection_id,
        len(assigned),
        len(conversations),
    )
    return AgentRegistration(agent=agent, assigned=assigned, conversations=conversations)


def mark_agent_offline(db: Session, connection_id: str, registry: ConnectionRegistry) -> int | None:
    """Take the agent on this connection offline.

    The row is only touched while its ``socket_id`` still matches, so a
    stale disconnect cannot clobber a newer session of the same agent.
    """
    agent_id = registry.clear(connection_id)
    query = db.query(Agent).filter(Agent.socket_id == connection_id)
    if agent_id is not None:
        query = query.filter(Agent.id == agent_id)
    updated = query.update({Agent.online: False, Agent.socket_id: None}, synchronize_session=False)
    db.commit()
    if updated:
        logger.info("agent_offline agent_id=%s connection_id=%s", agent_id, connection_id)
    return agent_id
