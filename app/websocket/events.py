from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel


class EventType(StrEnum):
    """Server to client events."""

    AGENT_REGISTERED = "agent:registered"
    AGENT_CONVERSATIONS = "agent:conversations"
    AGENT_ERROR = "agent:error"
    CONVERSATION_ASSIGNED = "conversation:assigned"
    CONVERSATION_MESSAGE = "conversation:message"
    CONVERSATION_AGENT = "conversation:agent"
    CONVERSATION_JOINED = "conversation:joined"
    CONVERSATION_STARTED = "conversation:started"
    CONVERSATION_ERROR = "conversation:error"
    CUSTOMER_ERROR = "customer:error"
    INBOX_UPDATE = "inbox:update"
    CHAT_MESSAGE = "chat:message"
    CHAT_ERROR = "chat:error"
    PROVIDER_STATUS = "provider:status"
    CONNECTION_ACK = "connection:ack"
    HEARTBEAT = "heartbeat"


class WebSocketEvent(BaseModel):
    """Outbound WebSocket event sent to clients."""

    event: EventType
    data: dict[str, Any] | list[Any]
    timestamp: datetime | None = None

    def model_post_init(self, __context: Any) -> None:
        if self.timestamp is None:
            object.__setattr__(self, "timestamp", datetime.now(UTC))


class ClientEventType(StrEnum):
    """Events clients can send."""

    AGENT_REGISTER = "agent:register"
    CONVERSATION_JOIN = "conversation:join"
    CONVERSATION_MESSAGE = "conversation:message"
    CUSTOMER_START = "customer:start"
    CHAT_MESSAGE = "chat:message"
    PING = "ping"


class InboundMessage(BaseModel):
    """Frame received from a WebSocket client."""

    event: ClientEventType
    data: dict[str, Any] | None = None


def room_for_conversation(conversation_id: int | str) -> str:
    return f"conv:{conversation_id}"
