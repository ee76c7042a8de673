from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.inbox.enums import ConversationStatus, MessageSender


class ChannelRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: str


class AgentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    online: bool


class AgentRef(BaseModel):
    id: int
    name: str


class ConversationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_name: str
    status: ConversationStatus
    assigned_agent_id: int | None = None
    channel_id: int | None = None
    channel_name: str = "web"
    customer_external_id: str | None = None
    customer_contact_id: str | None = None
    last_sender: MessageSender | None = None
    created_at: datetime
    last_activity_at: datetime | None = None


class ConversationClaim(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_name: str | None = Field(default=None, alias="agentName", max_length=50)


class ConversationStatusUpdate(BaseModel):
    status: str | None = None
