from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.inbox.enums import MessageSender


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int | None = None
    username: str
    content: str
    sender: MessageSender
    created_at: datetime


class ManualResponseCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: int | str | None = Field(default=None, alias="conversationId")
    message: str | None = None
    sender: MessageSender = MessageSender.agent
    username: str = Field(default="Manual Agent", max_length=80)


class OutboundSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sent: bool
    method: str
    channel: str | None = None
    contact_id: str | None = Field(default=None, alias="contactId")
    external_id: str | None = Field(default=None, alias="externalId")


class ManualResponseResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message_id: int = Field(alias="messageId")
    outbound: OutboundSummary | None = None
    warning: str | None = None
