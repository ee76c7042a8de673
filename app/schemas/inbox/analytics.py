from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class AnalyticsSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_open: int = Field(default=0, alias="totalOpen")
    unassigned_open: int = Field(default=0, alias="unassignedOpen")
    pending: int = 0
    closed: int = 0
    online_agents: int = Field(default=0, alias="onlineAgents")
    messages_24h: int = Field(default=0, alias="messages24h")
    notifications_unread: int = Field(default=0, alias="notificationsUnread")
