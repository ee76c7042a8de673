from app.models.inbox.agent import Agent
from app.models.inbox.channel import Channel
from app.models.inbox.conversation import Conversation, Message
from app.models.inbox.enums import ConversationStatus, MessageSender

__all__ = [
    "Agent",
    "Channel",
    "Conversation",
    "ConversationStatus",
    "Message",
    "MessageSender",
]
