from app.models.inbox import (  # noqa: F401
    Agent,
    Channel,
    Conversation,
    ConversationStatus,
    Message,
    MessageSender,
)
