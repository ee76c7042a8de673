import enum


class ConversationStatus(enum.Enum):
    open = "open"
    pending = "pending"
    closed = "closed"


class MessageSender(enum.Enum):
    customer = "customer"
    agent = "agent"
