from __future__ import annotations

import asyncio
from concurrent.futures import Future
from typing import TYPE_CHECKING, Any

from app.logging import get_logger
from app.schemas.inbox.conversation import ConversationRead
from app.schemas.inbox.message import MessageRead
from app.websocket.events import EventType, WebSocketEvent, room_for_conversation
from app.websocket.manager import get_connection_manager

if TYPE_CHECKING:
    from app.models.inbox import Agent, Conversation, Message

logger = get_logger(__name__)


def _handle_task_exception(task: asyncio.Task):
    """Callback to log exceptions from background tasks."""
    try:
        exc = task.exception()
        if exc:
            logger.error("websocket_task_error error=%s", exc, exc_info=exc)
    except asyncio.CancelledError:
        pass


def _handle_future_exception(future: Future):
    exc = future.exception()
    if exc:
        logger.error("websocket_task_error error=%s", exc, exc_info=exc)


def _run_async(coro):
    """Run a coroutine from sync code.

    Inside the loop thread it becomes a task. From a worker thread it is
    handed to the manager's loop so sockets are only touched by the loop
    that owns them.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        pass
    else:
        task = asyncio.create_task(coro)
        task.add_done_callback(_handle_task_exception)
        return

    loop = get_connection_manager().loop
    if loop is not None and loop.is_running():
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        future.add_done_callback(_handle_future_exception)
        return
    try:
        asyncio.run(coro)
    except Exception as exc:
        logger.error("async_run_error error=%s", exc)


def emit_to_room(room: str, event_type: EventType, data: dict[str, Any] | list[Any]) -> None:
    try:
        event = WebSocketEvent(event=event_type, data=data)
        _run_async(get_connection_manager().broadcast_to_room(room, event))
        logger.debug("broadcast_room room=%s event=%s", room, event_type)
    except Exception as exc:
        logger.warning("broadcast_room_error room=%s event=%s error=%s", room, event_type, exc)


def emit_to_connection(connection_id: str, event_type: EventType, data: dict[str, Any] | list[Any]) -> None:
    try:
        event = WebSocketEvent(event=event_type, data=data)
        _run_async(get_connection_manager().send_to_connection(connection_id, event))
        logger.debug("broadcast_connection connection_id=%s event=%s", connection_id, event_type)
    except Exception as exc:
        logger.warning(
            "broadcast_connection_error connection_id=%s event=%s error=%s",
            connection_id,
            event_type,
            exc,
        )


def emit_all(event_type: EventType, data: dict[str, Any] | list[Any]) -> None:
    try:
        event = WebSocketEvent(event=event_type, data=data)
        _run_async(get_connection_manager().broadcast_all(event))
    except Exception as exc:
        logger.warning("broadcast_all_error event=%s error=%s", event_type, exc)


def serialize_conversation(conversation: Conversation) -> dict[str, Any]:
    return ConversationRead.model_validate(conversation).model_dump(mode="json")


def serialize_message(message: Message) -> dict[str, Any]:
    return MessageRead.model_validate(message).model_dump(mode="json")


def broadcast_conversation_message(message: Message) -> None:
    """Send a persisted message to everyone viewing its conversation."""
    emit_to_room(
        room_for_conversation(message.conversation_id),
        EventType.CONVERSATION_MESSAGE,
        serialize_message(message),
    )


def broadcast_inbox_update(conversation_id: int, last_sender: str) -> None:
    """Tell every dashboard that the inbox ordering changed."""
    emit_all(
        EventType.INBOX_UPDATE,
        {"conversationId": conversation_id, "last_sender": last_sender},
    )


def notify_conversation_assigned(connection_id: str, conversation: Conversation) -> None:
    emit_to_connection(connection_id, EventType.CONVERSATION_ASSIGNED, serialize_conversation(conversation))


def broadcast_conversation_agent(conversation_id: int, agent: Agent) -> None:
    emit_to_room(
        room_for_conversation(conversation_id),
        EventType.CONVERSATION_AGENT,
        {"conversationId": conversation_id, "agent": {"id": agent.id, "name": agent.name}},
    )


def broadcast_provider_status(conversation_id: int, payload: dict[str, Any]) -> None:
    emit_to_room(
        room_for_conversation(conversation_id),
        EventType.PROVIDER_STATUS,
        {"conversationId": conversation_id, **payload},
    )


def broadcast_chat_message(message: Message) -> None:
    emit_all(EventType.CHAT_MESSAGE, serialize_message(message))
