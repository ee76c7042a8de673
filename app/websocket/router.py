"""WebSocket endpoint for agent dashboards and website visitors."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from app.container import get_container
from app.db import SessionLocal
from app.logging import get_logger
from app.schemas.inbox.conversation import AgentRead
from app.services.inbox import agents as agents_service
from app.services.inbox import conversations as conversations_service
from app.services.inbox import messages as messages_service
from app.services.inbox.context import set_request_id
from app.services.inbox.errors import InboxError
from app.websocket.broadcaster import serialize_conversation
from app.websocket.events import ClientEventType, EventType, InboundMessage, WebSocketEvent, room_for_conversation
from app.websocket.manager import ConnectionManager, get_connection_manager

logger = get_logger(__name__)

router = APIRouter(tags=["websocket"])


def _with_session(func, *args, **kwargs):
    db = SessionLocal()
    try:
        return func(db, *args, **kwargs)
    finally:
        db.close()


async def _send(websocket: WebSocket, event_type: EventType, data: dict[str, Any] | list[Any]) -> None:
    event = WebSocketEvent(event=event_type, data=data)
    await websocket.send_json(event.model_dump(mode="json"))


def _error_text(exc: Exception, fallback: str) -> str:
    if isinstance(exc, InboxError):
        return exc.detail
    return fallback


def _agent_ref(agent: dict | None) -> dict | None:
    if not agent:
        return None
    return {"id": agent["id"], "name": agent["name"]}


# --------------------------------------------------------------------------
# Session work run off the event loop
# --------------------------------------------------------------------------


def _register_agent(db, name: str | None, connection_id: str) -> dict:
    registry = get_container().connection_registry()
    registration = agents_service.register_agent(db, name, connection_id, registry)
    return {
        "agent": AgentRead.model_validate(registration.agent).model_dump(mode="json"),
        "socket_id": registration.agent.socket_id,
        "assigned": [serialize_conversation(item) for item in registration.assigned],
        "conversations": [serialize_conversation(item) for item in registration.conversations],
    }


def _start_conversation(db, name: str | None) -> dict:
    conversation, agent = conversations_service.start_web_conversation(db, name)
    return {
        "conversation": serialize_conversation(conversation),
        "agent": AgentRead.model_validate(agent).model_dump(mode="json") if agent else None,
        "agent_socket_id": agent.socket_id if agent else None,
    }


def _record_message(db, data: dict) -> int:
    recorded = messages_service.record_conversation_message(
        db,
        int(data.get("conversationId")),
        data.get("sender"),
        data.get("username"),
        data.get("content"),
        dispatcher=get_container().outbound_dispatcher(),
    )
    return recorded.message.id


def _record_chat(db, data: dict) -> int | None:
    message = messages_service.record_chat_message(db, data.get("username"), data.get("content"))
    return message.id if message else None


def _disconnect(db, connection_id: str) -> int | None:
    return agents_service.mark_agent_offline(db, connection_id, get_container().connection_registry())


# --------------------------------------------------------------------------
# Client events
# --------------------------------------------------------------------------


async def _handle_agent_register(connection_id: str, websocket: WebSocket, data: dict, manager: ConnectionManager):
    try:
        result = await run_in_threadpool(_with_session, _register_agent, data.get("name"), connection_id)
    except Exception as exc:
        logger.warning("agent_register_failed connection_id=%s error=%s", connection_id, exc)
        await _send(websocket, EventType.AGENT_ERROR, {"error": _error_text(exc, "Failed to register agent")})
        return

    agent = result["agent"]
    await _send(websocket, EventType.AGENT_REGISTERED, {"agent": agent})
    await _send(websocket, EventType.AGENT_CONVERSATIONS, result["conversations"])
    for conversation in result["assigned"]:
        await manager.send_to_connection(
            connection_id,
            WebSocketEvent(event=EventType.CONVERSATION_ASSIGNED, data=conversation),
        )
        await manager.broadcast_to_room(
            room_for_conversation(conversation["id"]),
            WebSocketEvent(
                event=EventType.CONVERSATION_AGENT,
                data={"conversationId": conversation["id"], "agent": _agent_ref(agent)},
            ),
        )


async def _handle_conversation_join(connection_id: str, websocket: WebSocket, data: dict, manager: ConnectionManager):
    conversation_id = data.get("conversationId")
    if conversation_id in (None, ""):
        return
    await manager.join_room(connection_id, room_for_conversation(conversation_id))
    await _send(websocket, EventType.CONVERSATION_JOINED, {"conversationId": conversation_id})


async def _handle_conversation_message(
    connection_id: str,
    websocket: WebSocket,
    data: dict,
    manager: ConnectionManager,
):
    if not messages_service.clean_content(data.get("content")):
        return
    try:
        await run_in_threadpool(_with_session, _record_message, data)
    except Exception as exc:
        logger.warning("conversation_message_failed connection_id=%s error=%s", connection_id, exc)
        await _send(websocket, EventType.CONVERSATION_ERROR, {"error": _error_text(exc, "Failed to send message")})


async def _handle_customer_start(connection_id: str, websocket: WebSocket, data: dict, manager: ConnectionManager):
    try:
        result = await run_in_threadpool(_with_session, _start_conversation, data.get("name"))
    except Exception as exc:
        logger.warning("customer_start_failed connection_id=%s error=%s", connection_id, exc)
        await _send(websocket, EventType.CUSTOMER_ERROR, {"error": _error_text(exc, "Failed to start conversation")})
        return

    conversation = result["conversation"]
    agent = result["agent"]
    room = room_for_conversation(conversation["id"])
    await manager.join_room(connection_id, room)
    await _send(
        websocket,
        EventType.CONVERSATION_STARTED,
        {"conversation": conversation, "assignedAgent": _agent_ref(agent)},
    )
    if agent:
        if result["agent_socket_id"]:
            await manager.send_to_connection(
                result["agent_socket_id"],
                WebSocketEvent(event=EventType.CONVERSATION_ASSIGNED, data=conversation),
            )
        await manager.broadcast_to_room(
            room,
            WebSocketEvent(
                event=EventType.CONVERSATION_AGENT,
                data={"conversationId": conversation["id"], "agent": _agent_ref(agent)},
            ),
        )


async def _handle_chat_message(connection_id: str, websocket: WebSocket, data: dict, manager: ConnectionManager):
    try:
        await run_in_threadpool(_with_session, _record_chat, data)
    except Exception as exc:
        logger.warning("chat_message_failed connection_id=%s error=%s", connection_id, exc)
        await _send(websocket, EventType.CHAT_ERROR, {"error": "Failed to save message"})


_HANDLERS = {
    ClientEventType.AGENT_REGISTER: _handle_agent_register,
    ClientEventType.CONVERSATION_JOIN: _handle_conversation_join,
    ClientEventType.CONVERSATION_MESSAGE: _handle_conversation_message,
    ClientEventType.CUSTOMER_START: _handle_customer_start,
    ClientEventType.CHAT_MESSAGE: _handle_chat_message,
}


async def _handle_client_message(connection_id: str, websocket: WebSocket, raw_data: str, manager: ConnectionManager):
    try:
        message = InboundMessage.model_validate_json(raw_data)
    except ValidationError:
        logger.warning("websocket_invalid_message connection_id=%s", connection_id)
        return

    if message.event == ClientEventType.PING:
        await _send(websocket, EventType.HEARTBEAT, {"status": "ok"})
        return
    handler = _HANDLERS.get(message.event)
    if handler:
        set_request_id()
        await handler(connection_id, websocket, message.data or {}, manager)


@router.websocket("/ws")
async def inbox_websocket(websocket: WebSocket):
    """
    Live inbox channel shared by agents and website visitors.

    Frames are JSON objects ``{"event": ..., "data": {...}}``.

    Client events:
    - agent:register {name}
    - conversation:join {conversationId}
    - conversation:message {conversationId, sender, username, content}
    - customer:start {name}
    - chat:message {username, content}
    - ping

    Server events:
    - connection:ack, heartbeat
    - agent:registered, agent:conversations, agent:error
    - conversation:assigned, conversation:agent, conversation:message
    - conversation:joined, conversation:started, conversation:error
    - inbox:update, chat:message, chat:error, customer:error, provider:status
    """
    await websocket.accept()
    connection_id = uuid.uuid4().hex
    manager = get_connection_manager()
    await manager.register_connection(connection_id, websocket)

    try:
        while True:
            data = await websocket.receive_text()
            await _handle_client_message(connection_id, websocket, data, manager)
    except WebSocketDisconnect:
        logger.debug("websocket_disconnected connection_id=%s", connection_id)
    except Exception as exc:
        logger.warning("websocket_error connection_id=%s error=%s", connection_id, exc)
    finally:
        await manager.unregister_connection(connection_id)
        try:
            await run_in_threadpool(_with_session, _disconnect, connection_id)
        except Exception as exc:
            logger.warning("agent_offline_failed connection_id=%s error=%s", connection_id, exc)
