from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from app.config import settings
from app.logging import get_logger
from app.websocket.events import EventType, WebSocketEvent

logger = get_logger(__name__)

CHANNEL_PREFIX = "inbox_ws:"
BROADCAST_CHANNEL = f"{CHANNEL_PREFIX}all"


class ConnectionManager:
    """
    Manages WebSocket connections with Redis pub/sub for horizontal scaling.

    Local connection pool: connection_id -> WebSocket
    Room membership: room -> set[connection_id]
    """

    def __init__(self, redis_url: str | None = None) -> None:
        self._redis_url = redis_url or settings.redis_url
        self._connections: dict[str, WebSocket] = {}
        self._rooms: dict[str, set[str]] = {}
        self._redis_client: Any | None = None
        self._pubsub: Any | None = None
        self._listener_task: asyncio.Task | None = None
        self._heartbeat_tasks: dict[str, asyncio.Task] = {}
        self._running = False
        self.loop: asyncio.AbstractEventLoop | None = None

    async def connect(self) -> None:
        """Bind to the running loop, then try Redis; local dispatch is used without it."""
        self.loop = asyncio.get_running_loop()
        try:
            import redis.asyncio as aioredis

            self._redis_client = aioredis.from_url(self._redis_url, decode_responses=True)
            self._pubsub = self._redis_client.pubsub()
            await self._pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
            self._running = True
            self._listener_task = asyncio.create_task(self._redis_listener())
            logger.info("websocket_manager_connected redis=%s", self._redis_url)
        except Exception as exc:
            self._redis_client = None
            self._pubsub = None
            logger.warning("websocket_manager_redis_failed error=%s", exc)

    async def disconnect(self) -> None:
        """Cleanup Redis connection and stop listener."""
        self._running = False
        if self._listener_task:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
        if self._pubsub:
            await self._pubsub.punsubscribe()
            await self._pubsub.close()
        if self._redis_client:
            await self._redis_client.close()
        self._redis_client = None
        self._pubsub = None
        logger.info("websocket_manager_disconnected")

    async def _redis_listener(self) -> None:
        try:
            if not self._pubsub:
                return
            pubsub = self._pubsub
            while self._running:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message["type"] == "pmessage":
                    await self._handle_redis_message(message["channel"], message["data"])
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.error("websocket_redis_listener_error error=%s", exc)

    async def _handle_redis_message(self, channel: str, data: str) -> None:
        try:
            payload = json.loads(data)
            event_data = payload.get("event")
            if not event_data:
                return
            if payload.get("connection_id"):
                await self._dispatch_to_connection(payload["connection_id"], event_data)
            elif payload.get("room"):
                await self._dispatch_to_room(payload["room"], event_data)
            elif payload.get("all"):
                await self._dispatch_to_all(event_data)
        except Exception as exc:
            logger.warning("websocket_redis_message_error channel=%s error=%s", channel, exc)

    async def _publish(self, channel: str, payload: dict) -> bool:
        # The Redis listener delivers locally too, so callers must not dispatch twice.
        if not self._redis_client:
            return False
        try:
            await self._redis_client.publish(channel, json.dumps(payload))
            return True
        except Exception as exc:
            logger.warning("websocket_broadcast_redis_error error=%s", exc)
            return False

    async def register_connection(self, connection_id: str, websocket: WebSocket) -> None:
        """Register a new connection and send the acknowledgement."""
        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        self._connections[connection_id] = websocket
        logger.debug("websocket_registered connection_id=%s", connection_id)

        ack_event = WebSocketEvent(
            event=EventType.CONNECTION_ACK,
            data={"connection_id": connection_id, "status": "connected"},
        )
        await websocket.send_json(ack_event.model_dump(mode="json"))
        self._start_heartbeat(connection_id, websocket)

    async def unregister_connection(self, connection_id: str) -> None:
        await self._remove_connection(connection_id)

    async def _remove_connection(self, connection_id: str) -> None:
        self._stop_heartbeat(connection_id)
        self._connections.pop(connection_id, None)
        for room in list(self._rooms.keys()):
            self._rooms[room].discard(connection_id)
            if not self._rooms[room]:
                del self._rooms[room]
        logger.debug("websocket_unregistered connection_id=%s", connection_id)

    def _start_heartbeat(self, connection_id: str, websocket: WebSocket) -> None:
        if connection_id in self._heartbeat_tasks:
            return
        self._heartbeat_tasks[connection_id] = asyncio.create_task(self._heartbeat_loop(connection_id, websocket))

    def _stop_heartbeat(self, connection_id: str) -> None:
        task = self._heartbeat_tasks.pop(connection_id, None)
        if task:
            task.cancel()

    async def _heartbeat_loop(self, connection_id: str, websocket: WebSocket) -> None:
        try:
            while websocket.client_state == WebSocketState.CONNECTED:
                await asyncio.sleep(25)
                await self.send_heartbeat(connection_id, websocket)
        except asyncio.CancelledError:
            pass

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    async def join_room(self, connection_id: str, room: str) -> None:
        self._rooms.setdefault(room, set()).add(connection_id)
        logger.debug("websocket_joined connection_id=%s room=%s", connection_id, room)

    async def leave_room(self, connection_id: str, room: str) -> None:
        if room in self._rooms:
            self._rooms[room].discard(connection_id)
            if not self._rooms[room]:
                del self._rooms[room]

    def room_members(self, room: str) -> set[str]:
        return set(self._rooms.get(room, set()))

    async def broadcast_to_room(self, room: str, event: WebSocketEvent) -> None:
        event_data = event.model_dump(mode="json")
        if await self._publish(f"{CHANNEL_PREFIX}{room}", {"room": room, "event": event_data}):
            return
        await self._dispatch_to_room(room, event_data)

    async def send_to_connection(self, connection_id: str, event: WebSocketEvent) -> None:
        event_data = event.model_dump(mode="json")
        if await self._publish(
            f"{CHANNEL_PREFIX}conn:{connection_id}",
            {"connection_id": connection_id, "event": event_data},
        ):
            return
        await self._dispatch_to_connection(connection_id, event_data)

    async def broadcast_all(self, event: WebSocketEvent) -> None:
        event_data = event.model_dump(mode="json")
        if await self._publish(BROADCAST_CHANNEL, {"all": True, "event": event_data}):
            return
        await self._dispatch_to_all(event_data)

    async def _send(self, connection_id: str, event_data: dict) -> None:
        ws = self._connections.get(connection_id)
        if ws is None:
            return
        try:
            if ws.client_state == WebSocketState.CONNECTED:
                await ws.send_json(event_data)
        except Exception:
            await self._remove_connection(connection_id)

    async def _dispatch_to_room(self, room: str, event_data: dict) -> None:
        for connection_id in list(self._rooms.get(room, set())):
            await self._send(connection_id, event_data)

    async def _dispatch_to_connection(self, connection_id: str, event_data: dict) -> None:
        await self._send(connection_id, event_data)

    async def _dispatch_to_all(self, event_data: dict) -> None:
        for connection_id in list(self._connections.keys()):
            await self._send(connection_id, event_data)

    async def send_heartbeat(self, connection_id: str, websocket: WebSocket) -> None:
        heartbeat = WebSocketEvent(event=EventType.HEARTBEAT, data={"status": "ok"})
        try:
            await websocket.send_json(heartbeat.model_dump(mode="json"))
        except Exception:
            await self._remove_connection(connection_id)


# Singleton instance
_manager: ConnectionManager | None = None


def get_connection_manager() -> ConnectionManager:
    """Get the singleton ConnectionManager instance."""
    global _manager
    if _manager is None:
        _manager = ConnectionManager()
    return _manager
