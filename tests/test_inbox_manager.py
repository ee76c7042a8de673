import pytest
import pytest_asyncio
from starlette.websockets import WebSocketState

from app.websocket.events import EventType, WebSocketEvent
from app.websocket.manager import ConnectionManager


class FakeWebSocket:
    def __init__(self, fail=False):
        self.client_state = WebSocketState.CONNECTED
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self):
        return [item["event"] for item in self.sent]


@pytest_asyncio.fixture
async def manager():
    manager = ConnectionManager(redis_url="redis://unused")
    yield manager
    for connection_id in list(manager._connections):
        await manager.unregister_connection(connection_id)


@pytest.mark.asyncio
async def test_register_sends_ack(manager):
    websocket = FakeWebSocket()

    await manager.register_connection("c1", websocket)

    assert manager.is_connected("c1")
    assert websocket.sent[0]["event"] == "connection:ack"
    assert websocket.sent[0]["data"] == {"connection_id": "c1", "status": "connected"}


@pytest.mark.asyncio
async def test_room_broadcast_reaches_members_only(manager):
    member, outsider = FakeWebSocket(), FakeWebSocket()
    await manager.register_connection("c1", member)
    await manager.register_connection("c2", outsider)
    await manager.join_room("c1", "conv:5")

    await manager.broadcast_to_room("conv:5", WebSocketEvent(event=EventType.CONVERSATION_MESSAGE, data={"id": 1}))

    assert member.events() == ["connection:ack", "conversation:message"]
    assert outsider.events() == ["connection:ack"]


@pytest.mark.asyncio
async def test_broadcast_all_and_direct_send(manager):
    first, second = FakeWebSocket(), FakeWebSocket()
    await manager.register_connection("c1", first)
    await manager.register_connection("c2", second)

    await manager.broadcast_all(WebSocketEvent(event=EventType.INBOX_UPDATE, data={"conversationId": 1}))
    await manager.send_to_connection("c2", WebSocketEvent(event=EventType.CONVERSATION_ASSIGNED, data={"id": 1}))

    assert first.events() == ["connection:ack", "inbox:update"]
    assert second.events() == ["connection:ack", "inbox:update", "conversation:assigned"]


@pytest.mark.asyncio
async def test_leave_room_and_unregister(manager):
    websocket = FakeWebSocket()
    await manager.register_connection("c1", websocket)
    await manager.join_room("c1", "conv:1")
    await manager.join_room("c1", "conv:2")

    await manager.leave_room("c1", "conv:1")
    assert manager.room_members("conv:1") == set()
    assert manager.room_members("conv:2") == {"c1"}

    await manager.unregister_connection("c1")
    assert not manager.is_connected("c1")
    assert manager.room_members("conv:2") == set()


@pytest.mark.asyncio
async def test_failed_send_drops_connection(manager):
    healthy = FakeWebSocket()
    await manager.register_connection("c1", healthy)
    broken = FakeWebSocket()
    await manager.register_connection("c2", broken)
    broken.fail = True

    await manager.broadcast_all(WebSocketEvent(event=EventType.CHAT_MESSAGE, data={"content": "hi"}))

    assert manager.is_connected("c1")
    assert not manager.is_connected("c2")
