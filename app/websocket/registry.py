"""In-memory agent <-> live connection registry."""

from __future__ import annotations

from threading import Lock


class ConnectionRegistry:
    """Maps agent ids to connection ids and back.

    Registered on ``agent:register`` and cleared when the connection closes.
    Storage keeps its own copy in ``Agent.socket_id``; this map is the
    process-local view used to route events.
    """

    def __init__(self) -> None:
        self._agent_connections: dict[int, str] = {}
        self._connection_agents: dict[str, int] = {}
        self._lock = Lock()

    def register(self, agent_id: int, connection_id: str) -> None:
        with self._lock:
            previous = self._agent_connections.get(agent_id)
            if previous and previous != connection_id:
                self._connection_agents.pop(previous, None)
            self._agent_connections[agent_id] = connection_id
            self._connection_agents[connection_id] = agent_id

    def clear(self, connection_id: str) -> int | None:
        with self._lock:
            agent_id = self._connection_agents.pop(connection_id, None)
            if agent_id is not None and self._agent_connections.get(agent_id) == connection_id:
                del self._agent_connections[agent_id]
            return agent_id

    def connection_for(self, agent_id: int) -> str | None:
        with self._lock:
            return self._agent_connections.get(agent_id)

    def agent_for(self, connection_id: str) -> int | None:
        with self._lock:
            return self._connection_agents.get(connection_id)

    def __len__(self) -> int:
        return len(self._agent_connections)
