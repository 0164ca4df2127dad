"""
toolcore.connections.registry - Connection Registry

In-memory table of Connection records keyed by server id.
"""

import logging
from collections.abc import Iterator

from .models import Connection, ConnectionStatus

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Registry of supervised connections.

    Pure data + accessors; the ConnectionSupervisor owns every state transition.
    All methods are synchronous so each mutation completes without suspending.

    Example:
        >>> registry = ConnectionRegistry()
        >>> registry.put(Connection(id="github", config=config))
        >>> registry.get("github").status
        <ConnectionStatus.CONNECTING: 'connecting'>
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    def get(self, server_id: str) -> Connection | None:
        return self._connections.get(server_id)

    def put(self, connection: Connection) -> None:
        """Insert or replace the record for connection.id."""
        self._connections[connection.id] = connection

    def remove(self, server_id: str) -> Connection | None:
        connection = self._connections.pop(server_id, None)
        if connection is not None:
            logger.debug(f"Removed connection record: {server_id}", extra={"server_id": server_id})
        return connection

    def is_current(self, connection: Connection) -> bool:
        """Return True if connection is still the live record for its id."""
        return self._connections.get(connection.id) is connection

    def ids(self) -> list[str]:
        return list(self._connections.keys())

    def all(self) -> list[Connection]:
        return list(self._connections.values())

    def with_status(self, status: ConnectionStatus) -> list[Connection]:
        return [c for c in self._connections.values() if c.status is status]

    def clear(self) -> None:
        self._connections.clear()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, server_id: str) -> bool:
        return server_id in self._connections

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))
