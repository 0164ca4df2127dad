"""
toolcore.tools.catalog - Tool Catalog

Builds namespaced ToolDescriptors from each connection's raw capability
list and keeps a time-bounded cache per connection.

Tools appear as "{server_id}.{raw_name}". Server ids cannot contain ".",
so the first "." always separates the server id from the raw name.
"""

import logging
import time
from collections.abc import Callable, Iterable

from toolcore.connections.models import Connection
from toolcore.connections.registry import ConnectionRegistry
from toolcore.connections.transport import RawTool
from toolcore.exceptions import InvalidToolNameError, ServerNotConnectedError, UnknownServerError

from .classify import categorize_tool, is_dangerous_tool
from .models import NAMESPACE_SEPARATOR, ToolDescriptor, namespaced_name

logger = logging.getLogger(__name__)


class ToolCatalog:
    """
    Namespaced view over the tools of every connected server.

    Reads never trigger discovery; discover_tools() is called by the
    ConnectionSupervisor on connect and when a health check finds the
    cache expired.

    Example:
        >>> catalog = ToolCatalog(registry, cache_ttl_ms=60000)
        >>> tools = await catalog.discover_tools("github")
        >>> catalog.cache_tools("github", tools)
        >>> [t.name for t in catalog.get_server_tools("github")]
        ['github.create_issue', 'github.search_repositories']
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        cache_ttl_ms: int = 60000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self.cache_ttl_ms = cache_ttl_ms
        self._clock = clock
        # server_id -> (tools, cached_at)
        self._cache: dict[str, tuple[list[ToolDescriptor], float]] = {}

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def discover_tools(self, server_id: str) -> list[ToolDescriptor]:
        """Query the server's capability listing and build descriptors.

        Failures are logged and yield an empty list; the caller decides
        whether a failed listing also means a failed connection.
        """
        connection = self._registry.get(server_id)
        if connection is None or connection.transport is None:
            logger.warning(
                f"Cannot discover tools for {server_id}: no open transport",
                extra={"server_id": server_id},
            )
            return []

        try:
            raw_tools = await connection.transport.list_tools()
        except Exception as e:
            logger.warning(
                f"Failed to discover tools from {server_id}: {e}",
                exc_info=True,
                extra={"server_id": server_id},
            )
            return []

        tools = self.build_descriptors(server_id, raw_tools)
        logger.info(
            f"Discovered {len(tools)} tools from {server_id}",
            extra={"server_id": server_id, "tools": [t.name for t in tools]},
        )
        return tools

    def build_descriptors(self, server_id: str, raw_tools: Iterable[RawTool]) -> list[ToolDescriptor]:
        """Map raw provider tools to descriptors, dropping nameless and duplicate entries."""
        tools: list[ToolDescriptor] = []
        seen: set[str] = set()

        for raw in raw_tools:
            if not raw.name:
                logger.warning(
                    f"Skipping unnamed tool from {server_id}", extra={"server_id": server_id}
                )
                continue
            if raw.name in seen:
                logger.warning(
                    f"Duplicate tool '{raw.name}' from {server_id}, keeping first",
                    extra={"server_id": server_id, "tool_name": raw.name},
                )
                continue
            seen.add(raw.name)

            tools.append(
                ToolDescriptor(
                    name=namespaced_name(server_id, raw.name),
                    raw_name=raw.name,
                    server_id=server_id,
                    description=raw.description,
                    input_schema=raw.input_schema,
                    category=categorize_tool(raw.name, raw.description),
                    dangerous=is_dangerous_tool(raw.name, raw.description),
                    requires_confirmation=True,
                )
            )

        return tools

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def cache_tools(self, server_id: str, tools: list[ToolDescriptor]) -> None:
        self._cache[server_id] = (list(tools), self._clock())

    def invalidate(self, server_id: str) -> None:
        self._cache.pop(server_id, None)

    def clear(self) -> None:
        self._cache.clear()

    def is_cache_valid(self, server_id: str) -> bool:
        entry = self._cache.get(server_id)
        if entry is None:
            return False
        age_ms = (self._clock() - entry[1]) * 1000
        return age_ms < self.cache_ttl_ms

    def _tools_for(self, connection: Connection) -> list[ToolDescriptor]:
        if self.is_cache_valid(connection.id):
            return list(self._cache[connection.id][0])
        return list(connection.tools)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_all_tools(self) -> list[ToolDescriptor]:
        """Tools of every connected server."""
        tools: list[ToolDescriptor] = []
        seen: set[str] = set()
        for connection in self._registry:
            if not connection.is_connected:
                continue
            for tool in self._tools_for(connection):
                if tool.name not in seen:
                    seen.add(tool.name)
                    tools.append(tool)
        return tools

    def get_server_tools(self, server_id: str) -> list[ToolDescriptor]:
        connection = self._registry.get(server_id)
        if connection is None or not connection.is_connected:
            return []
        return self._tools_for(connection)

    def get_tool(self, name: str) -> ToolDescriptor | None:
        try:
            server_id, _raw_name = self.parse_tool_name(name)
        except InvalidToolNameError:
            return None
        for tool in self.get_server_tools(server_id):
            if tool.name == name:
                return tool
        return None

    # ------------------------------------------------------------------
    # Name resolution
    # ------------------------------------------------------------------

    @staticmethod
    def parse_tool_name(name: str) -> tuple[str, str]:
        """Split "server.tool" on the first "." into (server_id, raw_name).

        Raises:
            InvalidToolNameError: If either part is missing
        """
        server_id, separator, raw_name = name.partition(NAMESPACE_SEPARATOR)
        if not separator or not server_id or not raw_name:
            raise InvalidToolNameError(name)
        return server_id, raw_name

    def resolve(self, name: str) -> tuple[Connection, str]:
        """Find the connected server that owns a namespaced tool.

        Raises:
            InvalidToolNameError: If the name has no server prefix
            UnknownServerError: If no connection exists for the prefix
            ServerNotConnectedError: If the connection is not connected
        """
        server_id, raw_name = self.parse_tool_name(name)
        connection = self._registry.get(server_id)
        if connection is None:
            raise UnknownServerError(server_id)
        if not connection.is_connected or connection.transport is None:
            raise ServerNotConnectedError(server_id, connection.status.value)
        return connection, raw_name
