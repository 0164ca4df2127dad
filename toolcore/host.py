"""
toolcore.host - Tool Host

Composition root that wires the connection registry, tool catalog,
connection supervisor, execution event bus and execution coordinator
together. Each ToolHost owns an independent set of components, so tests
and embedding applications can run several side by side.

Example:
    >>> async with ToolHost(settings, config_provider=ServerConfigProvider(path)) as host:
    ...     tools = host.catalog.get_all_tools()
    ...     outcome = await host.coordinator.execute_tool_with_feedback(call, "session-1")
"""

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from toolcore.config import ServerConfigProvider
from toolcore.connections import (
    ConnectionRegistry,
    ConnectionSupervisor,
    ServerConfig,
    TransportFactory,
)
from toolcore.execution import ExecutionCoordinator, ExecutionEventBus
from toolcore.settings import ToolcoreSettings, get_settings
from toolcore.tools import ToolCatalog

logger = logging.getLogger(__name__)


class ToolHost:
    """
    Owns one complete tool connection and execution stack.

    Attributes:
        registry: Connection records keyed by server id
        catalog: Namespaced tool descriptors
        supervisor: Connection lifecycle and health monitoring
        events: Execution notifications
        coordinator: Tool execution entry point
    """

    def __init__(
        self,
        settings: ToolcoreSettings | None = None,
        transport_factory: TransportFactory | None = None,
        config_provider: ServerConfigProvider | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.config_provider = config_provider

        options = self.settings.build_supervisor_options()
        self.registry = ConnectionRegistry()
        self.catalog = ToolCatalog(self.registry, cache_ttl_ms=options.tool_cache_ttl_ms)
        self.supervisor = ConnectionSupervisor(
            self.registry,
            self.catalog,
            transport_factory=transport_factory,
            options=options,
        )
        self.events = ExecutionEventBus()
        self.coordinator = ExecutionCoordinator(
            self.catalog,
            self.supervisor,
            config=self.settings.build_execution_config(),
            events=self.events,
        )

        self._unsubscribe: Callable[[], None] | None = None
        self._started_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._started_at is not None

    async def start(self, configs: Iterable[ServerConfig] | None = None) -> None:
        """
        Connect to the configured servers and start background monitoring.

        Args:
            configs: Explicit server configs; when None they are read from
                the config provider (if any)
        """
        if self.is_running:
            return

        if configs is None and self.config_provider is not None:
            configs = self.config_provider.get_server_configs()

        server_configs = list(configs or [])
        logger.info(
            f"Starting tool host with {len(server_configs)} server configs",
            extra={"servers": [c.id for c in server_configs]},
        )
        await self.supervisor.initialize(server_configs)

        if self.config_provider is not None:
            self._unsubscribe = self.config_provider.subscribe(self.supervisor.update_server_configs)
            self.config_provider.start_watching()

        self._started_at = datetime.now(UTC)

    async def shutdown(self) -> None:
        if not self.is_running:
            return

        logger.info("Shutting down tool host")
        if self.config_provider is not None:
            await self.config_provider.stop_watching()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        await self.supervisor.shutdown()
        self._started_at = None

    def health_report(self) -> dict[str, Any]:
        """JSON-ready summary of connection and execution state."""
        statuses = self.supervisor.get_connection_statuses()
        uptime = 0.0
        if self._started_at is not None:
            uptime = (datetime.now(UTC) - self._started_at).total_seconds()

        return {
            "status": "ok" if self.is_running else "stopped",
            "uptime_seconds": round(uptime, 1),
            "connections": {
                server_id: status.model_dump(mode="json") for server_id, status in statuses.items()
            },
            "active_executions": self.coordinator.active_count,
            "tool_count": len(self.catalog.get_all_tools()),
        }

    async def __aenter__(self) -> "ToolHost":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()
