"""
Shared fixtures: in-memory tool provider transports and small-delay
supervisor/catalog/coordinator stacks. No subprocesses are spawned.
"""

import asyncio
from typing import Any

import pytest

from toolcore.connections import (
    ConnectionRegistry,
    ConnectionSupervisor,
    RawTool,
    ServerConfig,
    SupervisorOptions,
)
from toolcore.execution import ExecutionConfig, ExecutionCoordinator, TimeoutConfig
from toolcore.tools import ToolCatalog

DEFAULT_TOOLS = [
    RawTool(name="read_file", description="Read a file from disk", input_schema={"type": "object"}),
    RawTool(name="search", description="Search documents", input_schema={"type": "object"}),
    RawTool(name="echo", description="Echo the arguments back"),
]


class FakeTransport:
    """Scriptable ProviderTransport double."""

    def __init__(
        self,
        config: ServerConfig,
        tools: list[RawTool] | None = None,
        hang_on_connect: bool = False,
        connect_delay: float = 0.0,
        connect_error: BaseException | None = None,
        list_error: BaseException | None = None,
        call_delay: float = 0.0,
        call_error: BaseException | None = None,
        result: Any = None,
        close_delay: float = 0.0,
    ) -> None:
        self.config = config
        self.tools = list(DEFAULT_TOOLS if tools is None else tools)
        self.hang_on_connect = hang_on_connect
        self.connect_delay = connect_delay
        self.connect_error = connect_error
        self.list_error = list_error
        self.call_delay = call_delay
        self.call_error = call_error
        self.result = result
        self.close_delay = close_delay
        self.connected = False
        self.closed = False
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.call_cancelled = False

    async def connect(self) -> None:
        if self.hang_on_connect:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                # Slow process teardown, like a real stdio provider
                await asyncio.sleep(self.close_delay)
                raise
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def close(self) -> None:
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        self.closed = True
        self.connected = False

    async def list_tools(self) -> list[RawTool]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.tools)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        self.calls.append((name, arguments))
        try:
            if self.call_delay:
                await asyncio.sleep(self.call_delay)
        except asyncio.CancelledError:
            self.call_cancelled = True
            raise
        if self.call_error is not None:
            raise self.call_error
        if self.result is not None:
            return self.result
        return {"tool": name, "arguments": arguments}


class FakeTransportFactory:
    """TransportFactory that builds FakeTransports from per-server specs."""

    def __init__(self) -> None:
        self.specs: dict[str, dict[str, Any]] = {}
        self.created: list[FakeTransport] = []

    def configure(self, server_id: str, **spec: Any) -> None:
        self.specs[server_id] = spec

    def __call__(self, config: ServerConfig) -> FakeTransport:
        transport = FakeTransport(config, **self.specs.get(config.id, {}))
        self.created.append(transport)
        return transport

    def created_for(self, server_id: str) -> list[FakeTransport]:
        return [t for t in self.created if t.config.id == server_id]

    def latest(self, server_id: str) -> FakeTransport:
        return self.created_for(server_id)[-1]


def _make_config(server_id: str = "files", **overrides: Any) -> ServerConfig:
    fields: dict[str, Any] = {"command": "fake-server", "args": [server_id], **overrides}
    return ServerConfig(id=server_id, **fields)


@pytest.fixture
def make_config():
    return _make_config


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture
def options():
    return SupervisorOptions(
        max_reconnect_attempts=2,
        reconnect_delay_ms=20,
        connection_timeout_ms=100,
        health_check_interval_ms=1000,
        tool_cache_ttl_ms=60000,
    )


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def catalog(registry):
    return ToolCatalog(registry, cache_ttl_ms=60000)


@pytest.fixture
async def supervisor(registry, catalog, transport_factory, options):
    supervisor = ConnectionSupervisor(
        registry, catalog, transport_factory=transport_factory, options=options
    )
    yield supervisor
    await supervisor.shutdown()


@pytest.fixture
def execution_config():
    return ExecutionConfig(
        timeouts=TimeoutConfig(
            default_ms=1000,
            per_tool_ms={},
            max_timeout_ms=5000,
            warning_threshold_ms=2000,
        ),
        max_concurrent_executions=5,
    )


@pytest.fixture
def coordinator(catalog, supervisor, execution_config):
    return ExecutionCoordinator(catalog, supervisor, config=execution_config)
