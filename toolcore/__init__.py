"""
toolcore - Tool Connection & Execution Core

Supervises long-lived connections to external tool provider processes
(MCP servers), exposes their tools under "server.tool" names and executes
tool calls with staged progress, timeouts, cancellation and an audit history.

Example:
    >>> from toolcore import ServerConfig, ToolCall, ToolHost
    >>> async with ToolHost() as host:
    ...     await host.supervisor.connect(
    ...         ServerConfig(id="filesystem", command="npx",
    ...                      args=["-y", "@modelcontextprotocol/server-filesystem", "/tmp"])
    ...     )
    ...     outcome = await host.coordinator.execute_tool_with_feedback(
    ...         ToolCall(id="call_1", name="filesystem.list_directory",
    ...                  arguments='{"path": "/tmp"}'),
    ...         session_id="session-1",
    ...     )

Architecture:
    - connections: config/records, timers, transport adapter, ConnectionSupervisor
    - tools: ToolDescriptor, keyword classification, ToolCatalog
    - execution: ToolCall, ExecutionRecord, event bus, history, ExecutionCoordinator
    - config: JSON server config provider with change notification
    - host: ToolHost composition root
    - runner / cli: process entry point with health endpoint, operator CLI
"""

__version__ = "0.1.0"

from toolcore.config import ServerConfigProvider
from toolcore.connections import (
    Connection,
    ConnectionStatus,
    ConnectionSupervisor,
    ServerConfig,
    SupervisorOptions,
)
from toolcore.execution import (
    ExecutionConfig,
    ExecutionCoordinator,
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionStatus,
    ToolCall,
)
from toolcore.host import ToolHost
from toolcore.tools import ToolCatalog, ToolDescriptor

__all__ = [
    "Connection",
    "ConnectionStatus",
    "ConnectionSupervisor",
    "ExecutionConfig",
    "ExecutionCoordinator",
    "ExecutionOutcome",
    "ExecutionRecord",
    "ExecutionStatus",
    "ServerConfig",
    "ServerConfigProvider",
    "SupervisorOptions",
    "ToolCall",
    "ToolCatalog",
    "ToolDescriptor",
    "ToolHost",
    "__version__",
]
