"""
toolcore.connections - Provider Connection Supervision

Architecture:
- models.py: ServerConfig, Connection, ConnectionStatus, ServerHealthStatus
- registry.py: ConnectionRegistry (records keyed by server id)
- timers.py: DelayedTask / TimerRegistry (cancellable delayed callbacks)
- transport.py: ProviderTransport protocol and the MCP stdio adapter
- supervisor.py: ConnectionSupervisor (lifecycle, backoff, health checks)
"""

from .models import (
    Connection,
    ConnectionStatus,
    HealthState,
    ServerConfig,
    ServerHealthStatus,
    SupervisorOptions,
)
from .registry import ConnectionRegistry
from .supervisor import ConnectionSupervisor, compute_backoff_delay
from .timers import DelayedTask, TimerRegistry
from .transport import (
    ProviderTransport,
    RawTool,
    StdioMCPTransport,
    TransportFactory,
    default_transport_factory,
)

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "ConnectionStatus",
    "ConnectionSupervisor",
    "DelayedTask",
    "HealthState",
    "ProviderTransport",
    "RawTool",
    "ServerConfig",
    "ServerHealthStatus",
    "StdioMCPTransport",
    "SupervisorOptions",
    "TimerRegistry",
    "TransportFactory",
    "compute_backoff_delay",
    "default_transport_factory",
]
