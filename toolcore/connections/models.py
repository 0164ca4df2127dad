"""
toolcore.connections.models - Connection Data Model

Launch configuration, supervised connection records and health snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator

if TYPE_CHECKING:
    from toolcore.connections.transport import ProviderTransport
    from toolcore.tools.models import ToolDescriptor


class ConnectionStatus(StrEnum):
    """Lifecycle state of a supervised provider connection."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class HealthState(StrEnum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class ServerConfig(BaseModel):
    """
    Launch configuration for one tool provider process.

    Example:
        >>> config = ServerConfig(
        ...     id="filesystem",
        ...     command="npx",
        ...     args=["-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
        ... )
    """

    id: str = Field(..., description="Stable server id, used as the tool name prefix")
    command: str = Field(..., min_length=1, description="Executable to launch")
    args: list[str] = Field(default_factory=list, description="Command arguments")
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Environment variables merged over the parent environment",
    )
    enabled: bool = Field(default=True, description="Disabled configs are never connected")
    timeout_ms: int = Field(default=30000, gt=0, description="Per-connection timeout hint")
    max_concurrency: int = Field(default=5, gt=0, description="Concurrency hint")

    @field_validator("id")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        if not value:
            raise ValueError("server id must not be empty")
        if "." in value:
            raise ValueError(f"server id '{value}' must not contain '.'")
        return value

    def launch_differs(self, other: ServerConfig) -> bool:
        """Return True if any field that requires a reconnect differs."""
        return (
            self.command != other.command
            or self.args != other.args
            or self.env != other.env
            or self.enabled != other.enabled
            or self.timeout_ms != other.timeout_ms
            or self.max_concurrency != other.max_concurrency
        )


class SupervisorOptions(BaseModel):
    """Tuning knobs for the ConnectionSupervisor."""

    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay_ms: int = Field(default=2000, ge=0, description="Backoff base delay")
    connection_timeout_ms: int = Field(default=15000, gt=0)
    health_check_interval_ms: int = Field(default=30000, gt=0)
    tool_cache_ttl_ms: int = Field(default=60000, ge=0)


@dataclass
class Connection:
    """
    One supervised provider connection.

    Mutated in place by the ConnectionSupervisor. A fresh record replaces the
    previous one for the same id on every connect attempt, so an attempt can
    tell whether it has been superseded by comparing identity.
    """

    id: str
    config: ServerConfig
    status: ConnectionStatus = ConnectionStatus.CONNECTING
    transport: ProviderTransport | None = None
    tools: list[ToolDescriptor] = field(default_factory=list)
    reconnect_attempts: int = 0
    last_error: str | None = None
    last_reconnect_time: datetime | None = None
    last_health_check: datetime | None = None
    connection_start_time: datetime | None = None

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED

    def uptime_ms(self, now: datetime | None = None) -> int | None:
        if self.connection_start_time is None:
            return None
        now = now or datetime.now(UTC)
        return int((now - self.connection_start_time).total_seconds() * 1000)


class ServerHealthStatus(BaseModel):
    """Caller-facing health snapshot of one connection."""

    server_id: str
    status: HealthState
    connection_status: ConnectionStatus
    last_check: datetime | None = None
    error: str | None = None
    tool_count: int = 0
    uptime_ms: int | None = None
    reconnect_attempts: int = 0
