"""
toolcore.execution.models - Execution Data Models

Tool calls, execution records, progress/status notifications and the
coordinator's configuration.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(UTC)


class ToolCall(BaseModel):
    """
    A request to invoke one namespaced tool.

    Example:
        >>> call = ToolCall(
        ...     id="call_abc123",
        ...     name="filesystem.read_file",
        ...     arguments='{"path": "/tmp/notes.txt"}',
        ... )
    """

    id: str = Field(..., description="Caller-assigned tool call id")
    name: str = Field(..., description="Namespaced tool name ('server.tool')")
    arguments: str | dict[str, Any] = Field(
        default="{}", description="JSON object string, or an already parsed object"
    )
    server_id: str | None = Field(default=None, description="Optional explicit server id")


class ExecutionStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class ExecutionStage(StrEnum):
    VALIDATING = "validating"
    CONNECTING = "connecting"
    EXECUTING = "executing"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ExecutionProgress(BaseModel):
    """One staged progress event."""

    stage: ExecutionStage
    message: str
    progress: int = Field(..., ge=0, le=100, description="Percent complete")
    timestamp: datetime = Field(default_factory=_now)


class ExecutionStatusUpdate(BaseModel):
    """Non-terminal status notice (slow execution warning, cancellation)."""

    stage: ExecutionStage
    message: str
    timestamp: datetime = Field(default_factory=_now)


class ExecutionEventType(StrEnum):
    PROGRESS = "execution_progress"
    STATUS = "execution_status"
    ERROR = "execution_error"
    COMPLETED = "execution_completed"


class ExecutionUpdate(BaseModel):
    """Notification published to ExecutionEventBus subscribers."""

    type: ExecutionEventType
    tool_call_id: str
    session_id: str
    timestamp: datetime = Field(default_factory=_now)
    payload: dict[str, Any] = Field(default_factory=dict)


class ExecutionMetadata(BaseModel):
    retry_count: int = Field(default=0, ge=0)
    timeout_duration_ms: int = Field(..., gt=0)


class ExecutionRecord(BaseModel):
    """
    Audit entry for one tool invocation attempt.

    status stays None while the execution is in flight and is set exactly
    once by finalize().
    """

    id: str
    tool_call_id: str
    session_id: str
    tool_name: str
    server_id: str | None = None
    status: ExecutionStatus | None = None
    start_time: datetime = Field(default_factory=_now)
    end_time: datetime | None = None
    execution_time_ms: int | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    result: Any | None = None
    error: str | None = None
    progress: list[ExecutionProgress] = Field(default_factory=list)
    metadata: ExecutionMetadata

    @property
    def is_finalized(self) -> bool:
        return self.status is not None

    def finalize(
        self,
        status: ExecutionStatus,
        *,
        result: Any | None = None,
        error: str | None = None,
        end_time: datetime | None = None,
    ) -> None:
        """Set the terminal status and timing fields.

        Raises:
            RuntimeError: If the record was already finalized
        """
        if self.is_finalized:
            raise RuntimeError(f"Execution record {self.id} already finalized as {self.status}")

        self.end_time = end_time or _now()
        self.execution_time_ms = int((self.end_time - self.start_time).total_seconds() * 1000)
        self.result = result
        self.error = error
        self.status = status


class ExecutionOutcome(BaseModel):
    """Structured result returned by execute_tool_with_feedback()."""

    result: Any | None = None
    execution_time_ms: int = 0
    history_entry: ExecutionRecord
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.history_entry.status is ExecutionStatus.SUCCESS


class ActiveExecution(BaseModel):
    """Snapshot of an in-flight execution."""

    execution_id: str
    tool_call_id: str
    session_id: str
    tool_name: str
    start_time: datetime
    timeout_ms: int
    elapsed_ms: int
    stage: ExecutionStage | None = None
    cancel_requested: bool = False


class ExecutionStats(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    timeout: int = 0
    cancelled: int = 0
    average_execution_time_ms: int = 0
    tool_breakdown: dict[str, int] = Field(default_factory=dict)


class TimeoutConfig(BaseModel):
    """Timeout policy: per-tool override, else default, never above max_timeout_ms."""

    default_ms: int = Field(default=30000, gt=0)
    per_tool_ms: dict[str, int] = Field(
        default_factory=lambda: {
            "file-system.read_file": 10000,
            "file-system.write_file": 15000,
            "web-search.search": 20000,
            "code-execution.run": 60000,
        }
    )
    max_timeout_ms: int = Field(default=300000, gt=0)
    warning_threshold_ms: int = Field(default=10000, gt=0)

    def resolve(self, tool_name: str) -> int:
        timeout = self.per_tool_ms.get(tool_name, self.default_ms)
        return min(timeout, self.max_timeout_ms)


class ExecutionConfig(BaseModel):
    """Configuration for the ExecutionCoordinator."""

    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    max_concurrent_executions: int = Field(default=5, gt=0)
    enable_progress_tracking: bool = True
    enable_history_logging: bool = True
    history_capacity: int = Field(default=1000, gt=0)
    stage_pause_ms: int = Field(default=0, ge=0, description="Pause between pipeline stages")
