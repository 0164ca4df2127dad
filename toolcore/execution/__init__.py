"""
toolcore.execution - Tool Execution

Architecture:
- models.py: ToolCall, ExecutionRecord, progress/status models, ExecutionConfig
- events.py: ExecutionEventBus (progress/status/error/completed notifications)
- history.py: ExecutionHistory (bounded ledger, per-session stats)
- coordinator.py: ExecutionCoordinator (staged pipeline, timeouts, cancellation)
"""

from .coordinator import ExecutionCoordinator, parse_tool_arguments, validate_tool_arguments
from .events import ExecutionEventBus, ExecutionListener
from .history import ExecutionHistory
from .models import (
    ActiveExecution,
    ExecutionConfig,
    ExecutionEventType,
    ExecutionMetadata,
    ExecutionOutcome,
    ExecutionProgress,
    ExecutionRecord,
    ExecutionStage,
    ExecutionStats,
    ExecutionStatus,
    ExecutionStatusUpdate,
    ExecutionUpdate,
    TimeoutConfig,
    ToolCall,
)

__all__ = [
    "ActiveExecution",
    "ExecutionConfig",
    "ExecutionCoordinator",
    "ExecutionEventBus",
    "ExecutionEventType",
    "ExecutionHistory",
    "ExecutionListener",
    "ExecutionMetadata",
    "ExecutionOutcome",
    "ExecutionProgress",
    "ExecutionRecord",
    "ExecutionStage",
    "ExecutionStats",
    "ExecutionStatus",
    "ExecutionStatusUpdate",
    "ExecutionUpdate",
    "TimeoutConfig",
    "ToolCall",
    "parse_tool_arguments",
    "validate_tool_arguments",
]
