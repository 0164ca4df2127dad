"""
toolcore.execution.coordinator - Tool Execution Coordinator

Runs one tool call through a staged pipeline with progress feedback:

    validating (10%) -> connecting (30%) -> executing (50%)
        -> processing (90%) -> completed (100%)

Every call is raced against its effective timeout and can be cancelled
cooperatively by tool call id. Whatever happens, exactly one finalized
ExecutionRecord is produced and (when history logging is enabled)
appended to the execution history.

Example:
    >>> coordinator = ExecutionCoordinator(catalog, supervisor, ExecutionConfig())
    >>> outcome = await coordinator.execute_tool_with_feedback(
    ...     ToolCall(id="call_1", name="filesystem.read_file", arguments='{"path": "/tmp/a"}'),
    ...     session_id="session-42",
    ... )
    >>> outcome.history_entry.status
    <ExecutionStatus.SUCCESS: 'success'>
"""

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from toolcore.connections.models import Connection, ServerConfig
from toolcore.connections.supervisor import ConnectionSupervisor
from toolcore.connections.timers import DelayedTask
from toolcore.exceptions import (
    ConcurrencyLimitError,
    ConfigurationError,
    ExecutionCancelledError,
    ExecutionTimeoutError,
    InvalidToolNameError,
    ToolExecutionError,
    ToolValidationError,
)
from toolcore.tools.catalog import ToolCatalog
from toolcore.tools.classify import required_arguments
from toolcore.tools.models import NAMESPACE_SEPARATOR

from .events import ExecutionEventBus
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
    ToolCall,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ExecutionProgress], None]
StatusCallback = Callable[[ExecutionStatusUpdate], None]

CANCELLED_BY_USER_MESSAGE = "Tool execution cancelled by user"


def parse_tool_arguments(arguments: str | dict[str, Any]) -> dict[str, Any]:
    """Decode a tool call's arguments into an object.

    Raises:
        ToolValidationError: If the text is not JSON or not a JSON object
    """
    if isinstance(arguments, dict):
        return dict(arguments)

    try:
        parsed = json.loads(arguments)
    except (json.JSONDecodeError, TypeError) as e:
        raise ToolValidationError(f"Invalid tool arguments JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise ToolValidationError("Tool arguments must be a valid object")
    return parsed


def validate_tool_arguments(tool_name: str, arguments: dict[str, Any]) -> None:
    """Check the name-inferred required arguments are present and non-empty.

    Raises:
        ToolValidationError: On the first missing argument
    """
    for keyword, argument in required_arguments(tool_name).items():
        if not arguments.get(argument):
            raise ToolValidationError(
                f'{keyword.capitalize()} operations require a "{argument}" parameter'
            )


def _consume_result(task: asyncio.Task) -> None:
    # Abandoned pipelines may still fail while unwinding; nobody awaits them.
    if not task.cancelled():
        task.exception()


@dataclass
class _ExecutionContext:
    """Mutable per-execution state shared by the pipeline and the coordinator."""

    execution_id: str
    tool_call: ToolCall
    session_id: str
    record: ExecutionRecord
    timeout_ms: int
    server_config: ServerConfig | None = None
    on_progress: ProgressCallback | None = None
    on_status: StatusCallback | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    started: float = field(default_factory=time.monotonic)
    stage: ExecutionStage | None = None
    finalized: bool = False

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise ExecutionCancelledError()

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class ExecutionCoordinator:
    """
    Staged tool execution with timeouts, cancellation, concurrency limits
    and an audit history.

    Features:
    - Hard cap on simultaneous executions (excess calls are rejected, not queued)
    - Effective timeout per tool: override, else default, never above the max
    - Slow-execution warning once the warning threshold elapses
    - Cooperative cancellation by tool call id
    - Progress and status notifications via callbacks and the event bus
    - Connection-class provider failures are reported to the supervisor

    Unlike ToolCatalog.resolve(), execute_tool_with_feedback() does not raise
    for per-call failures; they are captured in the returned outcome. The
    only exception raised before an execution starts is ConcurrencyLimitError.
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        supervisor: ConnectionSupervisor | None = None,
        config: ExecutionConfig | None = None,
        events: ExecutionEventBus | None = None,
    ) -> None:
        self._catalog = catalog
        self._supervisor = supervisor
        self.config = config or ExecutionConfig()
        self.events = events or ExecutionEventBus()
        self._history = ExecutionHistory(self.config.history_capacity)
        self._active: dict[str, _ExecutionContext] = {}

    @property
    def active_count(self) -> int:
        return len(self._active)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_tool_with_feedback(
        self,
        tool_call: ToolCall,
        session_id: str,
        server_config: ServerConfig | None = None,
        on_progress: ProgressCallback | None = None,
        on_status: StatusCallback | None = None,
    ) -> ExecutionOutcome:
        """
        Execute one tool call end to end.

        Args:
            tool_call: Namespaced tool call ("server.tool") with JSON arguments
            session_id: Session the execution is attributed to
            server_config: Optional config of the target server (used for
                messages and to refuse disabled servers)
            on_progress: Called with each stage's ExecutionProgress
            on_status: Called with non-terminal status notices

        Returns:
            ExecutionOutcome with the finalized history entry

        Raises:
            ConcurrencyLimitError: If max_concurrent_executions are in flight
        """
        limit = self.config.max_concurrent_executions
        if len(self._active) >= limit:
            logger.warning(
                f"Rejecting {tool_call.name}: {limit} executions already active",
                extra={"tool_call_id": tool_call.id, "session_id": session_id},
            )
            raise ConcurrencyLimitError(limit)

        context = self._create_context(tool_call, session_id, server_config, on_progress, on_status)
        self._active[context.execution_id] = context

        logger.info(
            f"Executing {tool_call.name} (timeout {context.timeout_ms}ms)",
            extra={
                "execution_id": context.execution_id,
                "tool_call_id": tool_call.id,
                "session_id": session_id,
            },
        )

        warning_ms = self.config.timeouts.warning_threshold_ms
        warning = None
        if context.timeout_ms > warning_ms:
            warning = DelayedTask(
                warning_ms,
                lambda: self._emit_status(
                    context,
                    ExecutionStage.EXECUTING,
                    f"Tool execution is taking longer than expected ({warning_ms}ms)",
                ),
                name=f"execution-warning:{context.execution_id}",
            )

        pipeline = asyncio.create_task(
            self._run_pipeline(context), name=f"execution:{context.execution_id}"
        )
        try:
            done, _ = await asyncio.wait({pipeline}, timeout=context.timeout_ms / 1000)
        except asyncio.CancelledError:
            # The caller itself was cancelled; record it and propagate.
            context.cancel_event.set()
            self._abandon(pipeline)
            self._finalize(context, ExecutionStatus.CANCELLED, error=str(ExecutionCancelledError()))
            raise
        finally:
            if warning is not None:
                warning.cancel()

        if pipeline not in done:
            context.cancel_event.set()
            self._abandon(pipeline)
            return self._finalize(
                context, ExecutionStatus.TIMEOUT, error=str(ExecutionTimeoutError(context.timeout_ms))
            )

        if pipeline.cancelled():
            return self._finalize(
                context, ExecutionStatus.CANCELLED, error=str(ExecutionCancelledError())
            )

        error = pipeline.exception()
        if error is None:
            if context.cancel_requested:
                # Cancellation landed after the last checkpoint; the result is discarded.
                return self._finalize(
                    context, ExecutionStatus.CANCELLED, error=str(ExecutionCancelledError())
                )
            return self._finalize(context, ExecutionStatus.SUCCESS, result=pipeline.result())

        if isinstance(error, ExecutionCancelledError):
            status = ExecutionStatus.CANCELLED
        elif isinstance(error, TimeoutError):
            status = ExecutionStatus.TIMEOUT
        else:
            status = ExecutionStatus.ERROR
        return self._finalize(context, status, error=str(error) or type(error).__name__)

    def _create_context(
        self,
        tool_call: ToolCall,
        session_id: str,
        server_config: ServerConfig | None,
        on_progress: ProgressCallback | None,
        on_status: StatusCallback | None,
    ) -> _ExecutionContext:
        timeout_ms = self.config.timeouts.resolve(tool_call.name)

        try:
            parameters = parse_tool_arguments(tool_call.arguments)
        except ToolValidationError:
            parameters = {}

        server_id = tool_call.server_id
        if server_id is None and NAMESPACE_SEPARATOR in tool_call.name:
            server_id = tool_call.name.split(NAMESPACE_SEPARATOR, 1)[0] or None

        execution_id = f"{tool_call.id}-{uuid.uuid4().hex[:8]}"
        record = ExecutionRecord(
            id=execution_id,
            tool_call_id=tool_call.id,
            session_id=session_id,
            tool_name=tool_call.name,
            server_id=server_id,
            parameters=parameters,
            metadata=ExecutionMetadata(timeout_duration_ms=timeout_ms),
        )
        return _ExecutionContext(
            execution_id=execution_id,
            tool_call=tool_call,
            session_id=session_id,
            record=record,
            timeout_ms=timeout_ms,
            server_config=server_config,
            on_progress=on_progress,
            on_status=on_status,
        )

    def _abandon(self, pipeline: asyncio.Task) -> None:
        pipeline.cancel()
        pipeline.add_done_callback(_consume_result)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run_pipeline(self, context: _ExecutionContext) -> Any:
        tool_call = context.tool_call

        self._emit_progress(context, ExecutionStage.VALIDATING, "Validating tool parameters...", 10)
        await self._pause(context)
        arguments = parse_tool_arguments(tool_call.arguments)
        try:
            _, raw_name = ToolCatalog.parse_tool_name(tool_call.name)
        except InvalidToolNameError:
            raw_name = tool_call.name
        validate_tool_arguments(raw_name, arguments)
        context.record.parameters = arguments

        server_label = context.server_config.id if context.server_config else context.record.server_id
        self._emit_progress(
            context, ExecutionStage.CONNECTING, f"Connecting to server: {server_label}", 30
        )
        await self._pause(context)
        if context.server_config is not None and not context.server_config.enabled:
            raise ConfigurationError(f"Server {context.server_config.id} is disabled")
        connection, raw_name = self._catalog.resolve(tool_call.name)
        context.record.server_id = connection.id

        self._emit_progress(context, ExecutionStage.EXECUTING, f"Executing tool: {tool_call.name}", 50)
        result = await self._invoke(context, connection, raw_name, arguments)

        self._emit_progress(context, ExecutionStage.PROCESSING, "Processing tool results...", 90)
        await self._pause(context)

        self._emit_progress(
            context, ExecutionStage.COMPLETED, "Tool execution completed successfully", 100
        )
        return result

    async def _pause(self, context: _ExecutionContext) -> None:
        await asyncio.sleep(self.config.stage_pause_ms / 1000)
        context.raise_if_cancelled()

    async def _invoke(
        self,
        context: _ExecutionContext,
        connection: Connection,
        raw_name: str,
        arguments: dict[str, Any],
    ) -> Any:
        """Call the provider, racing the call against the cancel signal."""
        context.raise_if_cancelled()
        transport = connection.transport
        if transport is None:
            raise ToolExecutionError(f"Server {connection.id} has no active transport")

        call = asyncio.create_task(transport.call_tool(raw_name, arguments))
        cancelled = asyncio.create_task(context.cancel_event.wait())
        try:
            done, _ = await asyncio.wait({call, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not call.done():
                call.cancel()
                call.add_done_callback(_consume_result)

        if call not in done:
            raise ExecutionCancelledError()

        try:
            return call.result()
        except asyncio.CancelledError:
            raise ExecutionCancelledError() from None
        except ToolExecutionError:
            # Reported by the provider itself; the connection is fine.
            raise
        except Exception as e:
            if self._supervisor is not None:
                self._supervisor.report_connection_failure(connection.id, e)
            raise

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _emit_progress(
        self, context: _ExecutionContext, stage: ExecutionStage, message: str, percent: int
    ) -> None:
        if context.finalized:
            return
        context.stage = stage
        if not self.config.enable_progress_tracking:
            return

        progress = ExecutionProgress(stage=stage, message=message, progress=percent)
        context.record.progress.append(progress)
        if context.on_progress is not None:
            try:
                context.on_progress(progress)
            except Exception:
                logger.error(
                    "Progress callback failed",
                    exc_info=True,
                    extra={"execution_id": context.execution_id},
                )
        self._publish(context, ExecutionEventType.PROGRESS, progress.model_dump(mode="json"))

    def _emit_status(self, context: _ExecutionContext, stage: ExecutionStage, message: str) -> None:
        if context.finalized:
            return

        update = ExecutionStatusUpdate(stage=stage, message=message)
        if context.on_status is not None:
            try:
                context.on_status(update)
            except Exception:
                logger.error(
                    "Status callback failed",
                    exc_info=True,
                    extra={"execution_id": context.execution_id},
                )
        self._publish(context, ExecutionEventType.STATUS, update.model_dump(mode="json"))

    def _publish(
        self, context: _ExecutionContext, event_type: ExecutionEventType, payload: dict[str, Any]
    ) -> None:
        self.events.publish(
            ExecutionUpdate(
                type=event_type,
                tool_call_id=context.tool_call.id,
                session_id=context.session_id,
                payload=payload,
            )
        )

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def _finalize(
        self,
        context: _ExecutionContext,
        status: ExecutionStatus,
        result: Any | None = None,
        error: str | None = None,
    ) -> ExecutionOutcome:
        record = context.record
        if not context.finalized:
            context.finalized = True
            record.finalize(status, result=result, error=error)
            self._active.pop(context.execution_id, None)

            if self.config.enable_history_logging:
                self._history.append(record)

            extra = {
                "execution_id": context.execution_id,
                "tool_call_id": record.tool_call_id,
                "session_id": record.session_id,
                "duration_ms": record.execution_time_ms,
            }
            if status is ExecutionStatus.SUCCESS:
                logger.info(f"Tool {record.tool_name} executed successfully", extra=extra)
            else:
                logger.warning(f"Tool {record.tool_name} finished with {status}: {error}", extra=extra)

            if status in (ExecutionStatus.ERROR, ExecutionStatus.TIMEOUT):
                self._publish(
                    context, ExecutionEventType.ERROR, {"status": status.value, "error": error}
                )
            self._publish(
                context,
                ExecutionEventType.COMPLETED,
                {
                    "execution_id": record.id,
                    "status": status.value,
                    "error": error,
                    "execution_time_ms": record.execution_time_ms,
                },
            )

        return ExecutionOutcome(
            result=record.result,
            execution_time_ms=record.execution_time_ms or 0,
            history_entry=record,
            error=record.error,
        )

    # ------------------------------------------------------------------
    # Control and queries
    # ------------------------------------------------------------------

    def cancel_execution(self, tool_call_id: str) -> bool:
        """Request cancellation of the active execution for tool_call_id.

        Returns:
            True if an active execution was found
        """
        context = next(
            (c for c in self._active.values() if c.tool_call.id == tool_call_id), None
        )
        if context is None:
            return False

        context.cancel_event.set()
        self._emit_status(context, ExecutionStage.CANCELLED, CANCELLED_BY_USER_MESSAGE)
        logger.info(
            f"Cancellation requested for {context.tool_call.name}",
            extra={"execution_id": context.execution_id, "tool_call_id": tool_call_id},
        )
        return True

    def get_active_executions(self) -> list[ActiveExecution]:
        return [self._snapshot(context) for context in self._active.values()]

    def get_execution_status(self, tool_call_id: str) -> ActiveExecution | ExecutionRecord | None:
        """Active snapshot if in flight, else the latest history entry, else None."""
        for context in self._active.values():
            if context.tool_call.id == tool_call_id:
                return self._snapshot(context)
        return self._history.latest_for(tool_call_id)

    def get_execution_history(
        self, session_id: str | None = None, limit: int | None = None
    ) -> list[ExecutionRecord]:
        return self._history.query(session_id=session_id, limit=limit)

    def clear_history(self, session_id: str | None = None) -> None:
        self._history.clear(session_id)

    def get_execution_stats(self, session_id: str | None = None) -> ExecutionStats:
        return self._history.stats(session_id)

    def enable_history_logging(self, enabled: bool) -> None:
        self.config = self.config.model_copy(update={"enable_history_logging": enabled})

    def enable_progress_tracking(self, enabled: bool) -> None:
        self.config = self.config.model_copy(update={"enable_progress_tracking": enabled})

    @staticmethod
    def _snapshot(context: _ExecutionContext) -> ActiveExecution:
        return ActiveExecution(
            execution_id=context.execution_id,
            tool_call_id=context.tool_call.id,
            session_id=context.session_id,
            tool_name=context.tool_call.name,
            start_time=context.record.start_time,
            timeout_ms=context.timeout_ms,
            elapsed_ms=context.elapsed_ms(),
            stage=context.stage,
            cancel_requested=context.cancel_requested,
        )
