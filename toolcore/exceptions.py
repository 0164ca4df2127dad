"""
toolcore.exceptions - Error taxonomy for connection supervision and tool execution

Which errors reach a caller:
- ConnectionError-class failures (ProviderConnectionError) drive the
  supervisor's backoff state machine and only surface through
  get_connection_statuses().
- ConcurrencyLimitError is raised before an execution starts.
- Everything that happens once an execution has started (validation,
  resolve, provider failure, timeout, cancellation) is captured in the
  finalized ExecutionRecord and returned, not raised.

Example:
    >>> from toolcore.exceptions import ConcurrencyLimitError
    >>>
    >>> try:
    ...     outcome = await coordinator.execute_tool_with_feedback(call, session_id)
    ... except ConcurrencyLimitError as e:
    ...     logger.warning(f"Rejected before starting: {e}")
"""


class ToolcoreError(Exception):
    """Base exception for all toolcore errors."""


class ConfigurationError(ToolcoreError):
    """
    Raised when server configuration is invalid.

    This can occur due to:
    - Missing or unreadable config file
    - Duplicate or malformed server ids
    - Field validation failures
    """


class ServerNotFoundError(ConfigurationError):
    """Raised when an operation names a server id with no connection record."""

    def __init__(self, server_id: str) -> None:
        self.server_id = server_id
        super().__init__(f"Server {server_id} not found")


class ProviderConnectionError(ToolcoreError, ConnectionError):
    """
    Raised when a provider connection cannot be established or is lost.

    Handled by the ConnectionSupervisor; recorded as the connection's lastError.
    """


class ToolValidationError(ToolcoreError, ValueError):
    """Raised when tool call arguments are malformed or miss a required field."""


class InvalidToolNameError(ToolValidationError):
    """Raised when a tool name is not of the form ``serverId.toolName``."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(
            f"Invalid tool name format: {tool_name}. Expected format: serverId.toolName"
        )


class UnknownServerError(ToolcoreError):
    """Raised when a namespaced tool name points at a server that does not exist."""

    def __init__(self, server_id: str) -> None:
        self.server_id = server_id
        super().__init__(f'Server "{server_id}" not found')


class ServerNotConnectedError(ToolcoreError):
    """Raised when the target server exists but is not connected."""

    def __init__(self, server_id: str, status: str) -> None:
        self.server_id = server_id
        self.status = status
        super().__init__(f'Server "{server_id}" is not connected (status: {status})')


class ConcurrencyLimitError(ToolcoreError):
    """Raised when the active-execution ceiling is reached. No record is created."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Maximum concurrent executions ({limit}) reached")


class ExecutionTimeoutError(ToolcoreError, TimeoutError):
    """Raised when a tool execution loses the race against its timeout."""

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Tool execution timeout after {timeout_ms}ms")


class ToolExecutionError(ToolcoreError):
    """Raised when a provider reports a failure for a tool invocation."""


class ExecutionCancelledError(ToolcoreError):
    """Raised inside the staged pipeline once a cancellation signal is observed."""

    def __init__(self, message: str = "Tool execution was cancelled") -> None:
        super().__init__(message)


__all__ = [
    "ConcurrencyLimitError",
    "ConfigurationError",
    "ExecutionCancelledError",
    "ExecutionTimeoutError",
    "InvalidToolNameError",
    "ProviderConnectionError",
    "ServerNotConnectedError",
    "ServerNotFoundError",
    "ToolExecutionError",
    "ToolValidationError",
    "ToolcoreError",
    "UnknownServerError",
]
