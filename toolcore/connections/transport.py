"""
toolcore.connections.transport - Transport Adapter

Contract the supervisor uses to talk to one provider process, plus the
default implementation over the MCP stdio transport.

One transport instance is created per connect attempt:
    connect() -> list_tools() / call_tool() ... -> close()

Example:
    >>> transport = StdioMCPTransport(ServerConfig(
    ...     id="filesystem",
    ...     command="npx",
    ...     args=["-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
    ... ))
    >>> await transport.connect()
    >>> [t.name for t in await transport.list_tools()]
    ['read_file', 'write_file', ...]
    >>> await transport.close()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Callable
from typing import Any, Protocol

from pydantic import BaseModel, Field

from toolcore.exceptions import ProviderConnectionError, ToolExecutionError

from .models import ServerConfig

logger = logging.getLogger(__name__)

CLIENT_NAME = "toolcore"
CLIENT_VERSION = "0.1.0"


class RawTool(BaseModel):
    """A capability exactly as the provider lists it (unprefixed)."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)


class ProviderTransport(Protocol):
    """
    Protocol for a process-isolated provider channel.

    Implementations must be cancellation-safe: cancelling a pending
    connect() or call_tool() must abandon the operation promptly.
    """

    async def connect(self) -> None:
        """Open the channel. Raises on failure."""
        ...

    async def close(self) -> None:
        """Close the channel and release the provider process."""
        ...

    async def list_tools(self) -> list[RawTool]:
        """List the provider's capabilities."""
        ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """Invoke a capability by its raw (unprefixed) name."""
        ...


TransportFactory = Callable[[ServerConfig], ProviderTransport]


class StdioMCPTransport:
    """
    MCP client over stdio.

    The SDK's stdio client and session are async context managers bound to
    the task that entered them, so the whole session lives in one dedicated
    task; connect() waits for it to become ready and close() tells it to exit.
    """

    def __init__(self, config: ServerConfig, close_timeout: float = 5.0) -> None:
        self._config = config
        self._close_timeout = close_timeout
        self._session: Any = None
        self._runner: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()
        self._closing = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._session is not None and self._runner is not None and not self._runner.done()

    async def connect(self) -> None:
        if self._runner is not None:
            raise ProviderConnectionError(f"Transport for {self._config.id} already started")

        self._runner = asyncio.create_task(
            self._run_session(), name=f"mcp-session:{self._config.id}"
        )
        ready = asyncio.create_task(self._ready.wait())
        try:
            done, _pending = await asyncio.wait(
                {ready, self._runner}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            # Teardown of the provider process can take seconds; close() awaits it.
            ready.cancel()
            self._closing.set()
            self._runner.cancel()
            raise

        if ready not in done:
            ready.cancel()
            # Runner finished before becoming ready: surface its failure
            if self._runner.cancelled():
                raise ProviderConnectionError(
                    f"Connection closed during startup of {self._config.id}"
                )
            exc = self._runner.exception()
            if exc is not None:
                raise ProviderConnectionError(
                    f"Failed to start {self._config.command}: {exc}"
                ) from exc
            raise ProviderConnectionError(f"Connection closed during startup of {self._config.id}")

    async def _run_session(self) -> None:
        from mcp import ClientSession, StdioServerParameters
        from mcp.client.stdio import stdio_client
        from mcp.types import Implementation

        params = StdioServerParameters(
            command=self._config.command,
            args=list(self._config.args),
            env={**os.environ, **self._config.env},
        )

        try:
            async with stdio_client(params) as (read_stream, write_stream):
                async with ClientSession(
                    read_stream,
                    write_stream,
                    client_info=Implementation(name=CLIENT_NAME, version=CLIENT_VERSION),
                ) as session:
                    await session.initialize()
                    self._session = session
                    self._ready.set()
                    await self._closing.wait()
        finally:
            self._session = None

    async def _abort_runner(self) -> None:
        if self._runner is None:
            return
        self._closing.set()
        if not self._runner.done():
            self._runner.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await self._runner

    async def close(self) -> None:
        if self._runner is None:
            return
        if not self._ready.is_set():
            await self._abort_runner()
            return
        self._closing.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._runner), timeout=self._close_timeout)
        except TimeoutError:
            logger.warning(
                f"MCP session for {self._config.id} did not exit within "
                f"{self._close_timeout}s, cancelling",
                extra={"server_id": self._config.id},
            )
            await self._abort_runner()
        except Exception:
            logger.warning(
                f"Error closing MCP session for {self._config.id}",
                exc_info=True,
                extra={"server_id": self._config.id},
            )

    def _require_session(self) -> Any:
        if self._session is None:
            raise ProviderConnectionError(f"Connection to {self._config.id} is closed")
        return self._session

    async def list_tools(self) -> list[RawTool]:
        session = self._require_session()
        result = await session.list_tools()

        tools: list[RawTool] = []
        for mcp_tool in result.tools:
            input_schema = getattr(mcp_tool, "inputSchema", None) or {}
            tools.append(
                RawTool(
                    name=mcp_tool.name,
                    description=mcp_tool.description or "",
                    input_schema=input_schema,
                )
            )
        return tools

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        session = self._require_session()
        result = await session.call_tool(name, arguments=arguments)

        texts = [block.text for block in (result.content or []) if hasattr(block, "text")]
        if getattr(result, "isError", False):
            raise ToolExecutionError("\n".join(texts) or f"Tool {name} reported an error")

        if texts:
            return "\n".join(texts) if len(texts) > 1 else texts[0]
        structured = getattr(result, "structuredContent", None)
        if structured is not None:
            return structured
        return result


def default_transport_factory(config: ServerConfig) -> ProviderTransport:
    """Build the stdio MCP transport for a server config."""
    return StdioMCPTransport(config)
