"""
toolcore.runner.health - Minimal Health Check Server

Raw asyncio HTTP server exposing the tool host's state:

    GET /health  connection statuses, uptime and active executions
    GET /tools   namespaced tools of every connected server

No external dependencies; uses asyncio.start_server with manual HTTP parsing.
"""

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from toolcore.host import ToolHost

logger = logging.getLogger(__name__)


class HealthServer:
    """Minimal HTTP health check server using raw asyncio."""

    def __init__(self, host: "ToolHost", port: int, bind_host: str = "127.0.0.1") -> None:
        self.host = host
        self.port = port
        self.bind_host = bind_host
        self._server: asyncio.Server | None = None

    @property
    def bound_port(self) -> int | None:
        """Actual listening port (useful when started with port 0)."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Start the health server."""
        self._server = await asyncio.start_server(self._handle_request, self.bind_host, self.port)
        logger.info(f"Health server listening on {self.bind_host}:{self.bound_port}")

    async def stop(self) -> None:
        """Stop the health server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("Health server stopped")

    def _route(self, method: str, path: str) -> tuple[str, dict[str, Any]]:
        if method == "GET" and path == "/health":
            return "200 OK", self.host.health_report()
        if method == "GET" and path == "/tools":
            tools = self.host.catalog.get_all_tools()
            return "200 OK", {
                "count": len(tools),
                "tools": [tool.model_dump(mode="json") for tool in tools],
            }
        return "404 Not Found", {"error": "not found"}

    async def _handle_request(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle a single HTTP request."""
        try:
            request_line = await asyncio.wait_for(reader.readline(), timeout=5.0)
            request_str = request_line.decode("utf-8", errors="replace").strip()

            # Drain remaining headers (we don't need them)
            while True:
                line = await asyncio.wait_for(reader.readline(), timeout=5.0)
                if line in {b"\r\n", b"\n"} or not line:
                    break

            parts = request_str.split(" ")
            method = parts[0] if parts else ""
            path = parts[1].split("?", 1)[0] if len(parts) > 1 else ""
            status, payload = self._route(method, path)

            body_bytes = json.dumps(payload).encode("utf-8")
            header = (
                f"HTTP/1.1 {status}\r\n"
                "Content-Type: application/json\r\n"
                f"Content-Length: {len(body_bytes)}\r\n"
                "Connection: close\r\n"
                "\r\n"
            )

            writer.write(header.encode("utf-8") + body_bytes)
            await writer.drain()
        except TimeoutError:
            logger.debug("Health server request timed out")
        except (ConnectionResetError, BrokenPipeError):
            logger.debug("Health server client disconnected")
        except Exception:
            logger.warning("Unexpected health server request error", exc_info=True)
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()
