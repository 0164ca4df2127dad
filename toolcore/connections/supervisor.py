"""
toolcore.connections.supervisor - Connection Supervisor

Drives the per-connection lifecycle state machine:

    connecting -> connected        connect succeeded
    connecting -> error            connect failed or timed out (backoff scheduled)
    connected  -> disconnected     explicit disconnect
    connected  -> error            health check / runtime failure (backoff scheduled)
    error      -> connecting       scheduled retry or manual reconnect
    error      -> error            attempts exhausted (terminal until reconfigured)

Reconnection delays follow delay(n) = reconnect_delay_ms * 2**n where n is
the number of automatic attempts already made. At most one reconnection
timer is pending per server id at any time.

Example:
    >>> supervisor = ConnectionSupervisor(registry, catalog, options=SupervisorOptions())
    >>> await supervisor.update_server_configs([github_config, filesystem_config])
    >>> supervisor.start_health_monitoring()
    >>> supervisor.get_connection_statuses()["github"].status
    <HealthState.HEALTHY: 'healthy'>
    >>> await supervisor.shutdown()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from toolcore.exceptions import ConfigurationError, ProviderConnectionError, ServerNotFoundError
from toolcore.tools.classify import is_connection_error

from .models import (
    Connection,
    ConnectionStatus,
    HealthState,
    ServerConfig,
    ServerHealthStatus,
    SupervisorOptions,
)
from .registry import ConnectionRegistry
from .timers import TimerRegistry
from .transport import ProviderTransport, TransportFactory, default_transport_factory

if TYPE_CHECKING:
    from toolcore.tools.catalog import ToolCatalog

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_MESSAGE = "Max reconnection attempts exceeded"


def compute_backoff_delay(base_delay_ms: float, attempt: int) -> float:
    """Exponential backoff: base_delay_ms * 2**attempt."""
    return base_delay_ms * (2**attempt)


class ConnectionSupervisor:
    """
    Supervises connections to multiple tool provider processes.

    Features:
    - Connect with a timeout race, discovery of namespaced tools
    - Exponential backoff reconnection, one pending timer per server
    - Periodic health probing with tool cache refresh
    - Config diffing (add / drop / disable / change)

    All state mutations happen between suspension points, so callers on the
    same event loop never observe a half-updated record.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        catalog: ToolCatalog,
        transport_factory: TransportFactory | None = None,
        options: SupervisorOptions | None = None,
    ) -> None:
        self._registry = registry
        self._catalog = catalog
        self._transport_factory = transport_factory or default_transport_factory
        self.options = options or SupervisorOptions()
        self._reconnect_timers = TimerRegistry("reconnect")
        self._health_task: asyncio.Task[None] | None = None
        self._closing: set[asyncio.Task[None]] = set()
        self._shutting_down = False

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    def has_pending_reconnect(self, server_id: str) -> bool:
        return self._reconnect_timers.is_pending(server_id)

    @property
    def pending_reconnect_count(self) -> int:
        return len(self._reconnect_timers)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, configs: Iterable[ServerConfig]) -> None:
        """Apply the initial config set and start health monitoring.

        Also re-arms a supervisor that was shut down.
        """
        self._shutting_down = False
        configs = list(configs)
        await self.update_server_configs(configs)
        self.start_health_monitoring()
        logger.info(f"Connection supervisor initialized with {len(configs)} server configurations")

    async def connect(self, config: ServerConfig) -> None:
        """
        Connect to a provider.

        No-op for disabled configs and already connected servers. Failures
        never raise: they are recorded on the connection and drive backoff.

        Args:
            config: Launch configuration of the server
        """
        if not config.enabled:
            logger.info(f"Server {config.id} is disabled, skipping connection")
            return

        existing = self._registry.get(config.id)
        if existing is not None and existing.is_connected:
            logger.info(f"Server {config.id} is already connected")
            return

        if self._shutting_down:
            return

        record = Connection(
            id=config.id,
            config=config,
            status=ConnectionStatus.CONNECTING,
            reconnect_attempts=existing.reconnect_attempts if existing else 0,
            last_reconnect_time=existing.last_reconnect_time if existing else None,
            connection_start_time=datetime.now(UTC),
        )
        transport = self._transport_factory(config)
        record.transport = transport
        self._registry.put(record)

        logger.info(
            f"Connecting to server {config.id} ({config.command} {' '.join(config.args)})",
            extra={"server_id": config.id, "attempt": record.reconnect_attempts},
        )

        timeout_ms = self.options.connection_timeout_ms
        attempt = asyncio.create_task(transport.connect(), name=f"connect:{config.id}")
        try:
            done, _ = await asyncio.wait({attempt}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            if self._owns(record):
                record.status = ConnectionStatus.ERROR
                record.last_error = "Connection attempt cancelled"
                record.transport = None
            self._close_in_background(config.id, transport, attempt)
            raise

        if attempt not in done:
            # Record the failure before the transport's teardown runs.
            self._fail_connect(record, f"Connection timeout after {timeout_ms}ms")
            self._close_in_background(config.id, transport, attempt)
            return

        error = attempt.exception()
        if error is not None:
            self._fail_connect(record, str(error) or type(error).__name__)
            self._close_in_background(config.id, transport)
            return

        if not self._owns(record):
            logger.info(
                f"Connect attempt for {config.id} was superseded, discarding",
                extra={"server_id": config.id},
            )
            self._close_in_background(config.id, transport)
            return

        tools = await self._catalog.discover_tools(config.id)

        if not self._owns(record):
            self._close_in_background(config.id, transport)
            return

        now = datetime.now(UTC)
        record.tools = tools
        record.status = ConnectionStatus.CONNECTED
        record.reconnect_attempts = 0
        record.last_error = None
        record.last_health_check = now
        self._catalog.cache_tools(config.id, tools)

        logger.info(
            f"Successfully connected to {config.id} with {len(tools)} tools",
            extra={"server_id": config.id, "tool_count": len(tools)},
        )

    def _owns(self, record: Connection) -> bool:
        """True if a connect attempt's record is still live and connecting."""
        return (
            not self._shutting_down
            and self._registry.is_current(record)
            and record.status is ConnectionStatus.CONNECTING
        )

    def _fail_connect(self, record: Connection, message: str) -> None:
        if not self._registry.is_current(record) or record.status is not ConnectionStatus.CONNECTING:
            logger.debug(
                f"Ignoring failure of superseded connect attempt for {record.id}: {message}",
                extra={"server_id": record.id},
            )
            return

        record.status = ConnectionStatus.ERROR
        record.last_error = message
        record.transport = None
        record.tools = []

        logger.warning(
            f"Failed to connect to {record.id}: {message}",
            extra={"server_id": record.id, "attempt": record.reconnect_attempts},
        )

        if record.config.enabled and not self._shutting_down:
            self.schedule_reconnection(record.id)

    async def disconnect(self, server_id: str) -> None:
        """
        Disconnect a server, keeping its record.

        Cancels any pending reconnection. Closing the transport is
        best-effort; a second call for the same id is a no-op.
        """
        self._reconnect_timers.cancel(server_id)

        record = self._registry.get(server_id)
        if record is None:
            logger.info(f"Server {server_id} not found, nothing to disconnect")
            return

        if record.status is ConnectionStatus.DISCONNECTED and record.transport is None:
            return

        transport = record.transport
        record.status = ConnectionStatus.DISCONNECTED
        record.transport = None
        record.tools = []
        record.last_error = None
        self._catalog.invalidate(server_id)

        if transport is not None:
            await self._close_quietly(server_id, transport)

        logger.info(f"Disconnected from {server_id}", extra={"server_id": server_id})

    async def reconnect(self, server_id: str, config: ServerConfig | None = None) -> None:
        """
        Manually reconnect a server, resetting its backoff counter.

        Args:
            server_id: Server to reconnect
            config: Replacement launch config (defaults to the current one)

        Raises:
            ServerNotFoundError: If no record exists for server_id
        """
        record = self._registry.get(server_id)
        if record is None:
            raise ServerNotFoundError(server_id)

        target = config or record.config
        logger.info(f"Reconnecting to server {server_id}", extra={"server_id": server_id})

        await self.disconnect(server_id)

        current = self._registry.get(server_id)
        if current is not None:
            current.reconnect_attempts = 0
            current.config = target

        await self.connect(target)

    async def _close_quietly(self, server_id: str, transport: ProviderTransport) -> None:
        try:
            await transport.close()
        except Exception:
            logger.warning(
                f"Error closing connection to {server_id}",
                exc_info=True,
                extra={"server_id": server_id},
            )

    def _close_in_background(
        self,
        server_id: str,
        transport: ProviderTransport,
        attempt: asyncio.Task | None = None,
    ) -> None:
        """Tear down a transport without blocking the caller.

        A still-running connect attempt is cancelled and awaited first.
        shutdown() waits for every teardown started here.
        """

        async def teardown() -> None:
            if attempt is not None:
                attempt.cancel()
                await asyncio.wait({attempt})
                if not attempt.cancelled():
                    attempt.exception()
            await self._close_quietly(server_id, transport)

        task = asyncio.create_task(teardown(), name=f"close:{server_id}")
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def wait_closed(self) -> None:
        """Wait for background transport teardowns to finish."""
        while self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    # ------------------------------------------------------------------
    # Backoff
    # ------------------------------------------------------------------

    def schedule_reconnection(self, server_id: str) -> None:
        """
        Schedule the next automatic reconnection attempt for a server.

        Once reconnect_attempts reaches max_reconnect_attempts the connection
        is left in a permanent error state and nothing is scheduled.
        """
        record = self._registry.get(server_id)
        if record is None or not record.config.enabled or self._shutting_down:
            return

        max_attempts = self.options.max_reconnect_attempts
        if record.reconnect_attempts >= max_attempts:
            self._reconnect_timers.cancel(server_id)
            record.status = ConnectionStatus.ERROR
            record.last_error = MAX_ATTEMPTS_MESSAGE
            logger.error(
                f"Max reconnection attempts ({max_attempts}) reached for {server_id}",
                extra={"server_id": server_id, "attempts": record.reconnect_attempts},
            )
            return

        delay_ms = compute_backoff_delay(self.options.reconnect_delay_ms, record.reconnect_attempts)
        logger.info(
            f"Scheduling reconnection for {server_id} in {delay_ms:.0f}ms "
            f"(attempt {record.reconnect_attempts + 1}/{max_attempts})",
            extra={"server_id": server_id, "delay_ms": delay_ms},
        )
        self._reconnect_timers.schedule(
            server_id, delay_ms, lambda: self._attempt_reconnect(server_id)
        )

    async def _attempt_reconnect(self, server_id: str) -> None:
        if self._shutting_down:
            return

        record = self._registry.get(server_id)
        if record is None or record.status is not ConnectionStatus.ERROR:
            # Reconnected, disconnected or dropped since the timer was set
            return

        record.reconnect_attempts += 1
        record.last_reconnect_time = datetime.now(UTC)
        await self.connect(record.config)

    def report_connection_failure(self, server_id: str, error: BaseException | str) -> bool:
        """
        Transition a connected server to error if error looks connection-related.

        The state change and reconnection scheduling happen immediately; the
        old transport is closed in the background.

        Returns:
            True if a reconnection was scheduled
        """
        if not is_connection_error(error):
            return False

        record = self._registry.get(server_id)
        if record is None or record.status is not ConnectionStatus.CONNECTED:
            return False

        transport = record.transport
        record.status = ConnectionStatus.ERROR
        record.last_error = str(error) or type(error).__name__
        record.transport = None
        record.tools = []
        self._catalog.invalidate(server_id)

        logger.warning(
            f"Connection error detected for {server_id}: {record.last_error}",
            extra={"server_id": server_id},
        )
        self.schedule_reconnection(server_id)

        if transport is not None:
            self._close_in_background(server_id, transport)
        return True

    # ------------------------------------------------------------------
    # Health checks
    # ------------------------------------------------------------------

    async def perform_health_check(self) -> None:
        """Probe every connected server concurrently."""
        if self._shutting_down:
            return

        connected = self._registry.with_status(ConnectionStatus.CONNECTED)
        await asyncio.gather(*(self._check_connection(record) for record in connected))

    async def _check_connection(self, record: Connection) -> None:
        transport = record.transport
        if transport is None:
            return

        timeout_ms = self.options.connection_timeout_ms
        started = time.monotonic()
        error: BaseException | None = None
        raw_tools = []
        try:
            raw_tools = await asyncio.wait_for(transport.list_tools(), timeout=timeout_ms / 1000)
        except TimeoutError:
            error = ProviderConnectionError(f"Health check timeout after {timeout_ms}ms")
        except Exception as e:
            error = e

        if not self._registry.is_current(record) or not record.is_connected:
            return

        if error is not None:
            logger.warning(
                f"Health check failed for {record.id}: {error}",
                extra={"server_id": record.id},
            )
            if not self.report_connection_failure(record.id, error):
                record.last_error = str(error) or type(error).__name__
            return

        record.last_health_check = datetime.now(UTC)
        if not self._catalog.is_cache_valid(record.id):
            tools = self._catalog.build_descriptors(record.id, raw_tools)
            record.tools = tools
            self._catalog.cache_tools(record.id, tools)

        response_ms = (time.monotonic() - started) * 1000
        logger.debug(
            f"Health check passed for {record.id} ({response_ms:.0f}ms)",
            extra={"server_id": record.id, "response_ms": response_ms},
        )

    def start_health_monitoring(self) -> None:
        """Start the periodic health check loop (idempotent)."""
        if self._health_task is not None and not self._health_task.done():
            return
        self._health_task = asyncio.create_task(self._health_loop(), name="health-monitor")

    async def stop_health_monitoring(self) -> None:
        task, self._health_task = self._health_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _health_loop(self) -> None:
        interval = self.options.health_check_interval_ms / 1000
        while not self._shutting_down:
            await asyncio.sleep(interval)
            try:
                await self.perform_health_check()
            except Exception:
                logger.error("Health check error", exc_info=True)

    def get_connection_statuses(self) -> dict[str, ServerHealthStatus]:
        """Health snapshot for every known connection."""
        now = datetime.now(UTC)
        statuses: dict[str, ServerHealthStatus] = {}
        for record in self._registry:
            statuses[record.id] = ServerHealthStatus(
                server_id=record.id,
                status=self._health_state(record, now),
                connection_status=record.status,
                last_check=record.last_health_check,
                error=record.last_error,
                tool_count=len(record.tools),
                uptime_ms=record.uptime_ms(now),
                reconnect_attempts=record.reconnect_attempts,
            )
        return statuses

    def _health_state(self, record: Connection, now: datetime) -> HealthState:
        if not record.is_connected:
            return HealthState.UNHEALTHY
        if record.last_health_check is None:
            return HealthState.UNKNOWN
        age_ms = (now - record.last_health_check).total_seconds() * 1000
        if age_ms > self.options.health_check_interval_ms * 2:
            return HealthState.UNKNOWN
        return HealthState.HEALTHY

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def update_server_configs(self, configs: Iterable[ServerConfig]) -> None:
        """
        Reconcile connections with a new config set.

        - ids missing from configs are disconnected and dropped
        - disabled ids are disconnected but kept
        - new enabled ids are connected
        - ids whose launch config changed are reconnected

        Raises:
            ConfigurationError: If configs contains duplicate ids
        """
        configs = list(configs)
        duplicates = sorted(sid for sid, n in Counter(c.id for c in configs).items() if n > 1)
        if duplicates:
            raise ConfigurationError(f"Duplicate server id(s): {', '.join(duplicates)}")

        logger.info(f"Updating server configurations for {len(configs)} servers")
        config_map = {c.id: c for c in configs}

        for server_id in self._registry.ids():
            new_config = config_map.get(server_id)
            if new_config is None:
                await self.disconnect(server_id)
                self._registry.remove(server_id)
                self._catalog.invalidate(server_id)
            elif not new_config.enabled:
                await self.disconnect(server_id)
                record = self._registry.get(server_id)
                if record is not None:
                    record.config = new_config

        pending = []
        for config in configs:
            if not config.enabled:
                continue
            existing = self._registry.get(config.id)
            if existing is None:
                pending.append((config.id, self.connect(config)))
            elif existing.config.launch_differs(config):
                logger.info(f"Configuration changed for {config.id}, reconnecting")
                pending.append((config.id, self.reconnect(config.id, config)))

        results = await asyncio.gather(*(coro for _, coro in pending), return_exceptions=True)
        for (server_id, _), result in zip(pending, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    f"Failed to apply configuration for {server_id}: {result}",
                    exc_info=result,
                    extra={"server_id": server_id},
                )

    async def shutdown(self) -> None:
        """Stop monitoring, cancel timers and disconnect everything."""
        logger.info("Shutting down connection supervisor")
        self._shutting_down = True

        await self.stop_health_monitoring()
        self._reconnect_timers.cancel_all()

        await asyncio.gather(
            *(self.disconnect(server_id) for server_id in self._registry.ids()),
            return_exceptions=True,
        )
        await self.wait_closed()
        self._registry.clear()
        self._catalog.clear()

        logger.info("Connection supervisor shutdown complete")
