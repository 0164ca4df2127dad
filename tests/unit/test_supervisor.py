"""
Unit tests for toolcore.connections.supervisor - Connection Supervisor

Uses FakeTransport doubles with real (short) timers for connect timeouts
and reconnection backoff.
"""

import asyncio
import time

import pytest

from toolcore.connections import ConnectionStatus, HealthState, compute_backoff_delay
from toolcore.connections.supervisor import MAX_ATTEMPTS_MESSAGE
from toolcore.exceptions import ConfigurationError, ProviderConnectionError, ServerNotFoundError

# ============================================================================
# Backoff
# ============================================================================


class TestBackoff:
    def test_delay_doubles_per_attempt(self):
        assert [compute_backoff_delay(2000, n) for n in range(5)] == [
            2000,
            4000,
            8000,
            16000,
            32000,
        ]

    def test_zero_base_delay(self):
        assert compute_backoff_delay(0, 3) == 0

    async def test_scheduled_delay_follows_attempt_count(
        self, supervisor, registry, make_config, transport_factory
    ):
        transport_factory.configure("files", connect_error=ConnectionRefusedError("refused"))
        supervisor.options = supervisor.options.model_copy(
            update={"reconnect_delay_ms": 5000, "max_reconnect_attempts": 10}
        )

        await supervisor.connect(make_config("files"))
        record = registry.get("files")
        assert supervisor._reconnect_timers.get("files").delay_ms == 5000

        record.reconnect_attempts = 3
        supervisor.schedule_reconnection("files")
        assert supervisor._reconnect_timers.get("files").delay_ms == 40000
        assert supervisor.pending_reconnect_count == 1


# ============================================================================
# connect()
# ============================================================================


class TestConnect:
    async def test_connect_success(self, supervisor, registry, catalog, make_config):
        await supervisor.connect(make_config("files"))

        record = registry.get("files")
        assert record.status is ConnectionStatus.CONNECTED
        assert record.reconnect_attempts == 0
        assert record.last_error is None
        assert record.last_health_check is not None
        assert record.connection_start_time is not None
        assert [t.name for t in record.tools] == ["files.read_file", "files.search", "files.echo"]
        assert catalog.is_cache_valid("files")

    async def test_disabled_config_creates_no_record(
        self, supervisor, registry, make_config, transport_factory
    ):
        await supervisor.connect(make_config("files", enabled=False))

        assert "files" not in registry
        assert transport_factory.created == []

    async def test_already_connected_is_noop(self, supervisor, make_config, transport_factory):
        await supervisor.connect(make_config("files"))
        await supervisor.connect(make_config("files"))

        assert len(transport_factory.created_for("files")) == 1

    async def test_connect_timeout(self, supervisor, registry, make_config, transport_factory):
        transport_factory.configure("files", hang_on_connect=True)

        started = time.monotonic()
        await supervisor.connect(make_config("files"))
        elapsed = time.monotonic() - started

        record = registry.get("files")
        assert record.status is ConnectionStatus.ERROR
        assert "timeout" in record.last_error.lower()
        assert record.last_error == "Connection timeout after 100ms"
        assert elapsed < 0.2
        assert supervisor.has_pending_reconnect("files")

        await supervisor.wait_closed()
        assert transport_factory.latest("files").closed

    async def test_connect_timeout_does_not_wait_for_teardown(
        self, supervisor, registry, make_config, transport_factory
    ):
        transport_factory.configure("files", hang_on_connect=True, close_delay=0.5)

        started = time.monotonic()
        await supervisor.connect(make_config("files"))
        elapsed = time.monotonic() - started

        record = registry.get("files")
        assert elapsed < 0.2
        assert record.status is ConnectionStatus.ERROR
        assert record.last_error == "Connection timeout after 100ms"
        assert not transport_factory.latest("files").closed

        await supervisor.wait_closed()
        assert transport_factory.latest("files").closed

    async def test_connect_failure_records_error(
        self, supervisor, registry, make_config, transport_factory
    ):
        transport_factory.configure("files", connect_error=ConnectionRefusedError("ECONNREFUSED"))

        await supervisor.connect(make_config("files"))

        record = registry.get("files")
        assert record.status is ConnectionStatus.ERROR
        assert record.last_error == "ECONNREFUSED"
        assert record.transport is None
        assert record.tools == []
        assert supervisor.has_pending_reconnect("files")

    async def test_concurrent_connect_keeps_latest_attempt(
        self, supervisor, registry, make_config, transport_factory
    ):
        transport_factory.configure("files", connect_delay=0.03)

        first = asyncio.create_task(supervisor.connect(make_config("files")))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(supervisor.connect(make_config("files")))
        await asyncio.gather(first, second)
        await supervisor.wait_closed()

        old, new = transport_factory.created_for("files")
        record = registry.get("files")
        assert record.status is ConnectionStatus.CONNECTED
        assert record.transport is new
        assert old.closed

    async def test_disconnect_during_connect_discards_result(
        self, supervisor, registry, make_config, transport_factory
    ):
        transport_factory.configure("files", connect_delay=0.03)

        task = asyncio.create_task(supervisor.connect(make_config("files")))
        await asyncio.sleep(0.01)
        await supervisor.disconnect("files")
        await task

        record = registry.get("files")
        assert record.status is ConnectionStatus.DISCONNECTED
        assert record.transport is None
        assert transport_factory.latest("files").closed
        assert not supervisor.has_pending_reconnect("files")


# ============================================================================
# Reconnection
# ============================================================================


class TestReconnection:
    async def test_max_attempts_leaves_permanent_error(
        self, supervisor, registry, make_config, transport_factory
    ):
        transport_factory.configure("files", connect_error=ConnectionRefusedError("refused"))

        await supervisor.connect(make_config("files"))
        # 20ms + 40ms of backoff for max_reconnect_attempts=2
        await asyncio.sleep(0.3)

        record = registry.get("files")
        assert record.status is ConnectionStatus.ERROR
        assert record.last_error == MAX_ATTEMPTS_MESSAGE
        assert record.reconnect_attempts == 2
        assert record.last_reconnect_time is not None
        assert not supervisor.has_pending_reconnect("files")
        assert len(transport_factory.created_for("files")) == 3

        await asyncio.sleep(0.1)
        assert len(transport_factory.created_for("files")) == 3

    async def test_recovers_and_resets_attempts(
        self, supervisor, registry, make_config, transport_factory
    ):
        transport_factory.configure("files", connect_error=ConnectionRefusedError("refused"))
        await supervisor.connect(make_config("files"))
        assert registry.get("files").status is ConnectionStatus.ERROR

        transport_factory.configure("files")
        await asyncio.sleep(0.1)

        record = registry.get("files")
        assert record.status is ConnectionStatus.CONNECTED
        assert record.reconnect_attempts == 0
        assert record.last_error is None

    async def test_manual_reconnect_resets_counter(
        self, supervisor, registry, make_config, transport_factory
    ):
        transport_factory.configure("files", connect_error=ConnectionRefusedError("refused"))
        await supervisor.connect(make_config("files"))
        await asyncio.sleep(0.3)
        assert registry.get("files").last_error == MAX_ATTEMPTS_MESSAGE

        transport_factory.configure("files")
        await supervisor.reconnect("files")

        record = registry.get("files")
        assert record.status is ConnectionStatus.CONNECTED
        assert record.reconnect_attempts == 0

    async def test_reconnect_unknown_server(self, supervisor):
        with pytest.raises(ServerNotFoundError, match="Server ghost not found"):
            await supervisor.reconnect("ghost")

    async def test_single_pending_timer_per_server(
        self, supervisor, make_config, transport_factory
    ):
        transport_factory.configure("files", connect_error=ConnectionRefusedError("refused"))
        await supervisor.connect(make_config("files"))

        supervisor.schedule_reconnection("files")
        supervisor.schedule_reconnection("files")

        assert supervisor.pending_reconnect_count == 1


# ============================================================================
# disconnect()
# ============================================================================


class TestDisconnect:
    async def test_disconnect_twice_is_idempotent(
        self, supervisor, registry, catalog, make_config, transport_factory
    ):
        await supervisor.connect(make_config("files"))

        await supervisor.disconnect("files")
        await supervisor.disconnect("files")

        record = registry.get("files")
        assert record.status is ConnectionStatus.DISCONNECTED
        assert record.tools == []
        assert record.last_error is None
        assert transport_factory.latest("files").closed
        assert catalog.get_server_tools("files") == []

    async def test_disconnect_unknown_server_is_noop(self, supervisor):
        await supervisor.disconnect("ghost")

    async def test_disconnect_cancels_pending_reconnect(
        self, supervisor, make_config, transport_factory
    ):
        transport_factory.configure("files", connect_error=ConnectionRefusedError("refused"))
        await supervisor.connect(make_config("files"))
        assert supervisor.has_pending_reconnect("files")

        await supervisor.disconnect("files")

        assert not supervisor.has_pending_reconnect("files")


# ============================================================================
# Runtime failures and health checks
# ============================================================================


class TestHealthChecks:
    async def test_report_connection_failure(self, supervisor, registry, make_config):
        await supervisor.connect(make_config("files"))

        scheduled = supervisor.report_connection_failure("files", BrokenPipeError("broken pipe"))

        record = registry.get("files")
        assert scheduled is True
        assert record.status is ConnectionStatus.ERROR
        assert record.last_error == "broken pipe"
        assert supervisor.has_pending_reconnect("files")

    async def test_report_non_connection_failure_is_ignored(
        self, supervisor, registry, make_config
    ):
        await supervisor.connect(make_config("files"))

        scheduled = supervisor.report_connection_failure("files", ValueError("bad input"))

        assert scheduled is False
        assert registry.get("files").status is ConnectionStatus.CONNECTED

    async def test_report_failure_closes_transport_in_background(
        self, supervisor, registry, make_config, transport_factory
    ):
        transport_factory.configure("files", close_delay=0.3)
        await supervisor.connect(make_config("files"))
        transport = transport_factory.latest("files")

        scheduled = supervisor.report_connection_failure(
            "files", ConnectionResetError("connection reset by peer")
        )

        assert scheduled is True
        assert registry.get("files").status is ConnectionStatus.ERROR
        assert not transport.closed

        await supervisor.wait_closed()
        assert transport.closed

    async def test_health_check_success_refreshes_timestamp(
        self, supervisor, registry, make_config
    ):
        await supervisor.connect(make_config("files"))
        before = registry.get("files").last_health_check

        await asyncio.sleep(0.01)
        await supervisor.perform_health_check()

        assert registry.get("files").last_health_check > before

    async def test_health_check_connection_failure(
        self, supervisor, registry, make_config, transport_factory
    ):
        await supervisor.connect(make_config("files"))
        transport_factory.latest("files").list_error = ProviderConnectionError("Connection closed")

        await supervisor.perform_health_check()

        record = registry.get("files")
        assert record.status is ConnectionStatus.ERROR
        assert record.last_error == "Connection closed"
        assert supervisor.has_pending_reconnect("files")

    async def test_health_check_other_failure_keeps_connection(
        self, supervisor, registry, make_config, transport_factory
    ):
        await supervisor.connect(make_config("files"))
        transport_factory.latest("files").list_error = ValueError("malformed listing")

        await supervisor.perform_health_check()

        record = registry.get("files")
        assert record.status is ConnectionStatus.CONNECTED
        assert record.last_error == "malformed listing"

    async def test_health_check_refreshes_expired_cache(
        self, supervisor, registry, catalog, make_config, transport_factory
    ):
        await supervisor.connect(make_config("files"))
        transport_factory.latest("files").tools = transport_factory.latest("files").tools[:1]
        catalog.invalidate("files")

        await supervisor.perform_health_check()

        assert [t.name for t in registry.get("files").tools] == ["files.read_file"]
        assert catalog.is_cache_valid("files")

    async def test_connection_statuses(self, supervisor, make_config, transport_factory):
        transport_factory.configure("broken", connect_error=ConnectionRefusedError("refused"))
        await supervisor.connect(make_config("files"))
        await supervisor.connect(make_config("broken"))

        statuses = supervisor.get_connection_statuses()

        assert statuses["files"].status is HealthState.HEALTHY
        assert statuses["files"].tool_count == 3
        assert statuses["broken"].status is HealthState.UNHEALTHY
        assert statuses["broken"].error == "refused"

    async def test_stale_health_check_is_unknown(self, supervisor, registry, make_config):
        await supervisor.connect(make_config("files"))
        registry.get("files").last_health_check = None

        statuses = supervisor.get_connection_statuses()

        assert statuses["files"].status is HealthState.UNKNOWN


# ============================================================================
# update_server_configs()
# ============================================================================


class TestUpdateServerConfigs:
    async def test_disabled_server_has_no_status(self, supervisor, make_config):
        await supervisor.update_server_configs(
            [make_config("files"), make_config("github", enabled=False)]
        )

        statuses = supervisor.get_connection_statuses()
        assert "files" in statuses
        assert "github" not in statuses

    async def test_dropped_server_is_removed(self, supervisor, registry, make_config):
        await supervisor.update_server_configs([make_config("files"), make_config("github")])
        await supervisor.update_server_configs([make_config("files")])

        assert registry.ids() == ["files"]

    async def test_disabled_server_is_disconnected_but_kept(
        self, supervisor, registry, make_config
    ):
        await supervisor.update_server_configs([make_config("files")])
        await supervisor.update_server_configs([make_config("files", enabled=False)])

        record = registry.get("files")
        assert record.status is ConnectionStatus.DISCONNECTED
        assert record.config.enabled is False

    async def test_reenabled_server_reconnects(
        self, supervisor, registry, make_config, transport_factory
    ):
        await supervisor.update_server_configs([make_config("files")])
        await supervisor.update_server_configs([make_config("files", enabled=False)])
        await supervisor.update_server_configs([make_config("files")])

        assert registry.get("files").status is ConnectionStatus.CONNECTED
        assert len(transport_factory.created_for("files")) == 2

    async def test_changed_config_reconnects(
        self, supervisor, registry, make_config, transport_factory
    ):
        await supervisor.update_server_configs([make_config("files")])
        await supervisor.update_server_configs([make_config("files", args=["--verbose"])])

        record = registry.get("files")
        assert record.status is ConnectionStatus.CONNECTED
        assert record.config.args == ["--verbose"]
        assert transport_factory.created_for("files")[0].closed
        assert len(transport_factory.created_for("files")) == 2

    async def test_unchanged_config_is_noop(self, supervisor, make_config, transport_factory):
        await supervisor.update_server_configs([make_config("files")])
        await supervisor.update_server_configs([make_config("files")])

        assert len(transport_factory.created_for("files")) == 1

    async def test_duplicate_ids_rejected(self, supervisor, make_config):
        with pytest.raises(ConfigurationError, match="Duplicate server id"):
            await supervisor.update_server_configs([make_config("files"), make_config("files")])


# ============================================================================
# Lifecycle
# ============================================================================


class TestLifecycle:
    async def test_initialize_starts_health_monitoring(self, supervisor, make_config):
        await supervisor.initialize([make_config("files")])

        assert supervisor._health_task is not None
        assert not supervisor._health_task.done()

    async def test_health_loop_probes_periodically(
        self, supervisor, registry, make_config, transport_factory
    ):
        supervisor.options = supervisor.options.model_copy(update={"health_check_interval_ms": 20})
        await supervisor.initialize([make_config("files")])
        transport_factory.latest("files").list_error = ConnectionResetError("socket closed")

        await asyncio.sleep(0.1)

        # Failure detected by the loop, then a fresh transport via backoff
        first = transport_factory.created_for("files")[0]
        assert first.closed
        assert len(transport_factory.created_for("files")) >= 2

    async def test_shutdown(self, supervisor, registry, make_config, transport_factory):
        transport_factory.configure("broken", connect_error=ConnectionRefusedError("refused"))
        await supervisor.initialize([make_config("files"), make_config("broken")])

        await supervisor.shutdown()

        assert supervisor.is_shutting_down
        assert len(registry) == 0
        assert supervisor.pending_reconnect_count == 0
        assert transport_factory.latest("files").closed
        assert supervisor._health_task is None

    async def test_shutdown_waits_for_background_teardown(
        self, supervisor, make_config, transport_factory
    ):
        transport_factory.configure("files", hang_on_connect=True, close_delay=0.05)
        await supervisor.connect(make_config("files"))
        transport = transport_factory.latest("files")
        assert not transport.closed

        await supervisor.shutdown()

        assert transport.closed

    async def test_initialize_after_shutdown_reconnects(
        self, supervisor, registry, make_config, transport_factory
    ):
        await supervisor.initialize([make_config("files")])
        await supervisor.shutdown()

        await supervisor.initialize([make_config("files")])

        assert not supervisor.is_shutting_down
        assert registry.get("files").status is ConnectionStatus.CONNECTED
        assert len(transport_factory.created_for("files")) == 2
        assert supervisor._health_task is not None
