"""
End-to-end tests for ToolHost: config file -> supervisor -> catalog -> coordinator.

Provider processes are replaced by the in-memory transports from conftest.
"""

import json

import pytest

from toolcore.config import ServerConfigProvider
from toolcore.connections import ConnectionStatus
from toolcore.execution import ExecutionEventType, ExecutionStatus, ToolCall
from toolcore.host import ToolHost
from toolcore.settings import ToolcoreSettings


@pytest.fixture
def settings():
    return ToolcoreSettings(
        _env_file=None,
        connection_timeout_ms=200,
        reconnect_delay_ms=20,
        max_reconnect_attempts=1,
        default_tool_timeout_ms=500,
        config_watch_interval_ms=10,
    )


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "mcp.config.json"
    path.write_text(
        json.dumps(
            {
                "mcpServers": {
                    "files": {"command": "fake-server", "args": ["files"]},
                    "search": {"command": "fake-server", "args": ["search"], "disabled": True},
                }
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
async def host(settings, transport_factory, config_path):
    provider = ServerConfigProvider(config_path, watch_interval_ms=settings.config_watch_interval_ms)
    host = ToolHost(settings, transport_factory=transport_factory, config_provider=provider)
    await host.start()
    yield host
    await host.shutdown()


class TestToolHost:
    async def test_start_connects_enabled_servers(self, host, transport_factory):
        assert host.is_running
        assert host.registry.get("files").status is ConnectionStatus.CONNECTED
        assert host.registry.get("search") is None
        assert transport_factory.created_for("search") == []
        assert {t.name for t in host.catalog.get_all_tools()} == {
            "files.read_file",
            "files.search",
            "files.echo",
        }

    async def test_execute_through_host(self, host):
        completed = []
        host.events.subscribe(completed.append, ExecutionEventType.COMPLETED)

        outcome = await host.coordinator.execute_tool_with_feedback(
            ToolCall(id="call-1", name="files.echo", arguments='{"text": "hi"}'),
            session_id="session-1",
        )

        assert outcome.success
        assert outcome.result == {"tool": "echo", "arguments": {"text": "hi"}}
        assert len(completed) == 1
        assert host.coordinator.get_execution_history("session-1")[0].status is ExecutionStatus.SUCCESS

    async def test_config_save_reconciles(self, host, transport_factory):
        await host.config_provider.save(
            {
                "mcpServers": {
                    "search": {"command": "fake-server", "args": ["search"]},
                }
            }
        )

        assert host.registry.get("files") is None
        assert host.registry.get("search").status is ConnectionStatus.CONNECTED
        assert transport_factory.latest("files").closed
        assert {t.server_id for t in host.catalog.get_all_tools()} == {"search"}

    async def test_health_report(self, host):
        report = host.health_report()

        assert report["status"] == "ok"
        assert report["tool_count"] == 3
        assert report["connections"]["files"]["connection_status"] == "connected"
        assert report["active_executions"] == 0

    async def test_shutdown(self, settings, transport_factory, config_path):
        provider = ServerConfigProvider(config_path, watch_interval_ms=10)
        host = ToolHost(settings, transport_factory=transport_factory, config_provider=provider)

        async with host:
            assert provider.is_watching

        assert not host.is_running
        assert not provider.is_watching
        assert transport_factory.latest("files").closed
        assert host.health_report()["status"] == "stopped"
        await host.shutdown()

    async def test_restart_after_shutdown(self, settings, transport_factory, config_path):
        provider = ServerConfigProvider(config_path, watch_interval_ms=10)
        host = ToolHost(settings, transport_factory=transport_factory, config_provider=provider)
        await host.start()
        await host.shutdown()

        await host.start()
        try:
            assert host.is_running
            assert host.registry.get("files").status is ConnectionStatus.CONNECTED
            assert len(transport_factory.created_for("files")) == 2
            assert len(host.catalog.get_all_tools()) == 3
        finally:
            await host.shutdown()


class TestExplicitConfigs:
    async def test_start_without_provider(self, settings, transport_factory, make_config):
        host = ToolHost(settings, transport_factory=transport_factory)
        await host.start([make_config("files"), make_config("other")])
        try:
            assert set(host.registry.ids()) == {"files", "other"}
            assert len(host.catalog.get_all_tools()) == 6
        finally:
            await host.shutdown()
