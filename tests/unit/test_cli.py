"""
Unit tests for toolcore.cli
"""

import argparse
import asyncio
import json

import pytest

from toolcore import cli
from toolcore.host import ToolHost
from toolcore.runner.health import HealthServer
from toolcore.settings import ToolcoreSettings


class TestParser:
    def test_config_commands(self):
        parser = cli.build_parser()

        args = parser.parse_args(["config", "validate", "servers.json"])

        assert args.path == "servers.json"
        assert args.func is cli._config_validate

    def test_probe_port(self):
        args = cli.build_parser().parse_args(["status", "--port", "9300"])

        assert args.port == 9300
        assert args.func is cli._status

    def test_no_command_prints_help(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])

        assert exc_info.value.code == 1
        assert "usage" in capsys.readouterr().out


class TestConfigCommands:
    def test_init_writes_default(self, tmp_path, capsys):
        path = tmp_path / "mcp.config.json"

        cli.main(["config", "init", str(path)])

        output = json.loads(capsys.readouterr().out)
        assert output["servers"] == ["filesystem"]
        assert "mcpServers" in json.loads(path.read_text(encoding="utf-8"))

    def test_init_refuses_existing(self, tmp_path, capsys):
        path = tmp_path / "mcp.config.json"
        path.write_text("{}", encoding="utf-8")

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["config", "init", str(path)])

        assert exc_info.value.code == 1
        assert "already exists" in capsys.readouterr().out
        assert path.read_text(encoding="utf-8") == "{}"

    def test_validate_lists_servers(self, tmp_path, capsys):
        path = tmp_path / "mcp.config.json"
        path.write_text(
            json.dumps({"mcpServers": {"files": {"command": "npx", "disabled": True}}}),
            encoding="utf-8",
        )

        cli.main(["config", "validate", str(path)])

        assert "files" in capsys.readouterr().out

    def test_validate_reports_errors(self, tmp_path, capsys):
        path = tmp_path / "mcp.config.json"
        path.write_text(json.dumps({"mcpServers": {"files": {}}}), encoding="utf-8")

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["config", "validate", str(path)])

        assert exc_info.value.code == 1
        output = json.loads(capsys.readouterr().out)
        assert output["valid"] is False
        assert "command" in output["error"]


class TestProbes:
    def test_status_unreachable(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["status", "--port", "1"])

        assert exc_info.value.code == 1
        assert "not reachable" in capsys.readouterr().out

    async def test_status_and_tools(self, transport_factory, make_config, capsys):
        host = ToolHost(ToolcoreSettings(_env_file=None), transport_factory=transport_factory)
        await host.start([make_config("files")])
        server = HealthServer(host, port=0)
        await server.start()

        try:
            await cli._status(argparse.Namespace(port=server.bound_port))
            status_output = capsys.readouterr().out
            await cli._tools(argparse.Namespace(port=server.bound_port))
            tools_output = capsys.readouterr().out
        finally:
            await server.stop()
            await host.shutdown()

        assert "files" in status_output
        assert "healthy" in status_output
        assert "files.read_file" in tools_output

    async def test_status_non_json_response(self, capsys):
        async def plain_text(reader, writer):
            await reader.readline()
            writer.write(b"HTTP/1.1 200 OK\r\nContent-Length: 5\r\nConnection: close\r\n\r\nhello")
            await writer.drain()
            writer.close()

        server = await asyncio.start_server(plain_text, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]

        try:
            with pytest.raises(SystemExit) as exc_info:
                await cli._status(argparse.Namespace(port=port))
        finally:
            server.close()
            await server.wait_closed()

        assert exc_info.value.code == 1
        assert "error" in json.loads(capsys.readouterr().out)
