"""
toolcore.cli - Command-Line Interface

Operator commands for server config files and a running tool host.

Usage:
    python -m toolcore.cli config init config/mcp.config.json
    python -m toolcore.cli config validate config/mcp.config.json
    python -m toolcore.cli status --port 9100
    python -m toolcore.cli tools --port 9100
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import httpx
from rich.console import Console
from rich.table import Table

from toolcore.config import ServerConfigProvider
from toolcore.exceptions import ConfigurationError
from toolcore.settings import get_settings

logger = logging.getLogger(__name__)


async def _config_init(args: argparse.Namespace) -> None:
    """Write the default server config file."""
    provider = ServerConfigProvider(args.path)
    created = await provider.create_default()
    if created is None:
        print(json.dumps({"error": f"Config file already exists: {args.path}"}, indent=2))
        sys.exit(1)
    print(json.dumps({"created": str(provider.path), "servers": list(created.mcp_servers)}, indent=2))


async def _config_validate(args: argparse.Namespace) -> None:
    """Validate a server config file and list its servers."""
    provider = ServerConfigProvider(args.path)
    try:
        provider.load()
    except ConfigurationError as e:
        print(json.dumps({"valid": False, "error": str(e)}, indent=2))
        sys.exit(1)

    table = Table(title=f"Servers: {provider.path}", show_header=True)
    table.add_column("Server", style="cyan")
    table.add_column("Command", style="green")
    table.add_column("Enabled")
    table.add_column("Timeout (ms)", justify="right")

    for config in provider.get_server_configs():
        command = " ".join([config.command, *config.args])
        table.add_row(config.id, command, "yes" if config.enabled else "no", str(config.timeout_ms))

    Console().print(table)


async def _fetch(port: int, path: str) -> dict[str, Any]:
    """GET a JSON document from the runner's health server; exits 1 if unreachable or not JSON."""
    url = f"http://127.0.0.1:{port}{path}"
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.get(url, timeout=3.0)
            resp.raise_for_status()
            return resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.debug("Health probe failed for port %s: %s", port, exc, exc_info=True)
        print(json.dumps({"error": f"Tool host not reachable at {url}"}, indent=2))
        sys.exit(1)


async def _status(args: argparse.Namespace) -> None:
    """Show connection statuses of a running tool host."""
    report = await _fetch(args.port, "/health")

    table = Table(
        title=(
            f"Tool host: {report.get('status')}  "
            f"uptime={report.get('uptime_seconds')}s  "
            f"active executions={report.get('active_executions')}"
        ),
        show_header=True,
    )
    table.add_column("Server", style="cyan")
    table.add_column("Health", style="green")
    table.add_column("Connection")
    table.add_column("Tools", justify="right")
    table.add_column("Reconnects", justify="right")
    table.add_column("Last error")

    for server_id, status in sorted(report.get("connections", {}).items()):
        table.add_row(
            server_id,
            str(status.get("status")),
            str(status.get("connection_status")),
            str(status.get("tool_count", 0)),
            str(status.get("reconnect_attempts", 0)),
            status.get("error") or "",
        )

    Console().print(table)


async def _tools(args: argparse.Namespace) -> None:
    """List the namespaced tools of a running tool host."""
    listing = await _fetch(args.port, "/tools")

    table = Table(title=f"Tools ({listing.get('count', 0)})", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Category", style="green")
    table.add_column("Dangerous")
    table.add_column("Description")

    for tool in listing.get("tools", []):
        table.add_row(
            tool["name"],
            tool.get("category", ""),
            "yes" if tool.get("dangerous") else "no",
            tool.get("description", ""),
        )

    Console().print(table)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="toolcore",
        description="toolcore - MCP tool connection and execution host",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ── config command group ──
    config_parser = subparsers.add_parser("config", help="Manage server config files")
    config_sub = config_parser.add_subparsers(dest="action", help="Config actions")

    # init
    init_p = config_sub.add_parser("init", help="Write the default config file")
    init_p.add_argument("path", nargs="?", default=settings.config_path, help="Config file path")
    init_p.set_defaults(func=_config_init)

    # validate
    validate_p = config_sub.add_parser("validate", help="Validate a config file")
    validate_p.add_argument(
        "path", nargs="?", default=settings.config_path, help="Config file path"
    )
    validate_p.set_defaults(func=_config_validate)

    # ── runner probes ──
    status_p = subparsers.add_parser("status", help="Show connection statuses of a running host")
    status_p.add_argument("--port", type=int, default=settings.health_port, help="Health port")
    status_p.set_defaults(func=_status)

    tools_p = subparsers.add_parser("tools", help="List tools of a running host")
    tools_p.add_argument("--port", type=int, default=settings.health_port, help="Health port")
    tools_p.set_defaults(func=_tools)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    asyncio.run(args.func(args))


if __name__ == "__main__":
    main()
