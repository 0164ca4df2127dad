"""
toolcore.runner.__main__ - CLI entry point for the tool host runner

Usage:
    python -m toolcore.runner --config config/mcp.config.json --health-port 9100
"""

import argparse
import asyncio
import logging
import sys

from toolcore.runner.main import run_host
from toolcore.settings import get_settings


def main() -> None:
    """Parse arguments and run the tool host process."""
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="toolcore-runner",
        description="Run a tool host that supervises MCP server connections",
    )
    parser.add_argument(
        "--config",
        default=settings.config_path,
        help=f"Path to the server config file (default: {settings.config_path})",
    )
    parser.add_argument(
        "--health-port",
        type=int,
        default=settings.health_port,
        help=f"Port for the health check HTTP server (default: {settings.health_port})",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level.upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        asyncio.run(
            run_host(
                config_path=args.config,
                health_port=args.health_port,
                settings=settings,
            )
        )
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
