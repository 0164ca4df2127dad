"""
toolcore.runner.main - Tool Host Process Entry Point

Runs a tool host as a persistent process:
1. Loads and validates the server config file
2. Starts the ToolHost (connects servers, health monitoring, config watching)
3. Starts a health check server
4. Waits for SIGTERM/SIGINT for graceful shutdown
5. Stops the health server and shuts the host down on exit
"""

import asyncio
import logging
import signal
import sys

from toolcore.config import ServerConfigProvider
from toolcore.exceptions import ConfigurationError
from toolcore.host import ToolHost
from toolcore.runner.health import HealthServer
from toolcore.settings import ToolcoreSettings, get_settings

logger = logging.getLogger(__name__)


async def run_host(
    config_path: str,
    health_port: int,
    settings: ToolcoreSettings | None = None,
) -> None:
    """
    Main entry point for running a tool host process.

    Args:
        config_path: Path to the server config file
        health_port: Port for the health check HTTP server
        settings: Settings override (defaults to get_settings())
    """
    settings = settings or get_settings()
    logger.info(f"Starting tool host runner: config={config_path}, health_port={health_port}")

    provider = ServerConfigProvider(config_path, watch_interval_ms=settings.config_watch_interval_ms)
    try:
        provider.load()
    except ConfigurationError as e:
        logger.error(f"Cannot start tool host: {e}", extra={"config_path": config_path})
        sys.exit(1)

    host = ToolHost(settings, config_provider=provider)
    health = HealthServer(host, port=health_port, bind_host=settings.health_host)

    # Wire up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal, stopping tool host...")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _signal_handler)

    try:
        await host.start()
        await health.start()
        await stop_event.wait()
    except Exception:
        logger.error("Tool host runner crashed", exc_info=True)
    finally:
        await health.stop()
        await host.shutdown()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        logger.info("Tool host runner exiting")
