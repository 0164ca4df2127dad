"""
toolcore.config - Server Config Provider

Loads the tool provider configuration file, validates it with pydantic and
notifies subscribers when it changes (on save(), reload() or when the file
watcher sees a new modification time).

File format:
    {
      "mcpServers": {
        "filesystem": {
          "command": "npx",
          "args": ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
          "env": {},
          "disabled": false,
          "timeout": 30000,
          "maxConcurrency": 5
        }
      }
    }

Example:
    >>> provider = ServerConfigProvider("config/mcp.config.json")
    >>> [c.id for c in provider.get_enabled_servers()]
    ['filesystem']
    >>> unsubscribe = provider.subscribe(supervisor.update_server_configs)
"""

import asyncio
import contextlib
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from toolcore.connections.models import ServerConfig
from toolcore.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/mcp.config.json"

ConfigSubscriber = Callable[[list[ServerConfig]], Awaitable[None] | None]


class ServerEntry(BaseModel):
    """One server entry as written in the config file."""

    model_config = ConfigDict(populate_by_name=True)

    command: str = Field(..., min_length=1)
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    disabled: bool = False
    timeout: int = Field(default=30000, gt=0, description="Milliseconds")
    max_concurrency: int = Field(default=5, gt=0, alias="maxConcurrency")

    def to_server_config(self, server_id: str) -> ServerConfig:
        return ServerConfig(
            id=server_id,
            command=self.command,
            args=self.args,
            env=self.env,
            enabled=not self.disabled,
            timeout_ms=self.timeout,
            max_concurrency=self.max_concurrency,
        )


class ServerConfigFile(BaseModel):
    """Top-level document of the config file."""

    model_config = ConfigDict(populate_by_name=True)

    mcp_servers: dict[str, ServerEntry] = Field(default_factory=dict, alias="mcpServers")

    @field_validator("mcp_servers")
    @classmethod
    def _validate_ids(cls, value: dict[str, ServerEntry]) -> dict[str, ServerEntry]:
        for server_id in value:
            if not server_id:
                raise ValueError("server id must not be empty")
            if "." in server_id:
                raise ValueError(f"server id '{server_id}' must not contain '.'")
        return value

    def to_server_configs(self) -> list[ServerConfig]:
        return [entry.to_server_config(server_id) for server_id, entry in self.mcp_servers.items()]

    @classmethod
    def default(cls) -> "ServerConfigFile":
        return cls(
            mcp_servers={
                "filesystem": ServerEntry(
                    command="npx",
                    args=["-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
                ),
            }
        )


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"]) or "<root>"
        parts.append(f"{location}: {detail['msg']}")
    return "; ".join(parts)


class ServerConfigProvider:
    """
    Source of ServerConfigs for the ConnectionSupervisor.

    Subscribers receive the full list of ServerConfigs (enabled and
    disabled) after every successful save, reload or detected file change.
    They may be plain functions or coroutine functions.
    """

    def __init__(self, path: str | Path = DEFAULT_CONFIG_PATH, watch_interval_ms: int = 2000) -> None:
        self.path = Path(path)
        self.watch_interval_ms = watch_interval_ms
        self._config: ServerConfigFile | None = None
        self._subscribers: list[ConfigSubscriber] = []
        self._watch_task: asyncio.Task | None = None
        self._last_mtime: float | None = None

    # ------------------------------------------------------------------
    # Loading and validation
    # ------------------------------------------------------------------

    def load(self) -> ServerConfigFile:
        """Read and validate the config file.

        Raises:
            ConfigurationError: If the file is missing, not JSON, or invalid
        """
        if not self.path.exists():
            raise ConfigurationError(f"Config file not found: {self.path}")

        try:
            mtime = self.path.stat().st_mtime
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Config file {self.path} is not valid JSON: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file {self.path}: {e}") from e

        config = self.validate(data)
        self._config = config
        self._last_mtime = mtime

        logger.info(
            f"Loaded {len(config.mcp_servers)} server configs from {self.path}",
            extra={"config_path": str(self.path)},
        )
        return config

    @staticmethod
    def validate(data: Any) -> ServerConfigFile:
        """Validate raw config data.

        Raises:
            ConfigurationError: Naming every failing field path
        """
        try:
            return ServerConfigFile.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid server config: {_format_validation_error(e)}") from e

    def get_config(self) -> ServerConfigFile:
        if self._config is None:
            return self.load()
        return self._config

    def get_server_configs(self) -> list[ServerConfig]:
        return self.get_config().to_server_configs()

    def get_server_config(self, server_id: str) -> ServerConfig | None:
        entry = self.get_config().mcp_servers.get(server_id)
        return entry.to_server_config(server_id) if entry is not None else None

    def get_enabled_servers(self) -> list[ServerConfig]:
        return [config for config in self.get_server_configs() if config.enabled]

    def exists(self) -> bool:
        return self.path.exists()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    async def save(self, config: ServerConfigFile | dict[str, Any]) -> ServerConfigFile:
        """Validate, write as pretty JSON and notify subscribers."""
        validated = config if isinstance(config, ServerConfigFile) else self.validate(config)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = validated.model_dump(by_alias=True)
        self.path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")

        self._config = validated
        self._last_mtime = self.path.stat().st_mtime
        logger.info(f"Saved server config to {self.path}", extra={"config_path": str(self.path)})

        await self._notify()
        return validated

    async def create_default(self) -> ServerConfigFile | None:
        """Write the default config if no file exists. Returns None if one already does."""
        if self.exists():
            return None
        return await self.save(ServerConfigFile.default())

    async def reload(self) -> ServerConfigFile:
        """Re-read the file and notify subscribers.

        Raises:
            ConfigurationError: If the file is missing or invalid (no notification)
        """
        config = self.load()
        await self._notify()
        return config

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: ConfigSubscriber) -> Callable[[], None]:
        """Register a change callback. Returns a callable that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _notify(self) -> None:
        configs = self.get_server_configs()
        for callback in list(self._subscribers):
            try:
                result = callback(configs)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.error(
                    "Config subscriber failed",
                    exc_info=True,
                    extra={"config_path": str(self.path)},
                )

    # ------------------------------------------------------------------
    # File watching
    # ------------------------------------------------------------------

    @property
    def is_watching(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    def start_watching(self) -> None:
        """Poll the file's modification time and reload on change."""
        if self.is_watching:
            return
        if self._last_mtime is None and self.exists():
            self._last_mtime = self.path.stat().st_mtime
        self._watch_task = asyncio.create_task(self._watch_loop(), name="config-watcher")
        logger.info(
            f"Watching {self.path} for changes",
            extra={"interval_ms": self.watch_interval_ms},
        )

    async def stop_watching(self) -> None:
        if self._watch_task is None:
            return
        self._watch_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._watch_task
        self._watch_task = None

    async def _watch_loop(self) -> None:
        while True:
            await asyncio.sleep(self.watch_interval_ms / 1000)
            try:
                mtime = self.path.stat().st_mtime
            except OSError:
                # Missing while an editor replaces it; try again next tick.
                continue
            if mtime == self._last_mtime:
                continue

            self._last_mtime = mtime
            logger.info(f"Config file {self.path} changed, reloading")
            try:
                await self.reload()
            except ConfigurationError as e:
                logger.error(
                    f"Config reload failed, keeping previous config: {e}",
                    extra={"config_path": str(self.path)},
                )
