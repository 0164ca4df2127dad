"""
toolcore.settings - Centralized Configuration

Loads from .env files and TOOLCORE_* environment variables using
pydantic-settings, and builds the option models the components accept.

Usage:
    >>> from toolcore.settings import get_settings
    >>> settings = get_settings()
    >>> settings.connection_timeout_ms
    15000
    >>> options = settings.build_supervisor_options()
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from toolcore.config import DEFAULT_CONFIG_PATH
from toolcore.connections.models import SupervisorOptions
from toolcore.execution.models import ExecutionConfig, TimeoutConfig


def _default_per_tool_timeouts() -> dict[str, int]:
    return dict(TimeoutConfig().per_tool_ms)


class ToolcoreSettings(BaseSettings):
    """Server-level toolcore configuration.

    All TOOLCORE_* prefixed env vars are loaded automatically;
    per_tool_timeouts_ms is read as JSON.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TOOLCORE_",
        extra="ignore",
    )

    # -- Provider config file --------------------------------------------------
    config_path: str = DEFAULT_CONFIG_PATH
    config_watch_interval_ms: int = Field(default=2000, gt=0)

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Connection supervision ------------------------------------------------
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay_ms: int = Field(default=2000, ge=0)
    connection_timeout_ms: int = Field(default=15000, gt=0)
    health_check_interval_ms: int = Field(default=30000, gt=0)
    tool_cache_ttl_ms: int = Field(default=60000, ge=0)

    # -- Tool execution --------------------------------------------------------
    max_concurrent_executions: int = Field(default=5, gt=0)
    default_tool_timeout_ms: int = Field(default=30000, gt=0)
    max_tool_timeout_ms: int = Field(default=300000, gt=0)
    timeout_warning_threshold_ms: int = Field(default=10000, gt=0)
    per_tool_timeouts_ms: dict[str, int] = Field(default_factory=_default_per_tool_timeouts)
    history_capacity: int = Field(default=1000, gt=0)
    enable_history_logging: bool = True
    enable_progress_tracking: bool = True
    stage_pause_ms: int = Field(default=0, ge=0)

    # -- Health server ---------------------------------------------------------
    # Defaults to loopback; set TOOLCORE_HEALTH_HOST=0.0.0.0 for container use.
    health_host: str = "127.0.0.1"
    health_port: int = 9100

    # -- Helpers ---------------------------------------------------------------

    def build_supervisor_options(self) -> SupervisorOptions:
        return SupervisorOptions(
            max_reconnect_attempts=self.max_reconnect_attempts,
            reconnect_delay_ms=self.reconnect_delay_ms,
            connection_timeout_ms=self.connection_timeout_ms,
            health_check_interval_ms=self.health_check_interval_ms,
            tool_cache_ttl_ms=self.tool_cache_ttl_ms,
        )

    def build_execution_config(self) -> ExecutionConfig:
        return ExecutionConfig(
            timeouts=TimeoutConfig(
                default_ms=self.default_tool_timeout_ms,
                per_tool_ms=dict(self.per_tool_timeouts_ms),
                max_timeout_ms=self.max_tool_timeout_ms,
                warning_threshold_ms=self.timeout_warning_threshold_ms,
            ),
            max_concurrent_executions=self.max_concurrent_executions,
            enable_progress_tracking=self.enable_progress_tracking,
            enable_history_logging=self.enable_history_logging,
            history_capacity=self.history_capacity,
            stage_pause_ms=self.stage_pause_ms,
        )


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_settings() -> ToolcoreSettings:
    """Return the cached ToolcoreSettings singleton."""
    return ToolcoreSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for tests)."""
    get_settings.cache_clear()
