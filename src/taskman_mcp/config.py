"""Configuration for the taskman MCP server and client.

Values come from environment variables; CLI flags override them.

Server environment:
    TASKMAN_API_BASE_URL          Taskman REST API base URL
    TASKMAN_API_TIMEOUT           REST call timeout (30, 30s, 500ms, 1m)
    TASKMAN_LOG_LEVEL             debug | info | warn | error
    TASKMAN_MCP_SERVER_NAME       Name reported in serverInfo
    TASKMAN_MCP_SERVER_VERSION    Version reported in serverInfo
    TASKMAN_MCP_TRANSPORT         stdio | http | both
    TASKMAN_MCP_HTTP_HOST         HTTP bind host
    TASKMAN_MCP_HTTP_PORT         HTTP bind port
    TASKMAN_MCP_SHUTDOWN_TIMEOUT  Seconds allowed for HTTP drain on shutdown

Client environment:
    MCP_SERVER_URL                MCP endpoint URL
    LOG_LEVEL                     debug | info | warn | error
    MCP_CLIENT_TIMEOUT            Per-call timeout
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class TransportMode(str, Enum):
    """Which listeners the server starts."""

    STDIO = "stdio"
    HTTP = "http"
    BOTH = "both"

    @classmethod
    def parse(cls, value: str) -> TransportMode:
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ConfigurationError(
                f"invalid transport mode {value!r} (expected one of: {choices})"
            ) from None

    @property
    def uses_stdio(self) -> bool:
        return self in (TransportMode.STDIO, TransportMode.BOTH)

    @property
    def uses_http(self) -> bool:
        return self in (TransportMode.HTTP, TransportMode.BOTH)


_DURATION_UNITS = (("ms", 0.001), ("s", 1.0), ("m", 60.0))


def parse_duration(value: str) -> float:
    """Parse a duration in seconds; accepts bare numbers and ms/s/m suffixes."""
    text = value.strip().lower()
    for suffix, scale in _DURATION_UNITS:
        if text.endswith(suffix):
            return float(text[: -len(suffix)]) * scale
    return float(text)


def _duration_env(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if not raw:
        return default
    try:
        return parse_duration(raw)
    except ValueError:
        logger.warning(
            f"Invalid duration in environment variable {key}={raw!r}, using default {default}"
        )
        return default


_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_log_level(level: str | None) -> int:
    """Map a level name to a logging level, defaulting to INFO."""
    if not level:
        return logging.INFO
    return _LOG_LEVELS.get(level.strip().lower(), logging.INFO)


def configure_logging(level: str | None) -> None:
    """Send logs to stderr (stdout carries protocol traffic in stdio mode)."""
    logging.basicConfig(
        level=parse_log_level(level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


@dataclass
class ServerConfig:
    """Server configuration."""

    api_base_url: str = "http://localhost:8080"
    api_timeout: float = 30.0
    log_level: str = "INFO"
    server_name: str = "taskman-mcp"
    server_version: str = "1.0.0"

    # Transport settings
    transport_mode: TransportMode = TransportMode.STDIO
    http_host: str = "localhost"
    http_port: int = 8081
    shutdown_timeout: float = 10.0

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ServerConfig:
        """Load configuration from environment variables."""
        env = os.environ if env is None else env
        defaults = cls()

        port_raw = env.get("TASKMAN_MCP_HTTP_PORT")
        http_port = defaults.http_port
        if port_raw:
            try:
                http_port = int(port_raw)
            except ValueError:
                raise ConfigurationError(f"invalid HTTP port: {port_raw!r}") from None

        config = cls(
            api_base_url=env.get("TASKMAN_API_BASE_URL") or defaults.api_base_url,
            api_timeout=_duration_env(env, "TASKMAN_API_TIMEOUT", defaults.api_timeout),
            log_level=env.get("TASKMAN_LOG_LEVEL") or defaults.log_level,
            server_name=env.get("TASKMAN_MCP_SERVER_NAME") or defaults.server_name,
            server_version=env.get("TASKMAN_MCP_SERVER_VERSION") or defaults.server_version,
            transport_mode=TransportMode.parse(
                env.get("TASKMAN_MCP_TRANSPORT") or defaults.transport_mode.value
            ),
            http_host=env.get("TASKMAN_MCP_HTTP_HOST") or defaults.http_host,
            http_port=http_port,
            shutdown_timeout=_duration_env(
                env, "TASKMAN_MCP_SHUTDOWN_TIMEOUT", defaults.shutdown_timeout
            ),
        )
        config.validate()

        logger.info(
            f"Server configuration loaded: transport={config.transport_mode.value}, "
            f"http={config.http_host}:{config.http_port}, api={config.api_base_url}"
        )
        return config

    def validate(self) -> None:
        """Reject configurations that cannot start."""
        if not isinstance(self.transport_mode, TransportMode):
            self.transport_mode = TransportMode.parse(str(self.transport_mode))
        if self.transport_mode.uses_http and not 0 <= self.http_port <= 65535:
            raise ConfigurationError(f"invalid HTTP port: {self.http_port}")
        if self.shutdown_timeout <= 0:
            raise ConfigurationError("shutdown timeout must be positive")


@dataclass
class ClientConfig:
    """Client configuration."""

    server_url: str = "http://localhost:3000"
    log_level: str = "info"
    timeout: float = 30.0

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ClientConfig:
        """Load configuration from environment variables."""
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            server_url=env.get("MCP_SERVER_URL") or defaults.server_url,
            log_level=env.get("LOG_LEVEL") or defaults.log_level,
            timeout=_duration_env(env, "MCP_CLIENT_TIMEOUT", defaults.timeout),
        )
