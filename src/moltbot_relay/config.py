"""Configuration loading with environment variable substitution."""

import json
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from moltbot_relay.exceptions import ConfigError

ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")

MOLTBOT_PORT = 18789


def substitute_env_vars(value: Any) -> Any:
    """Recursively substitute ${VAR_NAME} patterns with environment variables."""
    if isinstance(value, str):
        def replace(match: re.Match[str]) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable {var_name} is not set")
            return env_value

        return ENV_VAR_PATTERN.sub(replace, value)
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(v) for v in value]
    return value


class GatewayConfig(BaseModel):
    """How the gateway process is started and recognised."""

    command: str = "/usr/local/bin/start-moltbot.sh"
    # Substrings identifying an already-running gateway in the process list
    signatures: list[str] = Field(
        default_factory=lambda: ["start-moltbot.sh", "openclaw gateway"]
    )
    port: int = MOLTBOT_PORT
    env: dict[str, str] = Field(default_factory=dict)
    start_timeout_seconds: float = 180.0
    poll_interval_ms: int = 500

    @property
    def start_poll_attempts(self) -> int:
        """Number of polls that fit in the start timeout."""
        return max(1, int(self.start_timeout_seconds * 1000 // self.poll_interval_ms))


class SandboxConfig(BaseModel):
    """Sandbox backend configuration."""

    backend: str = "local"  # local | remote
    # Backend-specific settings
    base_url: str | None = None  # For remote
    ws_url: str | None = None  # For remote, defaults to base_url
    api_token: str | None = None
    sandbox_id: str | None = None
    timeout_seconds: float = 30.0
    gateway_host: str = "127.0.0.1"  # For local
    shell: str = "/bin/sh"  # For local
    max_settled_processes: int = 100  # For local


class DebugConfig(BaseModel):
    """Introspection endpoints."""

    enabled: bool = False
    cli_default_timeout_seconds: int = 15
    cli_max_timeout_seconds: int = 120
    default_cli_command: str = "openclaw --help"
    version_command: str = "openclaw --version"
    runtime_version_command: str = "node --version"
    container_config_command: str = "cat /root/.clawdbot/clawdbot.json"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"  # json | text


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    ws_path: str = "/ws"
    cors_origins: list[str] = Field(default_factory=list)


class Config(BaseModel):
    """Main configuration for moltbot-relay."""

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    debug: DebugConfig = Field(default_factory=DebugConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML or JSON file."""
        path = Path(path)
        with path.open() as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Load configuration from a dictionary."""
        data = substitute_env_vars(data)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
