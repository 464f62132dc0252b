"""
Configuration management for warmstack

Handles configuration loading from environment variables, the user settings
file and command-line arguments using Pydantic settings.
"""

import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
VALID_RUNTIMES = ["auto", "docker", "podman", "container"]


def _home_path(*parts: str) -> str:
    return str(Path.home().joinpath(*parts))


def expand_path(path: str) -> str:
    """Expand ``~`` and make a path absolute."""
    return str(Path(path).expanduser().resolve())


class UserSettings(BaseModel):
    """Settings persisted by ``runtime set`` and ``mcp set-path``."""

    runtime: Optional[str] = Field(None, description="Preferred container runtime")
    mcp_path: Optional[str] = Field(None, description="Global MCP config directory")
    model: Optional[str] = Field(None, description="Global default worker model")

    @field_validator("runtime")
    @classmethod
    def validate_runtime(cls, v: Optional[str]) -> Optional[str]:
        """Ensure the stored runtime is one we know about."""
        if v is None:
            return v
        if v.lower() not in VALID_RUNTIMES:
            raise ValueError(f"runtime must be one of: {', '.join(VALID_RUNTIMES)}")
        return v.lower()


class WarmstackConfig(BaseSettings):
    """
    Main configuration class for warmstack.

    Configuration is loaded from:
    1. Explicit keyword arguments / CLI overrides (highest priority)
    2. Environment variables
    3. .env file
    4. User settings file (applied by load_config)
    5. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="WARMSTACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging configuration
    log_level: str = Field(
        default="WARNING",
        description="Console logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_dir: str = Field(
        default_factory=lambda: _home_path(".warmstack", "logs"),
        description="Directory for log files",
    )
    verbose: bool = Field(
        default=False,
        description="Enable verbose console output",
    )

    # Container configuration
    container_runtime: str = Field(
        default="auto",
        description="Container runtime (auto, docker, podman or container)",
    )
    image_name: str = Field(
        default="ghcr.io/cympak2/copilot-in-container:latest",
        description="Image the worker containers are created from",
    )
    container_prefix: str = Field(
        default="copilot-server",
        description="Prefix for instance container names",
    )
    worker_command: str = Field(
        default="copilot",
        description="Worker executable started inside the container",
    )
    container_workdir: str = Field(
        default="/workspace",
        description="Mount point of the workspace inside the container",
    )
    worker_config_dir: str = Field(
        default_factory=lambda: _home_path(".config", "gh-copilot"),
        description="Host directory holding the worker's own configuration",
    )
    dns_server: str = Field(
        default="8.8.8.8",
        description="DNS server handed to worker containers",
    )

    # Instance state
    state_dir: str = Field(
        default_factory=lambda: _home_path(".warmstack", "servers"),
        description="Directory holding one state file per instance",
    )

    # Port discovery
    port_discovery_timeout: float = Field(
        default=30.0,
        description="Seconds to wait for a worker to announce its port",
    )
    port_discovery_interval: float = Field(
        default=0.5,
        description="Seconds between log polls during port discovery",
    )

    # Worker
    default_model: Optional[str] = Field(
        default=None,
        description="Model for new instances when neither --model nor a local model.conf is set",
    )
    prompt_timeout: float = Field(
        default=3600.0,
        description="Seconds a non-interactive connect may run before it is cut off",
    )

    # Auxiliary (MCP) configuration
    mcp_path: Optional[str] = Field(
        default=None,
        description="Global MCP config directory containing mcp-config.json",
    )

    # Credentials
    github_token: Optional[str] = Field(
        default=None,
        description="GitHub token handed to the worker (falls back to gh auth token)",
    )

    settings_file: str = Field(
        default_factory=lambda: _home_path(".config", "warmstack", "config.yml"),
        description="Path to the persisted user settings file",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        if v.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}")
        return v.upper()

    @field_validator("container_runtime")
    @classmethod
    def validate_container_runtime(cls, v: str) -> str:
        """Validate container runtime is supported."""
        if v.lower() not in VALID_RUNTIMES:
            raise ValueError(
                f"container_runtime must be one of: {', '.join(VALID_RUNTIMES)}"
            )
        return v.lower()

    @field_validator("port_discovery_timeout", "port_discovery_interval", "prompt_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts and intervals must be positive")
        return v

    def get_container_name(self, instance_name: str) -> str:
        """Get the container name derived from an instance name."""
        return f"{self.container_prefix}-{instance_name}"

    def get_log_dir_path(self) -> Path:
        """Get log directory as Path object."""
        return Path(self.log_dir)

    def get_state_dir_path(self) -> Path:
        """Get instance state directory as Path object."""
        return Path(self.state_dir).expanduser()

    def create_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        log_path = self.get_log_dir_path()
        log_path.mkdir(parents=True, exist_ok=True)
        (log_path / "containers").mkdir(exist_ok=True)
        self.get_state_dir_path().mkdir(parents=True, exist_ok=True)

    def mask_sensitive_values(self) -> dict:
        """Get configuration dict with sensitive values masked."""
        config_dict = self.model_dump()
        if config_dict.get("github_token"):
            config_dict["github_token"] = "***"
        return config_dict

    def load_user_settings(self) -> UserSettings:
        """Load persisted user settings, returning defaults if absent."""
        settings_path = Path(self.settings_file).expanduser()

        if not settings_path.exists():
            logger.debug(f"User settings file not found: {settings_path}")
            return UserSettings()

        import yaml

        try:
            with open(settings_path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.warning(f"Ignoring unreadable settings file {settings_path}: {e}")
            return UserSettings()

        if not data:
            return UserSettings()

        try:
            return UserSettings(**data)
        except ValueError as e:
            logger.warning(f"Ignoring invalid settings in {settings_path}: {e}")
            return UserSettings()

    def save_user_settings(self, settings: UserSettings) -> None:
        """Save user settings to the settings file."""
        settings_path = Path(self.settings_file).expanduser()
        settings_path.parent.mkdir(parents=True, exist_ok=True)

        import yaml

        data = settings.model_dump(exclude_none=True)
        with open(settings_path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=True)

        logger.info(f"Saved user settings to {settings_path}")


def load_config(
    config_file: Optional[str] = None,
    cli_overrides: Optional[dict] = None,
) -> WarmstackConfig:
    """
    Load configuration with optional settings file and CLI overrides.

    Values from the user settings file only fill in fields that were not
    set through the environment or the CLI.

    Args:
        config_file: Optional user settings file path
        cli_overrides: CLI argument overrides

    Returns:
        Loaded configuration
    """
    overrides = dict(cli_overrides or {})
    if config_file:
        overrides["settings_file"] = config_file

    config = WarmstackConfig(**overrides)

    settings = config.load_user_settings()
    defaults = {}
    if settings.runtime and "container_runtime" not in config.model_fields_set:
        defaults["container_runtime"] = settings.runtime
    if settings.mcp_path and "mcp_path" not in config.model_fields_set:
        defaults["mcp_path"] = settings.mcp_path
    if settings.model and "default_model" not in config.model_fields_set:
        defaults["default_model"] = settings.model

    if defaults:
        logger.debug(f"Applying user settings: {defaults}")
        config = WarmstackConfig(**{**overrides, **defaults})

    config.create_directories()

    return config

