"""Configuration management for teleshell."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from teleshell.errors import ConfigurationError


class TelegramSettings(BaseModel):
    """Telegram channel options."""

    bot_token: str = Field(default="", description="Bot API token")
    allowed_chat_ids: set[int] = Field(default_factory=set, description="Chats allowed to run commands, empty for all")
    poll_timeout: int = Field(default=30, ge=0, description="Long polling timeout in seconds")
    drop_pending_updates: bool = Field(default=True, description="Drop updates queued before startup")
    retry_delay: float = Field(default=3.0, ge=0, description="Delay after a failed poll in seconds")


class McpSettings(BaseModel):
    """Tool server launch and call options."""

    command: str = Field(default="", description="Tool server executable")
    args: list[str] = Field(default_factory=list, description="Tool server arguments")
    env: dict[str, str] = Field(default_factory=dict, description="Extra environment for the tool server")
    working_dir: Path | None = Field(default=None, description="Tool server working directory")
    tool_name: str = Field(default="plan_commands", description="Tool called for every message")
    argument_name: str = Field(default="message", description="Tool argument receiving the message text")
    request_timeout_secs: float = Field(default=120.0, gt=0, description="Deadline of one protocol round trip")
    handshake_timeout_secs: float = Field(default=30.0, gt=0, description="Deadline of the initialize exchange")
    restart_on_failure: bool = Field(default=True, description="Spawn a new tool server after a crash")
    max_restarts: int = Field(default=5, ge=0, description="Restarts allowed for the process lifetime")


class ExecutorSettings(BaseModel):
    """Command execution options."""

    working_dir: Path | None = Field(default=None, description="Working directory for commands")
    timeout_secs: float = Field(default=120.0, gt=0, description="Per-command deadline in seconds")
    echo_result: bool = Field(default=True, description="Send the execution report for successful runs")
    announce_plan: bool = Field(default=False, description="Send the command plan before executing")
    shell: str = Field(default="sh", description="Shell used to run each command")
    output_limit_bytes: int = Field(default=64 * 1024, gt=0, description="Captured bytes kept per stream")


class OrchestratorSettings(BaseModel):
    """Control loop options."""

    acknowledge: bool = Field(default=False, description="Send a notice when a message is picked up")
    advance_on_delivery_failure: bool = Field(
        default=True, description="Commit the read cursor even when a report could not be delivered"
    )


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TELESHELL_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    mcp: McpSettings = Field(default_factory=McpSettings)
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    log_level: str = Field(default="INFO", description="Log level")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # File values arrive as init kwargs; the environment overrides them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def allowed_chats(self) -> frozenset[str]:
        return frozenset(str(chat_id) for chat_id in self.telegram.allowed_chat_ids)


def read_config_file(path: Path) -> dict[str, Any]:
    """Read one TOML configuration file."""
    try:
        with open(path, "rb") as file:
            return tomllib.load(file)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"config file not found: {path}") from exc
    except OSError as exc:
        raise ConfigurationError(f"cannot read config file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"invalid TOML in {path}: {exc}") from exc


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from an optional TOML file and the environment.

    Args:
        path: Optional TOML file. Environment variables prefixed with
            ``TELESHELL_`` override values from the file.

    Returns:
        Settings instance

    Raises:
        ConfigurationError: The file is missing or invalid, or validation failed.
    """
    data = read_config_file(path) if path is not None else {}
    try:
        return Settings(**data)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


def require_tool_server(settings: Settings) -> None:
    """Fail fast when no tool server command is configured."""
    if not settings.mcp.command.strip():
        raise ConfigurationError("mcp.command is required")


def require_bot_token(settings: Settings) -> None:
    if not settings.telegram.bot_token.strip():
        raise ConfigurationError("telegram.bot_token is required")
