"""teleshell command line."""

from __future__ import annotations

import asyncio
import signal
from contextlib import suppress
from pathlib import Path

import typer
from loguru import logger

from teleshell.channels.console import ConsoleGateway
from teleshell.config import Settings, load_settings, require_bot_token, require_tool_server
from teleshell.core.bootstrap import build_client_factory, build_orchestrator, build_telegram_gateway
from teleshell.core.orchestrator import Orchestrator
from teleshell.errors import (
    ClientUnavailableError,
    ConfigurationError,
    ProtocolError,
    StartupError,
    TransportError,
)
from teleshell.logging_utils import LogProfile, configure_logging
from teleshell.mcp.protocol import ToolDescriptor

app = typer.Typer(
    name="teleshell",
    help="Run chat requests as shell commands planned by a tool server.",
    add_completion=False,
)

CONFIG_OPTION = typer.Option(None, "--config", "-c", envvar="TELESHELL_CONFIG", help="TOML config file")
LOG_LEVEL_OPTION = typer.Option(None, "--log-level", help="Override the configured log level")


def _fail(message: str) -> typer.Exit:
    typer.echo(f"error: {message}", err=True)
    return typer.Exit(1)


def _load(config: Path | None, log_level: str | None, *, profile: LogProfile = "default") -> Settings:
    try:
        settings = load_settings(config)
        require_tool_server(settings)
    except ConfigurationError as exc:
        raise _fail(str(exc)) from exc
    configure_logging(profile=profile, level=log_level or settings.log_level)
    return settings


def _local_settings(settings: Settings) -> Settings:
    """Settings for stdin/stdout runs: no allow-list and reports always shown."""
    return settings.model_copy(
        update={
            "telegram": settings.telegram.model_copy(update={"allowed_chat_ids": set()}),
            "executor": settings.executor.model_copy(update={"echo_result": True}),
        }
    )


async def _serve(orchestrator: Orchestrator) -> None:
    task = asyncio.current_task()
    if task is not None:
        with suppress(NotImplementedError):
            asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, task.cancel)
    try:
        await orchestrator.run()
    except asyncio.CancelledError:
        logger.info("teleshell.shutdown reason=signal")


def _run_orchestrator(orchestrator: Orchestrator) -> None:
    try:
        asyncio.run(_serve(orchestrator))
    except KeyboardInterrupt:
        logger.info("teleshell.shutdown reason=interrupt")
    except (StartupError, ClientUnavailableError, ConfigurationError) as exc:
        logger.error("teleshell.fatal error={}", exc)
        raise _fail(str(exc)) from exc


@app.command()
def run(
    config: Path | None = CONFIG_OPTION,
    log_level: str | None = LOG_LEVEL_OPTION,
) -> None:
    """Start the Telegram bot."""

    settings = _load(config, log_level)
    try:
        require_bot_token(settings)
    except ConfigurationError as exc:
        raise _fail(str(exc)) from exc
    logger.info(
        "teleshell.start allowed_chats={} tool_server={}",
        sorted(settings.allowed_chats) or "all",
        settings.mcp.command,
    )
    _run_orchestrator(build_orchestrator(settings, build_telegram_gateway(settings)))


@app.command()
def console(
    config: Path | None = CONFIG_OPTION,
    log_level: str | None = LOG_LEVEL_OPTION,
) -> None:
    """Read requests from stdin and print reports."""

    settings = _local_settings(_load(config, log_level, profile="console"))
    _run_orchestrator(build_orchestrator(settings, ConsoleGateway()))


@app.command("exec")
def exec_message(
    message: str = typer.Argument(..., help="Request text sent to the tool server"),
    config: Path | None = CONFIG_OPTION,
    log_level: str | None = LOG_LEVEL_OPTION,
) -> None:
    """Process one request and print its report."""

    settings = _local_settings(_load(config, log_level, profile="console"))
    _run_orchestrator(build_orchestrator(settings, ConsoleGateway(lines=[message])))


async def _list_tools(settings: Settings) -> list[ToolDescriptor]:
    client = build_client_factory(settings)()
    try:
        await client.start()
        return await client.list_tools()
    finally:
        await client.close()


@app.command()
def tools(
    config: Path | None = CONFIG_OPTION,
    log_level: str | None = LOG_LEVEL_OPTION,
) -> None:
    """List the tools offered by the configured tool server."""

    settings = _load(config, log_level, profile="console")
    try:
        descriptors = asyncio.run(_list_tools(settings))
    except (ProtocolError, TransportError) as exc:
        raise _fail(str(exc)) from exc
    if not descriptors:
        typer.echo("(no tools)")
        return
    for descriptor in descriptors:
        marker = "*" if descriptor.name == settings.mcp.tool_name else " "
        typer.echo(f"{marker} {descriptor.name}: {descriptor.description}")
