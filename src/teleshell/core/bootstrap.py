"""Build runtime objects from settings."""

from __future__ import annotations

from teleshell.channels.base import BaseGateway
from teleshell.channels.telegram import TelegramConfig, TelegramGateway
from teleshell.config import Settings
from teleshell.core.orchestrator import ClientFactory, Orchestrator
from teleshell.executor.pipeline import ExecutionPipeline
from teleshell.executor.runner import CommandRunner
from teleshell.mcp.client import ProtocolClient
from teleshell.mcp.transport import LaunchSpec


def build_launch_spec(settings: Settings) -> LaunchSpec:
    mcp = settings.mcp
    return LaunchSpec(
        command=mcp.command,
        args=tuple(mcp.args),
        env=dict(mcp.env),
        working_dir=mcp.working_dir,
    )


def build_client_factory(settings: Settings) -> ClientFactory:
    """Return a factory producing fresh, unstarted protocol clients."""
    launch = build_launch_spec(settings)

    def _factory() -> ProtocolClient:
        return ProtocolClient(
            launch,
            request_timeout=settings.mcp.request_timeout_secs,
            handshake_timeout=settings.mcp.handshake_timeout_secs,
        )

    return _factory


def build_pipeline(settings: Settings) -> ExecutionPipeline:
    runner = CommandRunner(
        shell=settings.executor.shell,
        output_limit=settings.executor.output_limit_bytes,
    )
    return ExecutionPipeline(runner)


def build_telegram_gateway(settings: Settings) -> TelegramGateway:
    telegram = settings.telegram
    return TelegramGateway(
        TelegramConfig(
            token=telegram.bot_token,
            poll_timeout=telegram.poll_timeout,
            drop_pending_updates=telegram.drop_pending_updates,
            retry_delay=telegram.retry_delay,
        )
    )


def build_orchestrator(settings: Settings, gateway: BaseGateway) -> Orchestrator:
    return Orchestrator(
        settings,
        gateway,
        build_client_factory(settings),
        build_pipeline(settings),
    )
