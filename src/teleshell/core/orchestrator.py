"""Control loop: poll, filter, call the tool server, execute, report."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextvars import ContextVar
from dataclasses import dataclass

from loguru import logger

from teleshell.channels.base import BaseGateway
from teleshell.channels.events import InboundMessage, OutboundMessage
from teleshell.config import Settings
from teleshell.core.report import ACKNOWLEDGEMENT, format_plan, format_report, format_tool_error
from teleshell.errors import (
    ClientFailedError,
    ClientUnavailableError,
    DeliveryError,
    HandshakeError,
    ProtocolError,
    StartupError,
)
from teleshell.executor.models import ExecutionReport
from teleshell.executor.pipeline import ExecutionPipeline
from teleshell.mcp.client import ProtocolClient, SessionState

ClientFactory = Callable[[], ProtocolClient]

_current_chat: ContextVar[str] = ContextVar("teleshell_chat", default="-")


def current_chat() -> str:
    """Chat id of the message being processed by the current task."""
    return _current_chat.get()


@dataclass(frozen=True)
class MessageResult:
    """Outcome of processing one inbound message."""

    message: InboundMessage
    report: ExecutionReport | None = None
    error: str | None = None
    delivered: bool = True

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.report is not None and self.report.succeeded


class Orchestrator:
    """Own the protocol client and execution pipeline for the process lifetime.

    Chats are processed concurrently, messages of one chat strictly in order.
    Tool calls are serialized by the client and command sequences by a global
    execution lock, since all chats share one working directory. Only the
    main loop writes the read cursor, after a whole batch has been reported.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: BaseGateway,
        client_factory: ClientFactory,
        pipeline: ExecutionPipeline,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.pipeline = pipeline
        self._client_factory = client_factory
        self._client: ProtocolClient | None = None
        self._cursor: int | None = None
        self._restarts = 0
        self._terminal_reason: str | None = None
        self._stop_requested = False
        self._client_lock = asyncio.Lock()
        self._exec_lock = asyncio.Lock()

    @property
    def cursor(self) -> int | None:
        return self._cursor

    @property
    def client(self) -> ProtocolClient | None:
        return self._client

    @property
    def restarts(self) -> int:
        return self._restarts

    @property
    def terminal_reason(self) -> str | None:
        return self._terminal_reason

    async def start(self) -> None:
        """Launch the tool server and complete the handshake.

        Raises:
            StartupError: The first handshake failed.
        """
        try:
            await self._spawn_client()
        except HandshakeError as exc:
            raise StartupError(f"tool server handshake failed: {exc}") from exc

    async def run(self) -> None:
        """Run polling cycles until stopped or the channel closes.

        Raises:
            StartupError: The tool server could not be started.
            ClientUnavailableError: The tool server failed and may not be restarted.
        """
        await self.start()
        try:
            await self.gateway.start()
            logger.info("orchestrator.started channel={} tool={}", self.gateway.name, self.settings.mcp.tool_name)
            while not self._stop_requested and not self.gateway.closed:
                await self.run_cycle()
        finally:
            await self.shutdown()

    def stop(self) -> None:
        self._stop_requested = True

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.close()
        await self.gateway.stop()
        logger.info("orchestrator.stopped cursor={}", self._cursor)

    async def run_cycle(self) -> list[MessageResult]:
        """Process one polled batch and commit its cursor."""
        batch = await self.gateway.fetch_next(self._cursor)
        by_chat: dict[str, list[InboundMessage]] = {}
        for message in batch.messages:
            if self._is_allowed(message):
                by_chat.setdefault(message.chat_id, []).append(message)

        per_chat = await asyncio.gather(*(self._process_chat(messages) for messages in by_chat.values()))
        results = [result for chat_results in per_chat for result in chat_results]

        undelivered = [result for result in results if not result.delivered]
        if undelivered and not self.settings.orchestrator.advance_on_delivery_failure:
            logger.warning("orchestrator.cursor.held cursor={} undelivered={}", self._cursor, len(undelivered))
        elif batch.cursor is not None:
            self._cursor = batch.cursor

        if self._terminal_reason is not None:
            raise ClientUnavailableError(self._terminal_reason)
        return results

    def _is_allowed(self, message: InboundMessage) -> bool:
        allowed = self.settings.allowed_chats
        if not allowed or message.chat_id in allowed:
            return True
        logger.debug("orchestrator.drop chat_id={} reason=not_allowed", message.chat_id)
        return False

    async def _process_chat(self, messages: list[InboundMessage]) -> list[MessageResult]:
        _current_chat.set(messages[0].chat_id)
        results: list[MessageResult] = []
        for message in messages:
            try:
                results.append(await self.process_message(message))
            except Exception as exc:
                logger.exception("orchestrator.message.error chat_id={}", message.chat_id)
                results.append(MessageResult(message=message, error=str(exc)))
        return results

    async def process_message(self, message: InboundMessage) -> MessageResult:
        """Run one message through tool call, execution and reporting."""
        logger.info("orchestrator.message.start chat_id={} message_id={}", message.chat_id, message.message_id)
        delivered = True
        if self.settings.orchestrator.acknowledge:
            delivered = await self._send(message, ACKNOWLEDGEMENT)

        try:
            client = await self._ready_client()
        except (ClientFailedError, ClientUnavailableError) as exc:
            return await self._report_error(message, exc, delivered)
        try:
            result = await client.call_tool(
                self.settings.mcp.tool_name,
                {self.settings.mcp.argument_name: message.text},
            )
        except ClientFailedError as exc:
            failed = await self._report_error(message, exc, delivered)
            await self._recover()
            return failed
        except ProtocolError as exc:
            return await self._report_error(message, exc, delivered)

        commands = result.commands
        if commands and self.settings.executor.announce_plan:
            delivered = await self._send(message, format_plan(commands)) and delivered

        async with self._exec_lock:
            report = await self.pipeline.run_all(
                commands,
                self.settings.executor.working_dir,
                self.settings.executor.timeout_secs,
            )
        logger.info(
            "orchestrator.message.done chat_id={} classification={} attempted={}/{}",
            message.chat_id,
            report.classification.value,
            report.attempted,
            report.requested,
        )

        # A stopped pipeline is always reported; success only when echo is on.
        if self.settings.executor.echo_result or not report.succeeded:
            delivered = await self._send(message, format_report(report)) and delivered
        return MessageResult(message=message, report=report, delivered=delivered)

    async def _report_error(self, message: InboundMessage, error: Exception, delivered: bool) -> MessageResult:
        logger.error("orchestrator.tool_call.failed chat_id={} error={}", message.chat_id, error)
        delivered = await self._send(message, format_tool_error(error)) and delivered
        return MessageResult(message=message, error=str(error), delivered=delivered)

    async def _send(self, message: InboundMessage, text: str) -> bool:
        outbound = OutboundMessage(
            channel=message.channel,
            chat_id=message.chat_id,
            content=text,
            reply_to_message_id=message.message_id,
        )
        try:
            await self.gateway.send(outbound)
        except DeliveryError as exc:
            logger.error("orchestrator.delivery.failed chat_id={} error={}", message.chat_id, exc)
            return False
        return True

    async def _spawn_client(self) -> ProtocolClient:
        client = self._client_factory()
        self._client = client
        await client.start()
        return client

    async def _ready_client(self) -> ProtocolClient:
        async with self._client_lock:
            if self._terminal_reason is not None:
                raise ClientUnavailableError(self._terminal_reason)
            client = self._client
            if client is not None and client.state is SessionState.READY:
                return client
            return await self._restart_client()

    async def _recover(self) -> None:
        async with self._client_lock:
            client = self._client
            if self._terminal_reason is not None or (client is not None and client.state is SessionState.READY):
                return
            try:
                await self._restart_client()
            except (ClientFailedError, ClientUnavailableError) as exc:
                logger.error("orchestrator.client.recover_failed error={}", exc)

    async def _restart_client(self) -> ProtocolClient:
        """Replace a failed client with a fresh subprocess. Caller holds the client lock."""
        previous = self._client
        reason = previous.failure_reason if previous is not None else "not started"
        mcp = self.settings.mcp
        if not mcp.restart_on_failure or self._restarts >= mcp.max_restarts:
            self._terminal_reason = f"tool server unavailable after {self._restarts} restart(s): {reason}"
            logger.critical("orchestrator.client.terminal reason={}", self._terminal_reason)
            raise ClientUnavailableError(self._terminal_reason)

        if previous is not None:
            await previous.close()
        self._restarts += 1
        logger.warning("orchestrator.client.restart attempt={} reason={}", self._restarts, reason)
        try:
            return await self._spawn_client()
        except HandshakeError as exc:
            raise ClientFailedError(f"tool server restart failed: {exc}") from exc
