"""Tool protocol client over a child process's stdio."""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from collections.abc import Callable
from contextlib import suppress
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import ValidationError

from teleshell import __version__
from teleshell.errors import (
    ClientFailedError,
    HandshakeError,
    MalformedResponseError,
    MalformedResultError,
    ProtocolError,
    ProtocolTimeoutError,
    RemoteError,
    SessionNotReadyError,
    SpawnError,
    TransportError,
    TransportReadError,
    TransportWriteError,
)
from teleshell.mcp.protocol import (
    METHOD_NOT_FOUND,
    PROTOCOL_VERSION,
    InitializeResult,
    ProtocolRequest,
    ProtocolResponse,
    ServerNotification,
    ServerRequest,
    ToolDescriptor,
    ToolListPage,
    encode_error,
    encode_notification,
    encode_result,
    parse_frame,
)
from teleshell.mcp.results import ToolCallResult, parse_tool_result
from teleshell.mcp.transport import LaunchSpec, ProcessTransport

DEFAULT_REQUEST_TIMEOUT_SECONDS = 120.0
DEFAULT_HANDSHAKE_TIMEOUT_SECONDS = 30.0
EXPIRED_ID_MEMORY = 256


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    HANDSHAKING = "handshaking"
    READY = "ready"
    CLOSED = "closed"
    FAILED = "failed"


class ProtocolClient:
    """Speak the tool protocol with one server subprocess.

    The session moves ``UNINITIALIZED -> HANDSHAKING -> READY``; any transport
    failure moves it to ``FAILED``, which is terminal. A failed client is
    replaced, never revived. Requests are serialized: one round trip is in
    flight at a time and queued callers are served in arrival order.
    """

    def __init__(
        self,
        launch: LaunchSpec,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT_SECONDS,
        client_info: dict[str, Any] | None = None,
        transport_factory: Callable[[LaunchSpec], ProcessTransport] = ProcessTransport,
    ) -> None:
        self.launch = launch
        self.request_timeout = request_timeout
        self.handshake_timeout = handshake_timeout
        self.client_info = client_info or {"name": "teleshell", "version": __version__}
        self.server_info: dict[str, Any] = {}
        self.server_capabilities: dict[str, Any] = {}
        self._transport_factory = transport_factory
        self._transport: ProcessTransport | None = None
        self._state = SessionState.UNINITIALIZED
        self._failure_reason: str | None = None
        self._ids = itertools.count(1)
        self._request_count = 0
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._expired: deque[int] = deque(maxlen=EXPIRED_ID_MEMORY)
        self._call_lock = asyncio.Lock()
        self._reader_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def failure_reason(self) -> str | None:
        return self._failure_reason

    @property
    def request_count(self) -> int:
        """Number of correlation ids issued in this session."""
        return self._request_count

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def transport(self) -> ProcessTransport | None:
        return self._transport

    async def start(self) -> None:
        """Spawn the server and complete the initialize handshake.

        Raises:
            HandshakeError: The server could not be started or rejected the
                handshake. The client is left in ``FAILED``.
        """
        if self._state is not SessionState.UNINITIALIZED:
            raise SessionNotReadyError(f"cannot start a client in state {self._state.value}")
        self._state = SessionState.HANDSHAKING
        transport = self._transport_factory(self.launch)
        self._transport = transport
        try:
            await transport.start()
        except SpawnError as exc:
            self._fail(str(exc))
            raise HandshakeError(str(exc)) from exc
        self._reader_task = asyncio.create_task(self._read_loop(transport), name="mcp-reader")

        params = {"protocolVersion": PROTOCOL_VERSION, "capabilities": {}, "clientInfo": self.client_info}
        try:
            result = await self._roundtrip("initialize", params, self.handshake_timeout)
            initialized = InitializeResult.model_validate(result)
            await transport.send_line(encode_notification("notifications/initialized"))
        except ValidationError as exc:
            reason = f"malformed initialize result: {exc.error_count()} error(s)"
            await self._abort_handshake(reason)
            raise HandshakeError(reason) from exc
        except (ProtocolError, TransportError) as exc:
            reason = self._failure_reason or f"initialize failed: {exc}"
            await self._abort_handshake(reason)
            raise HandshakeError(reason) from exc

        self.server_info = initialized.server_info
        self.server_capabilities = initialized.capabilities
        self._state = SessionState.READY
        logger.info(
            "mcp.client.ready server={} protocol={} pid={}",
            self.server_info.get("name", "-"),
            initialized.protocol_version,
            transport.pid,
        )

    async def list_tools(self) -> list[ToolDescriptor]:
        tools: list[ToolDescriptor] = []
        cursor: str | None = None
        while True:
            params = {"cursor": cursor} if cursor else {}
            result = await self._request("tools/list", params)
            try:
                page = ToolListPage.model_validate(result)
            except ValidationError as exc:
                raise MalformedResultError(f"malformed tools/list result: {exc.error_count()} error(s)") from exc
            tools.extend(page.tools)
            cursor = page.next_cursor
            if not cursor:
                return tools

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolCallResult:
        result = await self._request("tools/call", {"name": name, "arguments": arguments})
        return parse_tool_result(result)

    async def close(self) -> None:
        if self._state is SessionState.CLOSED:
            return
        if self._state is not SessionState.FAILED:
            self._state = SessionState.CLOSED
        self._fail_pending(ClientFailedError("tool server session closed"))
        if self._reader_task is not None:
            self._reader_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        if self._transport is not None:
            await self._transport.stop()
        logger.info("mcp.client.closed state={}", self._state.value)

    def _ensure_ready(self) -> None:
        if self._state is SessionState.READY:
            return
        if self._state is SessionState.FAILED:
            raise ClientFailedError(f"tool server session failed: {self._failure_reason}")
        raise SessionNotReadyError(f"tool server session is {self._state.value}")

    async def _request(self, method: str, params: dict[str, Any]) -> Any:
        self._ensure_ready()
        async with self._call_lock:
            # The session may have failed while this caller was queued.
            self._ensure_ready()
            return await self._roundtrip(method, params, self.request_timeout)

    async def _roundtrip(self, method: str, params: dict[str, Any], timeout: float) -> Any:
        transport = self._transport
        if transport is None:
            raise SessionNotReadyError("transport is not started")
        request = ProtocolRequest(id=next(self._ids), method=method, params=params)
        self._request_count += 1
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = future
        logger.debug("mcp.client.request id={} method={}", request.id, method)
        try:
            try:
                await transport.send_line(request.encode())
            except TransportWriteError as exc:
                self._fail(str(exc))
                raise ClientFailedError(f"tool server session failed: {self._failure_reason}") from exc
            try:
                async with asyncio.timeout(timeout):
                    return await future
            except TimeoutError:
                self._expired.append(request.id)
                logger.warning("mcp.client.timeout id={} method={} timeout={}", request.id, method, timeout)
                raise ProtocolTimeoutError(f"{method} got no response within {timeout}s (id={request.id})") from None
        finally:
            self._pending.pop(request.id, None)

    async def _abort_handshake(self, reason: str) -> None:
        self._fail(reason)
        if self._reader_task is not None:
            self._reader_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        if self._transport is not None:
            await self._transport.stop()

    async def _read_loop(self, transport: ProcessTransport) -> None:
        try:
            await self._pump(transport)
        except Exception as exc:
            logger.exception("mcp.client.reader.crashed")
            self._fail(f"reader stopped: {exc!r}")

    async def _pump(self, transport: ProcessTransport) -> None:
        while True:
            try:
                line = await transport.recv_line()
            except TransportReadError as exc:
                self._fail(f"tool server output closed ({exc}), returncode={transport.returncode}")
                return
            if not line.strip():
                continue
            try:
                frame = parse_frame(line)
            except MalformedResponseError as exc:
                self._on_malformed(exc)
                if self._state is SessionState.FAILED:
                    return
                continue
            if isinstance(frame, ServerNotification):
                logger.debug("mcp.client.notification method={}", frame.method)
            elif isinstance(frame, ServerRequest):
                await self._answer(transport, frame)
            else:
                self._deliver(frame)

    def _on_malformed(self, exc: MalformedResponseError) -> None:
        if exc.request_id is not None:
            future = self._pending.get(exc.request_id)
            if future is not None and not future.done():
                future.set_exception(exc)
                return
        if self._state is SessionState.HANDSHAKING:
            self._fail(f"malformed frame during handshake: {exc}")
            return
        logger.warning("mcp.client.malformed_frame error={}", exc)

    def _deliver(self, response: ProtocolResponse) -> None:
        future = self._pending.get(response.id)
        if future is None:
            if response.id in self._expired:
                logger.debug("mcp.client.late_response id={} discarded", response.id)
            else:
                logger.warning("mcp.client.unknown_response id={} dropped", response.id)
            return
        if future.done():
            return
        if response.error is not None:
            future.set_exception(RemoteError(response.error.code, response.error.message, response.error.data))
        else:
            future.set_result(response.result)

    async def _answer(self, transport: ProcessTransport, request: ServerRequest) -> None:
        if request.method == "ping":
            payload = encode_result(request.id, {})
        else:
            logger.debug("mcp.client.server_request method={} unsupported", request.method)
            payload = encode_error(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}")
        try:
            await transport.send_line(payload)
        except TransportWriteError as exc:
            self._fail(str(exc))

    def _fail(self, reason: str) -> None:
        if self._state not in (SessionState.FAILED, SessionState.CLOSED):
            self._state = SessionState.FAILED
            self._failure_reason = reason
            logger.error("mcp.client.failed reason={}", reason)
        self._fail_pending(ClientFailedError(f"tool server session failed: {self._failure_reason or reason}"))

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
