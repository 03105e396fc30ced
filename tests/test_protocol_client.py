from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable

import pytest
import pytest_asyncio

from teleshell.errors import (
    ClientFailedError,
    HandshakeError,
    MalformedResponseError,
    ProtocolTimeoutError,
    RemoteError,
    SessionNotReadyError,
    ToolExecutionError,
    TransportError,
)
from teleshell.executor.models import CommandSpec
from teleshell.mcp import client as client_module
from teleshell.mcp.client import ProtocolClient, SessionState
from teleshell.mcp.transport import LaunchSpec

Launcher = Callable[[str], LaunchSpec]


@pytest_asyncio.fixture
async def client(fake_server: Launcher) -> AsyncIterator[ProtocolClient]:
    client = ProtocolClient(fake_server("normal"), request_timeout=5, handshake_timeout=5)
    await client.start()
    yield client
    await client.close()


async def _call(client: ProtocolClient, message: str):
    return await client.call_tool("plan_commands", {"message": message})


@pytest.mark.asyncio
async def test_handshake_reaches_ready(client: ProtocolClient) -> None:
    assert client.state is SessionState.READY
    assert client.server_info["name"] == "fake"
    assert client.server_capabilities == {"tools": {}}
    assert client.request_count == 1


@pytest.mark.asyncio
async def test_list_tools_follows_pagination(client: ProtocolClient) -> None:
    tools = await client.list_tools()

    assert [tool.name for tool in tools] == ["plan_commands", "echo"]
    assert tools[0].input_schema == {"type": "object"}
    assert client.request_count == 3


@pytest.mark.asyncio
async def test_call_tool_returns_commands(client: ProtocolClient) -> None:
    result = await _call(client, "hello")

    assert result.commands == (CommandSpec(command="echo hello"),)
    assert client.pending_count == 0


@pytest.mark.asyncio
async def test_call_tool_accepts_fenced_objects(client: ProtocolClient) -> None:
    text = 'json:Plan:\n```json\n[{"command": "ls -la", "description": "list", "timeout_secs": 5}]\n```'
    result = await _call(client, text)

    assert result.commands == (CommandSpec(command="ls -la", description="list", timeout_secs=5),)


@pytest.mark.asyncio
async def test_tool_error_keeps_session_ready(client: ProtocolClient) -> None:
    with pytest.raises(ToolExecutionError, match="model refused"):
        await _call(client, "tool-error")

    assert client.state is SessionState.READY
    assert (await _call(client, "again")).commands[0].command == "echo again"


@pytest.mark.asyncio
async def test_remote_error_is_raised_with_code(client: ProtocolClient) -> None:
    with pytest.raises(RemoteError) as excinfo:
        await _call(client, "remote-error")

    assert excinfo.value.code == -32000
    assert excinfo.value.message == "backend down"
    assert client.state is SessionState.READY


@pytest.mark.asyncio
async def test_response_without_result_fails_only_its_waiter(client: ProtocolClient) -> None:
    with pytest.raises(MalformedResponseError):
        await _call(client, "no-result")

    assert client.state is SessionState.READY
    assert (await _call(client, "next")).commands[0].command == "echo next"


@pytest.mark.asyncio
async def test_unknown_id_does_not_disturb_waiter(client: ProtocolClient) -> None:
    result = await _call(client, "unknown-id")

    assert result.commands == (CommandSpec(command="echo unknown-id"),)
    assert client.state is SessionState.READY


@pytest.mark.asyncio
async def test_deeply_nested_frame_is_dropped_as_malformed(client: ProtocolClient) -> None:
    result = await _call(client, "deep-nesting")

    assert result.commands == (CommandSpec(command="echo deep-nesting"),)
    assert client.state is SessionState.READY
    assert (await _call(client, "next")).commands[0].command == "echo next"


@pytest.mark.asyncio
async def test_reader_crash_fails_session(fake_server: Launcher, monkeypatch: pytest.MonkeyPatch) -> None:
    client = ProtocolClient(fake_server("normal"), request_timeout=5, handshake_timeout=5)
    await client.start()

    def _explode(line: bytes) -> None:
        raise RuntimeError("decoder blew up")

    monkeypatch.setattr(client_module, "parse_frame", _explode)
    try:
        async with asyncio.timeout(2):
            with pytest.raises(ClientFailedError):
                await _call(client, "anything")
        assert client.state is SessionState.FAILED
        assert "decoder blew up" in (client.failure_reason or "")
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_timeout_keeps_session_and_discards_late_response(fake_server: Launcher) -> None:
    client = ProtocolClient(fake_server("normal"), request_timeout=0.3, handshake_timeout=5)
    await client.start()
    try:
        with pytest.raises(ProtocolTimeoutError):
            await _call(client, "slow:1")
        assert client.state is SessionState.READY

        client.request_timeout = 5
        result = await _call(client, "after")
    finally:
        await client.close()

    assert result.commands == (CommandSpec(command="echo after"),)


@pytest.mark.asyncio
async def test_server_requests_are_answered(client: ProtocolClient) -> None:
    result = await _call(client, "ping")

    assert result.commands == ()
    ping_reply, other_reply = json.loads(result.text)
    assert ping_reply == {"jsonrpc": "2.0", "id": "srv-1", "result": {}}
    assert other_reply["id"] == "srv-2"
    assert other_reply["error"]["code"] == -32601


@pytest.mark.asyncio
async def test_crash_fails_pending_call_and_later_calls_fast(client: ProtocolClient) -> None:
    with pytest.raises(ClientFailedError):
        await _call(client, "crash")

    assert client.state is SessionState.FAILED
    assert client.failure_reason is not None
    issued = client.request_count
    async with asyncio.timeout(1):
        with pytest.raises(ClientFailedError) as excinfo:
            await _call(client, "after crash")
    assert isinstance(excinfo.value, TransportError)
    assert client.request_count == issued


@pytest.mark.asyncio
async def test_concurrent_calls_are_correlated(client: ProtocolClient) -> None:
    results = await asyncio.gather(*(_call(client, f"job-{index}") for index in range(5)))

    assert [result.commands[0].command for result in results] == [f"echo job-{index}" for index in range(5)]
    assert client.request_count == 6


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["bad-handshake", "error-handshake", "exit-on-init", "garbage-handshake"])
async def test_handshake_failures_leave_client_failed(fake_server: Launcher, mode: str) -> None:
    client = ProtocolClient(fake_server(mode), request_timeout=5, handshake_timeout=5)
    try:
        with pytest.raises(HandshakeError):
            await client.start()
        assert client.state is SessionState.FAILED
        assert client.failure_reason
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_spawn_failure_is_a_handshake_error() -> None:
    client = ProtocolClient(LaunchSpec(command="/nonexistent/teleshell-tool-server"))

    with pytest.raises(HandshakeError, match="cannot start"):
        await client.start()
    assert client.state is SessionState.FAILED


@pytest.mark.asyncio
async def test_requests_outside_ready_are_rejected(fake_server: Launcher) -> None:
    client = ProtocolClient(fake_server("normal"), request_timeout=5, handshake_timeout=5)

    with pytest.raises(SessionNotReadyError):
        await _call(client, "too early")
    assert client.request_count == 0

    await client.start()
    await client.close()
    assert client.state is SessionState.CLOSED
    with pytest.raises(SessionNotReadyError):
        await client.list_tools()
    with pytest.raises(SessionNotReadyError):
        await client.start()
