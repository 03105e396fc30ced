from __future__ import annotations

import json

import pytest

from teleshell.errors import MalformedResponseError, MalformedResultError, ToolExecutionError
from teleshell.executor.models import CommandSpec
from teleshell.mcp.protocol import ProtocolResponse, ServerNotification, ServerRequest, parse_frame
from teleshell.mcp.results import extract_json_array, parse_tool_result


def _text(text: str) -> dict[str, object]:
    return {"content": [{"type": "text", "text": text}]}


def test_bare_array_of_strings() -> None:
    result = parse_tool_result(_text('["mkdir -p build", "ls build"]'))

    assert result.commands == (CommandSpec(command="mkdir -p build"), CommandSpec(command="ls build"))


def test_array_embedded_in_prose() -> None:
    result = parse_tool_result(_text('Sure, run these: ["echo one", "echo two"] and you are done.'))

    assert [spec.command for spec in result.commands] == ["echo one", "echo two"]


def test_structured_content_wins_over_text() -> None:
    payload = {
        **_text("not json at all"),
        "structuredContent": {"commands": [{"command": "uptime", "working_dir": "/tmp"}]},
    }

    assert parse_tool_result(payload).commands == (CommandSpec(command="uptime", working_dir="/tmp"),)


def test_commands_object_in_text() -> None:
    text = json.dumps({"commands": ["date"]})

    assert parse_tool_result(_text(text)).commands == (CommandSpec(command="date"),)


def test_text_parts_are_concatenated() -> None:
    payload = {
        "content": [
            {"type": "text", "text": '["echo a",'},
            {"type": "image", "data": "..."},
            {"type": "text", "text": '"echo b"]'},
        ]
    }

    assert [spec.command for spec in parse_tool_result(payload).commands] == ["echo a", "echo b"]


def test_empty_list_is_valid() -> None:
    assert parse_tool_result(_text("[]")).commands == ()


def test_is_error_raises_tool_execution_error() -> None:
    with pytest.raises(ToolExecutionError, match="quota exceeded"):
        parse_tool_result({**_text("quota exceeded"), "isError": True})


@pytest.mark.parametrize(
    "payload",
    [
        "just a string",
        {"content": []},
        _text("no commands here"),
        _text('[{"description": "missing command"}]'),
        _text('["   "]'),
        _text('[{"command": "sleep 1", "timeout_secs": -1}]'),
        _text("[1, 2]"),
    ],
)
def test_malformed_results_are_rejected(payload: object) -> None:
    with pytest.raises(MalformedResultError):
        parse_tool_result(payload)


def test_extract_json_array_prefers_code_fence() -> None:
    text = "Ignore [this]\n```\n[\"ls\"]\n```\ntrailing ]"

    assert extract_json_array(text) == '["ls"]'


def test_parse_frame_kinds() -> None:
    assert parse_frame(b'{"jsonrpc":"2.0","id":3,"result":{"ok":true}}') == ProtocolResponse(id=3, result={"ok": True})
    assert parse_frame(b'{"jsonrpc":"2.0","method":"notifications/message"}') == ServerNotification(
        method="notifications/message"
    )
    assert parse_frame(b'{"jsonrpc":"2.0","id":"a","method":"ping"}') == ServerRequest(id="a", method="ping")

    response = parse_frame(b'{"jsonrpc":"2.0","id":4,"error":{"code":-1,"message":"no"}}')
    assert isinstance(response, ProtocolResponse)
    assert response.error is not None
    assert response.error.code == -1


@pytest.mark.parametrize(
    ("line", "request_id"),
    [
        (b"not json", None),
        (b'{"id":1,"result":{}}', None),
        (b'{"jsonrpc":"2.0","id":"x","result":{}}', None),
        (b'{"jsonrpc":"2.0","id":7}', 7),
        (b'{"jsonrpc":"2.0","id":8,"error":"bad"}', 8),
    ],
)
def test_parse_frame_rejects_malformed(line: bytes, request_id: int | None) -> None:
    with pytest.raises(MalformedResponseError) as excinfo:
        parse_frame(line)

    assert excinfo.value.request_id == request_id
