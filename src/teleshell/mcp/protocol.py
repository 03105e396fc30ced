"""JSON-RPC 2.0 frames and tool protocol payload models."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

from teleshell.errors import MalformedResponseError

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
METHOD_NOT_FOUND = -32601


def _dump(payload: dict[str, Any]) -> bytes:
    # json.dumps escapes newlines inside strings, so one frame stays on one line.
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class ProtocolRequest:
    """One outgoing request awaiting a response with the same id."""

    id: int
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    def encode(self) -> bytes:
        return _dump({"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method, "params": self.params})


@dataclass(frozen=True)
class ErrorObject:
    code: int
    message: str
    data: Any = None


@dataclass(frozen=True)
class ProtocolResponse:
    """Response frame correlated to a request by id."""

    id: int
    result: Any = None
    error: ErrorObject | None = None


@dataclass(frozen=True)
class ServerRequest:
    """Request initiated by the tool server."""

    id: int | str
    method: str
    params: Any = None


@dataclass(frozen=True)
class ServerNotification:
    method: str
    params: Any = None


Frame: TypeAlias = ProtocolResponse | ServerRequest | ServerNotification


def encode_notification(method: str, params: dict[str, Any] | None = None) -> bytes:
    payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        payload["params"] = params
    return _dump(payload)


def encode_result(request_id: int | str, result: Any) -> bytes:
    return _dump({"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result})


def encode_error(request_id: int | str, code: int, message: str) -> bytes:
    return _dump({"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": {"code": code, "message": message}})


def parse_frame(line: bytes) -> Frame:
    """Decode one inbound line.

    Raises:
        MalformedResponseError: The line is not a valid JSON-RPC 2.0 frame.
            ``request_id`` is set when the frame names a response id.
    """
    try:
        data = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as exc:
        raise MalformedResponseError(f"invalid JSON frame: {exc}") from exc
    if not isinstance(data, dict) or data.get("jsonrpc") != JSONRPC_VERSION:
        raise MalformedResponseError("frame is not a JSON-RPC 2.0 object")

    method = data.get("method")
    if isinstance(method, str):
        if data.get("id") is not None:
            return ServerRequest(id=data["id"], method=method, params=data.get("params"))
        return ServerNotification(method=method, params=data.get("params"))

    frame_id = data.get("id")
    if not isinstance(frame_id, int) or isinstance(frame_id, bool):
        raise MalformedResponseError(f"response id must be an integer, got {frame_id!r}")
    has_result = "result" in data
    has_error = "error" in data
    if has_result == has_error:
        raise MalformedResponseError("response must carry exactly one of result or error", request_id=frame_id)
    if has_result:
        return ProtocolResponse(id=frame_id, result=data["result"])

    error = data["error"]
    if not isinstance(error, dict) or not isinstance(error.get("code"), int) or not isinstance(error.get("message"), str):
        raise MalformedResponseError(f"malformed error object: {error!r}", request_id=frame_id)
    return ProtocolResponse(
        id=frame_id,
        error=ErrorObject(code=error["code"], message=error["message"], data=error.get("data")),
    )


class InitializeResult(BaseModel):
    """Fields the handshake requires from the server."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    protocol_version: str = Field(alias="protocolVersion")
    capabilities: dict[str, Any]
    server_info: dict[str, Any] = Field(default_factory=dict, alias="serverInfo")


class ToolDescriptor(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")


class ToolListPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    tools: list[ToolDescriptor]
    next_cursor: str | None = Field(default=None, alias="nextCursor")
