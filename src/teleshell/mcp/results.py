"""Turn ``tools/call`` results into command lists."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from teleshell.errors import MalformedResultError, ToolExecutionError
from teleshell.executor.models import CommandSpec


@dataclass(frozen=True)
class ToolCallResult:
    """Ordered commands produced by one successful tool call."""

    commands: tuple[CommandSpec, ...] = field(default_factory=tuple)
    text: str = ""


class CommandItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    command: str
    description: str = ""
    timeout_secs: float | None = Field(default=None, gt=0)
    working_dir: str | None = None

    @field_validator("command")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must not be blank")
        return value


_ITEMS = TypeAdapter(list[str | CommandItem])


def extract_json_array(text: str) -> str:
    """Pull the JSON array out of model-style text.

    Accepts a bare array, an array inside a Markdown code fence, or an array
    embedded in prose.
    """
    start = text.find("```")
    if start != -1:
        after_fence = text[start + 3 :]
        newline = after_fence.find("\n")
        content = after_fence[newline + 1 :] if newline != -1 else after_fence
        end = content.find("```")
        if end != -1:
            return content[:end].strip()
    start = text.find("[")
    end = text.rfind("]")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text.strip()


def text_content(content: Any) -> str:
    if not isinstance(content, list):
        return ""
    parts = [
        str(item.get("text", ""))
        for item in content
        if isinstance(item, dict) and item.get("type") == "text"
    ]
    return "\n".join(parts)


def parse_tool_result(result: Any) -> ToolCallResult:
    """Validate one ``tools/call`` result and return its commands.

    Raises:
        ToolExecutionError: The tool flagged the result with ``isError``.
        MalformedResultError: No command list could be read from the result.
    """
    if not isinstance(result, dict):
        raise MalformedResultError(f"tool result must be an object, got {type(result).__name__}")
    text = text_content(result.get("content"))
    if result.get("isError"):
        raise ToolExecutionError(text.strip() or "tool reported an error")

    structured = result.get("structuredContent")
    if isinstance(structured, dict) and "commands" in structured:
        raw: Any = structured["commands"]
    else:
        if not text.strip():
            raise MalformedResultError("tool result has no text content")
        try:
            raw = json.loads(extract_json_array(text))
        except json.JSONDecodeError as exc:
            raise MalformedResultError(f"tool result is not a JSON command list: {exc}") from exc
        if isinstance(raw, dict) and "commands" in raw:
            raw = raw["commands"]

    try:
        items = _ITEMS.validate_python(raw)
    except ValidationError as exc:
        raise MalformedResultError(f"invalid command list: {exc.error_count()} error(s)") from exc

    commands: list[CommandSpec] = []
    for item in items:
        if isinstance(item, str):
            if not item.strip():
                raise MalformedResultError("command must not be blank")
            commands.append(CommandSpec(command=item))
        else:
            commands.append(
                CommandSpec(
                    command=item.command,
                    description=item.description,
                    timeout_secs=item.timeout_secs,
                    working_dir=item.working_dir,
                )
            )
    return ToolCallResult(commands=tuple(commands), text=text)
