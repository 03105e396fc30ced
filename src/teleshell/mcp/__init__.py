"""Tool protocol client over stdio."""

from teleshell.mcp.client import ProtocolClient, SessionState
from teleshell.mcp.protocol import ToolDescriptor
from teleshell.mcp.results import ToolCallResult, parse_tool_result
from teleshell.mcp.transport import LaunchSpec, ProcessTransport

__all__ = [
    "LaunchSpec",
    "ProcessTransport",
    "ProtocolClient",
    "SessionState",
    "ToolCallResult",
    "ToolDescriptor",
    "parse_tool_result",
]
