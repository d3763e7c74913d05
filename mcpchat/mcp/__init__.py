"""
MCP client layer for mcpchat.

Launches Model Context Protocol servers as stdio subprocesses, discovers
their tools, resources, and prompts, and merges them into one registry that
routes each tool call back to the server that owns it.

    config --> CapabilityRegistry --> ToolServerClient x N --> MCPTransport (stdio)
"""

from mcpchat.mcp.schema import (
    OtherContent,
    Prompt,
    PromptArgument,
    Resource,
    ServerDescriptor,
    TextContent,
    Tool,
    ToolCallResult,
)
from mcpchat.mcp.transport import (
    HandshakeTimeoutError,
    LaunchFailedError,
    MCPCallError,
    MCPTimeoutError,
    MCPTransportError,
    ProtocolMismatchError,
)
from mcpchat.mcp.client import Timeouts, ToolServerClient
from mcpchat.mcp.registry import CapabilityRegistry

__all__ = [
    "CapabilityRegistry",
    "HandshakeTimeoutError",
    "LaunchFailedError",
    "MCPCallError",
    "MCPTimeoutError",
    "MCPTransportError",
    "OtherContent",
    "Prompt",
    "PromptArgument",
    "ProtocolMismatchError",
    "Resource",
    "ServerDescriptor",
    "TextContent",
    "Timeouts",
    "Tool",
    "ToolCallResult",
    "ToolServerClient",
]
