"""Data models for MCP servers, discovered capabilities, and tool call results."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ServerDescriptor(BaseModel):
    """How to launch one tool server. ``name`` is the unique logical key."""

    model_config = ConfigDict(frozen=True)

    name: str
    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)

    def command_line(self) -> str:
        return " ".join([self.command] + self.args)


class _Capability(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Tool(_Capability):
    """A tool advertised by a server. ``input_schema`` is raw JSON Schema."""

    name: str
    description: Optional[str] = None
    input_schema: Optional[Dict[str, Any]] = Field(default=None, alias="inputSchema")

    @property
    def key(self) -> str:
        return self.name


class Resource(_Capability):
    uri: str
    name: Optional[str] = None
    description: Optional[str] = None
    mime_type: Optional[str] = Field(default=None, alias="mimeType")

    @property
    def key(self) -> str:
        return self.uri


class PromptArgument(_Capability):
    name: str
    description: Optional[str] = None
    required: bool = False


class Prompt(_Capability):
    name: str
    description: Optional[str] = None
    arguments: List[PromptArgument] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return self.name


Capability = Union[Tool, Resource, Prompt]


# ── Tool result content ──────────────────────────────────────────────────


class TextContent(BaseModel):
    type: str = "text"
    text: str = ""

    def as_text(self) -> str:
        return self.text


class OtherContent(BaseModel):
    """Any non-text content item (image, audio, embedded resource, ...)."""

    type: str
    data: Dict[str, Any] = Field(default_factory=dict)

    def as_text(self) -> str:
        return json.dumps(self.data, sort_keys=True, default=str)


ContentItem = Union[TextContent, OtherContent]


def parse_content(item: Any) -> ContentItem:
    """Turn one raw ``content`` entry of a ``tools/call`` result into a typed item."""
    if isinstance(item, dict):
        kind = item.get("type", "")
        if kind == "text" and isinstance(item.get("text"), str):
            return TextContent(text=item["text"])
        return OtherContent(type=str(kind or "unknown"), data=item)
    return OtherContent(type="unknown", data={"value": item})


class ToolCallResult(BaseModel):
    """Outcome of one tool invocation, already flattened to text."""

    tool_name: str
    success: bool
    output: str = ""
    duration_ms: int = 0

    @classmethod
    def ok(cls, tool_name: str, output: str, duration_ms: int = 0) -> "ToolCallResult":
        return cls(tool_name=tool_name, success=True, output=output, duration_ms=duration_ms)

    @classmethod
    def failure(cls, tool_name: str, message: str, duration_ms: int = 0) -> "ToolCallResult":
        return cls(
            tool_name=tool_name,
            success=False,
            output=f"Error executing tool '{tool_name}': {message}",
            duration_ms=duration_ms,
        )
