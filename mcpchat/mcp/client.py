"""A connection to a single MCP tool server."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from mcpchat.mcp.schema import (
    Prompt,
    Resource,
    ServerDescriptor,
    Tool,
    ToolCallResult,
    parse_content,
)
from mcpchat.mcp.transport import (
    HandshakeTimeoutError,
    LaunchFailedError,
    MCPCallError,
    MCPTimeoutError,
    MCPTransport,
    MCPTransportError,
    ProtocolMismatchError,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26", "2025-06-18")
CLIENT_INFO = {"name": "mcpchat", "version": "0.1.0"}

# Discovery pages followed per listing before giving up on a misbehaving server.
MAX_DISCOVERY_PAGES = 50

T = TypeVar("T", bound=BaseModel)


class Timeouts(BaseModel):
    """Per-operation timeouts in seconds."""

    handshake: float = 60.0
    discovery: float = 30.0
    tool_call: float = 120.0
    close: float = 10.0


class ToolServerClient:
    """
    Live connection to one tool server.

    Create with :meth:`connect`; the constructor assumes an already
    initialized transport. Discovery methods raise on failure so the caller
    decides what to log, while :meth:`call_tool` always returns a
    :class:`ToolCallResult`.
    """

    def __init__(
        self,
        descriptor: ServerDescriptor,
        transport: MCPTransport,
        timeouts: Timeouts,
        init_result: Optional[Dict[str, Any]] = None,
    ):
        self.descriptor = descriptor
        self.timeouts = timeouts
        self._transport = transport
        self._closed = False
        init_result = init_result or {}
        self.protocol_version: str = init_result.get("protocolVersion", PROTOCOL_VERSION)
        self.server_info: Dict[str, Any] = init_result.get("serverInfo") or {}
        capabilities = init_result.get("capabilities")
        self.server_capabilities: Optional[Dict[str, Any]] = (
            capabilities if isinstance(capabilities, dict) else None
        )

    @property
    def name(self) -> str:
        return self.descriptor.name

    # ── Connection ────────────────────────────────────────────────────────

    @classmethod
    def connect(
        cls,
        descriptor: ServerDescriptor,
        timeouts: Optional[Timeouts] = None,
    ) -> "ToolServerClient":
        """
        Launch the server and perform the ``initialize`` handshake.

        Raises
        ------
        LaunchFailedError
            The process could not be started, or exited before answering.
        HandshakeTimeoutError
            ``initialize`` was not answered within ``timeouts.handshake``.
        ProtocolMismatchError
            The answer was an error, malformed, or used an unsupported protocol version.
        """
        timeouts = timeouts or Timeouts()
        transport = MCPTransport(
            command=descriptor.command,
            args=list(descriptor.args),
            env=dict(descriptor.env),
            name=descriptor.name,
        )
        transport.start()

        try:
            init_result = cls._handshake(transport, descriptor, timeouts)
            transport.notify("notifications/initialized")
        except (HandshakeTimeoutError, LaunchFailedError, ProtocolMismatchError):
            transport.stop(timeouts.close)
            raise
        except MCPTransportError as exc:
            transport.stop(timeouts.close)
            raise LaunchFailedError(f"MCP server '{descriptor.name}' went away after initialize: {exc}")

        client = cls(descriptor, transport, timeouts, init_result)
        logger.info(
            "Connected to MCP server '%s' (%s, protocol %s)",
            descriptor.name,
            client.server_info.get("name", "unknown"),
            client.protocol_version,
        )
        return client

    @staticmethod
    def _handshake(
        transport: MCPTransport,
        descriptor: ServerDescriptor,
        timeouts: Timeouts,
    ) -> Dict[str, Any]:
        try:
            result = transport.request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": CLIENT_INFO,
                },
                timeout=timeouts.handshake,
            )
        except MCPTimeoutError:
            raise HandshakeTimeoutError(
                f"MCP server '{descriptor.name}' did not complete the handshake "
                f"within {timeouts.handshake}s"
            )
        except MCPCallError as exc:
            raise ProtocolMismatchError(
                f"MCP server '{descriptor.name}' rejected initialize: {exc}"
            )
        except MCPTransportError as exc:
            # The process exited or closed stdout before answering.
            raise LaunchFailedError(
                f"MCP server '{descriptor.name}' exited during the handshake: {exc}"
            )

        version = result.get("protocolVersion")
        if not isinstance(version, str):
            raise ProtocolMismatchError(
                f"MCP server '{descriptor.name}' sent no protocol version in its initialize result"
            )
        if version not in SUPPORTED_PROTOCOL_VERSIONS:
            raise ProtocolMismatchError(
                f"MCP server '{descriptor.name}' speaks unsupported protocol version {version}"
            )
        return result

    @property
    def is_alive(self) -> bool:
        return not self._closed and self._transport.is_running

    def supports(self, kind: str) -> bool:
        """Whether the handshake advertised ``kind`` (tools, resources, prompts)."""
        if self.server_capabilities is None:
            return True
        return self.server_capabilities.get(kind) is not None

    # ── Discovery ─────────────────────────────────────────────────────────

    def list_tools(self) -> List[Tool]:
        return self._list("tools/list", "tools", Tool)

    def list_resources(self) -> List[Resource]:
        return self._list("resources/list", "resources", Resource)

    def list_prompts(self) -> List[Prompt]:
        return self._list("prompts/list", "prompts", Prompt)

    def _list(self, method: str, field: str, model: Type[T]) -> List[T]:
        items: List[T] = []
        cursor: Optional[str] = None

        for _ in range(MAX_DISCOVERY_PAGES):
            params = {"cursor": cursor} if cursor else None
            result = self._transport.request(method, params, timeout=self.timeouts.discovery)

            for raw in result.get(field) or []:
                try:
                    items.append(model.model_validate(raw))
                except ValidationError as exc:
                    logger.warning("[%s] skipping malformed %s entry: %s", self.name, field, exc)

            cursor = result.get("nextCursor")
            if not cursor:
                break
        else:
            logger.warning("[%s] %s returned more than %d pages, stopping", self.name, method, MAX_DISCOVERY_PAGES)

        return items

    # ── Tool calls ────────────────────────────────────────────────────────

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolCallResult:
        """Call a tool. Never raises: every failure becomes a failed result."""
        t0 = time.perf_counter()
        try:
            raw = self._transport.request(
                "tools/call",
                {"name": name, "arguments": arguments or {}},
                timeout=self.timeouts.tool_call,
            )
        except MCPTransportError as exc:
            elapsed_ms = int((time.perf_counter() - t0) * 1000)
            logger.error("Error calling tool '%s' on server '%s': %s", name, self.name, exc)
            return ToolCallResult.failure(name, str(exc), elapsed_ms)

        elapsed_ms = int((time.perf_counter() - t0) * 1000)
        return self._to_result(name, raw, elapsed_ms)

    @staticmethod
    def _to_result(name: str, raw: Dict[str, Any], elapsed_ms: int) -> ToolCallResult:
        content = raw.get("content") or []
        if not isinstance(content, list):
            content = [content]
        parts = [parse_content(item) for item in content]

        text = "\n".join(p.as_text() for p in parts if p.type == "text")
        if not text and parts:
            text = parts[0].as_text()
        if not text:
            text = f"Tool '{name}' executed successfully with no output."

        if raw.get("isError"):
            return ToolCallResult(
                tool_name=name,
                success=False,
                output=f"Error from tool '{name}': {text}",
                duration_ms=elapsed_ms,
            )
        return ToolCallResult.ok(name, text, elapsed_ms)

    # ── Shutdown ──────────────────────────────────────────────────────────

    def close(self) -> None:
        """Stop the server process. Failures are logged, never raised."""
        if self._closed:
            return
        self._closed = True
        try:
            self._transport.stop(self.timeouts.close)
            logger.debug("Closed MCP server '%s'", self.name)
        except Exception as exc:
            logger.error("Error closing MCP server '%s': %s", self.name, exc)
