"""Capability registry: one merged view over every connected MCP server."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from mcpchat.mcp.client import Timeouts, ToolServerClient
from mcpchat.mcp.schema import Prompt, Resource, ServerDescriptor, Tool, ToolCallResult
from mcpchat.mcp.transport import MCPTransportError

logger = logging.getLogger(__name__)

C = TypeVar("C", Tool, Resource, Prompt)

ClientFactory = Callable[[ServerDescriptor, Timeouts], ToolServerClient]


@dataclass
class ServerSnapshot:
    """What one server advertised at discovery time."""

    client: ToolServerClient
    tools: Dict[str, Tool] = field(default_factory=dict)
    resources: Dict[str, Resource] = field(default_factory=dict)
    prompts: Dict[str, Prompt] = field(default_factory=dict)


class CapabilityRegistry:
    """
    Owns the tool server connections and the three route tables.

    ``initialize()`` connects every configured server in parallel; a server
    that fails to launch, handshake, or list its capabilities is logged and
    left out without affecting the others. When two servers advertise the
    same tool name (or resource URI, or prompt name) the one configured later
    wins and a warning is logged.

    Lookups and tool calls are safe from several threads at once. Only
    ``initialize()`` and ``shutdown()`` mutate state, and they must not run
    while sessions are using the registry.

    Example:
        >>> registry = CapabilityRegistry()
        >>> registry.initialize(descriptors)
        >>> result = registry.call_tool("read_file", {"path": "README.md"})
        >>> registry.shutdown()
    """

    def __init__(
        self,
        timeouts: Optional[Timeouts] = None,
        max_concurrent_connections: int = 8,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.timeouts = timeouts or Timeouts()
        self.max_concurrent_connections = max(1, max_concurrent_connections)
        self._client_factory = client_factory or ToolServerClient.connect
        self._lock = threading.RLock()
        self._servers: Dict[str, ServerSnapshot] = {}
        self._tool_routes: Dict[str, str] = {}
        self._resource_routes: Dict[str, str] = {}
        self._prompt_routes: Dict[str, str] = {}

    def __enter__(self) -> "CapabilityRegistry":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    # ── Startup ───────────────────────────────────────────────────────────

    def initialize(self, descriptors: Sequence[ServerDescriptor]) -> None:
        """Connect to every server and register what each one advertises."""
        if not descriptors:
            logger.warning("No MCP servers configured. No clients will be initialized.")
            return

        logger.info("Initializing %d MCP server(s)...", len(descriptors))
        workers = min(self.max_concurrent_connections, len(descriptors))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mcp-connect") as pool:
            snapshots = list(pool.map(self._connect_and_discover, descriptors))

        # Register in configuration order so "later" is well defined.
        with self._lock:
            for descriptor, snapshot in zip(descriptors, snapshots):
                if snapshot is None:
                    continue
                previous = self._servers.get(descriptor.name)
                if previous is not None:
                    logger.warning("Server '%s' configured twice, replacing earlier connection", descriptor.name)
                    previous.client.close()
                    self._drop_routes(descriptor.name)
                self._servers[descriptor.name] = snapshot
                self._register(self._tool_routes, snapshot.tools, descriptor.name, "tool")
                self._register(self._resource_routes, snapshot.resources, descriptor.name, "resource")
                self._register(self._prompt_routes, snapshot.prompts, descriptor.name, "prompt")

        self._log_summary()

    def _connect_and_discover(self, descriptor: ServerDescriptor) -> Optional[ServerSnapshot]:
        logger.info("Initializing MCP client for server: '%s' (%s)", descriptor.name, descriptor.command_line())
        try:
            client = self._client_factory(descriptor, self.timeouts)
        except MCPTransportError as exc:
            logger.error("Failed to connect to MCP server '%s': %s", descriptor.name, exc)
            return None
        except Exception:
            logger.exception("Unexpected error connecting to MCP server '%s'", descriptor.name)
            return None

        snapshot = ServerSnapshot(client=client)
        snapshot.tools = self._discover(client, "tools", client.list_tools)
        snapshot.resources = self._discover(client, "resources", client.list_resources)
        snapshot.prompts = self._discover(client, "prompts", client.list_prompts)
        return snapshot

    @staticmethod
    def _discover(
        client: ToolServerClient,
        kind: str,
        lister: Callable[[], List[C]],
    ) -> Dict[str, C]:
        if not client.supports(kind):
            return {}
        try:
            items = lister()
        except Exception as exc:
            logger.error("Error discovering %s from server '%s': %s", kind, client.name, exc)
            return {}

        found: Dict[str, C] = {}
        for item in items:
            found[item.key] = item
            logger.info("  -> Discovered %s: %s (from server: %s)", kind[:-1], item.key, client.name)
        logger.info("  Total %s discovered on '%s': %d", kind, client.name, len(found))
        return found

    @staticmethod
    def _register(routes: Dict[str, str], items: Dict[str, Any], server: str, kind: str) -> None:
        for key in items:
            existing = routes.get(key)
            if existing is not None and existing != server:
                logger.warning(
                    "Duplicate %s '%s' found. Server '%s' is overriding server '%s'",
                    kind, key, server, existing,
                )
            routes[key] = server

    def _drop_routes(self, server: str) -> None:
        for routes in (self._tool_routes, self._resource_routes, self._prompt_routes):
            for key in [k for k, owner in routes.items() if owner == server]:
                del routes[key]

    def _log_summary(self) -> None:
        with self._lock:
            logger.info(
                "MCP initialization complete: %d servers connected, %d tools, "
                "%d resources, %d prompts available",
                len(self._servers),
                len(self._tool_routes),
                len(self._resource_routes),
                len(self._prompt_routes),
            )

    # ── Merged view ───────────────────────────────────────────────────────

    def get_all_tools(self) -> List[Tool]:
        return self._resolve(self._tool_routes, "tools")

    def get_all_resources(self) -> List[Resource]:
        return self._resolve(self._resource_routes, "resources")

    def get_all_prompts(self) -> List[Prompt]:
        return self._resolve(self._prompt_routes, "prompts")

    def _resolve(self, routes: Dict[str, str], kind: str) -> List[Any]:
        with self._lock:
            resolved = []
            for key, server in routes.items():
                snapshot = self._servers.get(server)
                if snapshot is None or not snapshot.client.is_alive:
                    logger.warning("Server '%s' is not available for %s '%s'", server, kind[:-1], key)
                    continue
                item = getattr(snapshot, kind).get(key)
                if item is not None:
                    resolved.append(item)
            return resolved

    def server_for_tool(self, name: str) -> Optional[str]:
        with self._lock:
            return self._tool_routes.get(name)

    # ── Tool execution ────────────────────────────────────────────────────

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolCallResult:
        """Route a tool call to its owning server. Never raises for routing failures."""
        if name is None:
            raise TypeError("Tool name cannot be None")

        with self._lock:
            server = self._tool_routes.get(name)
            snapshot = self._servers.get(server) if server else None

        if server is None:
            logger.warning("Tool '%s' requested but no server provides it", name)
            return ToolCallResult.failure(name, f"Tool '{name}' not found or server not mapped")

        if snapshot is None or not snapshot.client.is_alive:
            return ToolCallResult.failure(name, f"Server '{server}' for tool '{name}' is not available")

        logger.info("Calling tool '%s' on server '%s' with args: %s", name, server, arguments)
        result = snapshot.client.call_tool(name, arguments)
        if result.success:
            logger.info("Tool '%s' completed in %d ms", name, result.duration_ms)
        return result

    # ── Status ────────────────────────────────────────────────────────────

    def connected_server_names(self) -> List[str]:
        with self._lock:
            return [name for name, s in self._servers.items() if s.client.is_alive]

    @property
    def connected_server_count(self) -> int:
        return len(self.connected_server_names())

    def is_server_connected(self, name: str) -> bool:
        with self._lock:
            snapshot = self._servers.get(name)
            return snapshot is not None and snapshot.client.is_alive

    def server_capabilities(self, name: str) -> Dict[str, List[str]]:
        """Names of everything ``name`` advertised, whether or not it won the route."""
        with self._lock:
            snapshot = self._servers.get(name)
            if snapshot is None:
                return {"tools": [], "resources": [], "prompts": []}
            return {
                "tools": list(snapshot.tools),
                "resources": list(snapshot.resources),
                "prompts": list(snapshot.prompts),
            }

    # ── Shutdown ──────────────────────────────────────────────────────────

    def shutdown(self) -> None:
        """Close every client and clear all routes. Safe to call repeatedly."""
        with self._lock:
            servers = list(self._servers.values())
            self._servers.clear()
            self._tool_routes.clear()
            self._resource_routes.clear()
            self._prompt_routes.clear()

        if not servers:
            return

        logger.info("Closing %d MCP client(s)...", len(servers))
        for snapshot in servers:
            try:
                snapshot.client.close()
            except Exception as exc:
                logger.error("Error closing MCP client for server '%s': %s", snapshot.client.name, exc)
        logger.info("All MCP clients have been closed")
