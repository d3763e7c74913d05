"""Tests for the capability registry."""

import logging
import threading
import time

import pytest

from mcpchat.mcp.registry import CapabilityRegistry
from mcpchat.mcp.schema import Prompt, Resource, ServerDescriptor, Tool, ToolCallResult
from mcpchat.mcp.transport import LaunchFailedError


class FakeClient:
    """Stands in for ToolServerClient without launching a process."""

    def __init__(self, name, tools=(), resources=(), prompts=(), fail_listing=False):
        self.name = name
        self.tools = list(tools)
        self.resources = list(resources)
        self.prompts = list(prompts)
        self.fail_listing = fail_listing
        self.is_alive = True
        self.calls = []
        self.close_count = 0

    def supports(self, kind):
        return True

    def list_tools(self):
        if self.fail_listing:
            raise RuntimeError("listing exploded")
        return self.tools

    def list_resources(self):
        return self.resources

    def list_prompts(self):
        return self.prompts

    def call_tool(self, name, arguments=None):
        self.calls.append((name, arguments))
        return ToolCallResult.ok(name, f"{self.name}:{name}:{arguments}")

    def close(self):
        self.close_count += 1
        self.is_alive = False


def make_registry(clients, failing=()):
    """Registry whose factory hands out the given fakes by server name."""

    def factory(descriptor, timeouts):
        if descriptor.name in failing:
            raise LaunchFailedError(f"cannot start {descriptor.name}")
        return clients[descriptor.name]

    return CapabilityRegistry(client_factory=factory)


def descriptors(*names):
    return [ServerDescriptor(name=n, command="unused") for n in names]


class TestInitialize:
    """Tests for connecting and discovering."""

    def test_routes_tools_to_owner(self):
        """Test that each tool call reaches the server that advertised it."""
        a = FakeClient("a", tools=[Tool(name="read")])
        b = FakeClient("b", tools=[Tool(name="write")])
        registry = make_registry({"a": a, "b": b})

        registry.initialize(descriptors("a", "b"))

        assert registry.call_tool("read", {"p": 1}).output == "a:read:{'p': 1}"
        assert registry.call_tool("write").output == "b:write:None"
        assert a.calls == [("read", {"p": 1})]
        assert b.calls == [("write", None)]
        assert registry.server_for_tool("write") == "b"

    def test_collects_all_capability_kinds(self):
        client = FakeClient(
            "docs",
            tools=[Tool(name="search")],
            resources=[Resource(uri="file:///x")],
            prompts=[Prompt(name="summarize")],
        )
        registry = make_registry({"docs": client})

        registry.initialize(descriptors("docs"))

        assert [t.name for t in registry.get_all_tools()] == ["search"]
        assert [r.uri for r in registry.get_all_resources()] == ["file:///x"]
        assert [p.name for p in registry.get_all_prompts()] == ["summarize"]
        assert registry.server_capabilities("docs") == {
            "tools": ["search"],
            "resources": ["file:///x"],
            "prompts": ["summarize"],
        }

    def test_duplicate_tool_later_server_wins(self, caplog):
        """The server configured later owns a shared tool name."""
        first = FakeClient("first", tools=[Tool(name="echo", description="first")])
        second = FakeClient("second", tools=[Tool(name="echo", description="second")])
        registry = make_registry({"first": first, "second": second})

        with caplog.at_level(logging.WARNING):
            registry.initialize(descriptors("first", "second"))

        assert registry.server_for_tool("echo") == "second"
        assert [t.description for t in registry.get_all_tools()] == ["second"]
        assert registry.call_tool("echo").output.startswith("second:")
        assert "Duplicate tool 'echo' found. Server 'second' is overriding server 'first'" in caplog.text

    def test_connect_failure_is_isolated(self, caplog):
        """A server that fails to start does not affect the others."""
        good = FakeClient("good", tools=[Tool(name="ok")])
        registry = make_registry({"good": good}, failing={"bad"})

        with caplog.at_level(logging.ERROR):
            registry.initialize(descriptors("bad", "good"))

        assert registry.connected_server_names() == ["good"]
        assert registry.connected_server_count == 1
        assert not registry.is_server_connected("bad")
        assert [t.name for t in registry.get_all_tools()] == ["ok"]
        assert "Failed to connect to MCP server 'bad'" in caplog.text

    def test_discovery_failure_registers_nothing_of_that_kind(self):
        client = FakeClient(
            "flaky",
            tools=[Tool(name="never")],
            prompts=[Prompt(name="still-here")],
            fail_listing=True,
        )
        registry = make_registry({"flaky": client})

        registry.initialize(descriptors("flaky"))

        assert registry.is_server_connected("flaky")
        assert registry.get_all_tools() == []
        assert [p.name for p in registry.get_all_prompts()] == ["still-here"]

    def test_no_descriptors(self, caplog):
        registry = make_registry({})

        with caplog.at_level(logging.WARNING):
            registry.initialize([])

        assert registry.connected_server_count == 0
        assert "No MCP servers configured" in caplog.text

    def test_connects_in_parallel(self):
        """Test that slow servers start concurrently."""
        started = []
        barrier = threading.Barrier(3, timeout=5)

        def factory(descriptor, timeouts):
            barrier.wait()
            started.append(descriptor.name)
            return FakeClient(descriptor.name)

        registry = CapabilityRegistry(client_factory=factory, max_concurrent_connections=3)
        registry.initialize(descriptors("x", "y", "z"))

        assert sorted(started) == ["x", "y", "z"]
        assert registry.connected_server_names() == ["x", "y", "z"]

    def test_duplicate_server_name_replaces_earlier_connection(self, caplog):
        """Routes from the replaced connection are dropped and it is closed."""
        earlier = FakeClient("a", tools=[Tool(name="only_first"), Tool(name="shared")])
        later = FakeClient("a", tools=[Tool(name="shared")])
        handed_out = iter([earlier, later])
        registry = CapabilityRegistry(
            client_factory=lambda descriptor, timeouts: next(handed_out),
            max_concurrent_connections=1,
        )

        with caplog.at_level(logging.WARNING):
            registry.initialize(descriptors("a", "a"))

        assert registry.server_for_tool("only_first") is None
        assert [t.name for t in registry.get_all_tools()] == ["shared"]
        assert registry.call_tool("only_first").success is False
        assert earlier.close_count == 1
        assert later.is_alive
        assert "Server 'a' configured twice" in caplog.text

    def test_logs_launch_command(self, caplog):
        registry = make_registry({"fs": FakeClient("fs")})

        with caplog.at_level(logging.INFO):
            registry.initialize([ServerDescriptor(name="fs", command="npx", args=["-y", "server-fs", "/tmp"])])

        assert "Initializing MCP client for server: 'fs' (npx -y server-fs /tmp)" in caplog.text


class TestCallTool:
    """Tests for call_tool failure paths."""

    def test_unknown_tool(self):
        registry = make_registry({"a": FakeClient("a")})
        registry.initialize(descriptors("a"))

        result = registry.call_tool("missing", {})

        assert not result.success
        assert result.output == (
            "Error executing tool 'missing': Tool 'missing' not found or server not mapped"
        )

    def test_dead_server(self):
        """A route to a server that went away fails instead of raising."""
        client = FakeClient("a", tools=[Tool(name="read")])
        registry = make_registry({"a": client})
        registry.initialize(descriptors("a"))
        client.is_alive = False

        result = registry.call_tool("read", {})

        assert not result.success
        assert "Server 'a' for tool 'read' is not available" in result.output
        assert client.calls == []
        assert registry.get_all_tools() == []

    def test_none_name_raises(self):
        registry = make_registry({})

        with pytest.raises(TypeError):
            registry.call_tool(None)

    def test_concurrent_calls(self):
        client = FakeClient("a", tools=[Tool(name="read")])
        registry = make_registry({"a": client})
        registry.initialize(descriptors("a"))

        results = []

        def worker(i):
            time.sleep(0.001)
            results.append(registry.call_tool("read", {"i": i}).success)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == [True] * 10


class TestShutdown:
    """Tests for shutdown."""

    def test_shutdown_closes_clients_and_clears_routes(self):
        a = FakeClient("a", tools=[Tool(name="read")])
        registry = make_registry({"a": a})
        registry.initialize(descriptors("a"))

        registry.shutdown()

        assert a.close_count == 1
        assert registry.get_all_tools() == []
        assert registry.connected_server_count == 0
        assert not registry.call_tool("read").success

    def test_shutdown_is_idempotent(self):
        a = FakeClient("a")
        registry = make_registry({"a": a})
        registry.initialize(descriptors("a"))

        registry.shutdown()
        registry.shutdown()

        assert a.close_count == 1

    def test_context_manager(self):
        a = FakeClient("a")
        with make_registry({"a": a}) as registry:
            registry.initialize(descriptors("a"))

        assert a.close_count == 1
