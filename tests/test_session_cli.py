"""Tests for session wiring and the command-line interface."""

import json

import pytest
from click.testing import CliRunner

from mcpchat.cli import main as cli_main
from mcpchat.cli.main import ChatREPL, cli
from mcpchat.core import session as session_module
from mcpchat.core.session import ChatSession
from mcpchat.mcp.registry import CapabilityRegistry
from mcpchat.mcp.schema import ServerDescriptor, Tool, ToolCallResult
from mcpchat.providers.base import ChatMessage, ChatResponse, Provider
from mcpchat.state.store import YamlChatStore
from mcpchat.validation.config import Config, MCPChatConfig


class StubClient:
    def __init__(self, name, tools):
        self.name = name
        self.tools = tools
        self.is_alive = True

    def supports(self, kind):
        return kind == "tools"

    def list_tools(self):
        return self.tools

    def list_resources(self):
        return []

    def list_prompts(self):
        return []

    def call_tool(self, name, arguments=None):
        return ToolCallResult.ok(name, "sunny")

    def close(self):
        self.is_alive = False


class EchoProvider(Provider):
    def __init__(self):
        super().__init__("echo-model")

    @property
    def provider_name(self):
        return "echo"

    def chat(self, messages, tools=()):
        return ChatResponse(
            model=self.model,
            message=ChatMessage(role="assistant", content=f"echo: {messages[-1].content}"),
        )

    def validate_connection(self):
        return True


@pytest.fixture
def session():
    weather = Tool(
        name="weather",
        description="Current weather",
        inputSchema={"type": "object", "properties": {"city": {"type": "string"}}},
    )
    registry = CapabilityRegistry(client_factory=lambda d, t: StubClient(d.name, [weather]))
    session = ChatSession.start(
        [ServerDescriptor(name="wx", command="unused")],
        settings=MCPChatConfig(),
        provider=EchoProvider(),
        registry=registry,
    )
    yield session
    session.close()


class TestChatSession:
    """Tests for ChatSession."""

    def test_start_builds_prompt_and_tools(self, session):
        assert "Tool: weather" in session.system_prompt
        assert [t.function.name for t in session.tools] == ["weather"]
        assert session.registry.connected_server_names() == ["wx"]

    def test_orchestrators_share_registry(self, session):
        first = session.new_orchestrator()
        second = session.new_orchestrator()

        first.submit_user_message("one")

        assert first.registry is second.registry
        assert first.history_size == 3
        assert second.history_size == 1

    def test_close_shuts_down_registry(self, session):
        session.close()

        assert session.registry.connected_server_count == 0

    def test_start_reads_layered_config(self, tmp_path, monkeypatch):
        """Without explicit settings the local .mcpchat/config.yaml picks the model."""
        (tmp_path / ".mcpchat").mkdir()
        (tmp_path / ".mcpchat" / "config.yaml").write_text("model: ollama/qwen3\n")
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(Config, "GLOBAL_CONFIG_DIR", tmp_path / "home")
        registry = CapabilityRegistry(client_factory=lambda d, t: StubClient(d.name, []))

        session = ChatSession.start([], registry=registry)
        try:
            assert session.settings.model == "ollama/qwen3"
            assert session.provider.provider_name == "ollama"
            assert session.provider.model == "qwen3"
        finally:
            session.close()

    def test_unknown_provider_connects_nothing(self):
        """A bad model prefix fails before any server is launched."""
        launched = []

        def factory(descriptor, timeouts):
            launched.append(descriptor.name)
            return StubClient(descriptor.name, [])

        registry = CapabilityRegistry(client_factory=factory)

        with pytest.raises(ValueError, match="Unknown provider: bogus"):
            ChatSession.start(
                [ServerDescriptor(name="wx", command="unused")],
                settings=MCPChatConfig(model="bogus/x"),
                registry=registry,
            )

        assert launched == []
        assert registry.connected_server_count == 0

    def test_failure_after_connect_shuts_down_registry(self, monkeypatch):
        """Servers are closed when the session cannot be assembled."""
        clients = []

        def factory(descriptor, timeouts):
            client = StubClient(descriptor.name, [])
            clients.append(client)
            return client

        def broken_prompt(*args):
            raise RuntimeError("prompt assembly failed")

        monkeypatch.setattr(session_module, "build_system_prompt", broken_prompt)
        registry = CapabilityRegistry(client_factory=factory)

        with pytest.raises(RuntimeError, match="prompt assembly failed"):
            ChatSession.start(
                [ServerDescriptor(name="wx", command="unused")],
                settings=MCPChatConfig(),
                provider=EchoProvider(),
                registry=registry,
            )

        assert registry.connected_server_count == 0
        assert clients[0].is_alive is False


class TestChatREPL:
    """Tests for the REPL wiring to the chat store."""

    def test_send_records_transcript(self, session, tmp_path):
        store = YamlChatStore(tmp_path / "chats")
        repl = ChatREPL(session, store)

        repl.send("What is the weather in Paris?")

        chat = store.list_chats()[0]
        assert chat.title == "What is the weather in Paris?"
        assert chat.model == "echo-model"
        assert [(m.content, m.is_from_user) for m in chat.messages] == [
            ("What is the weather in Paris?", True),
            ("echo: What is the weather in Paris?", False),
        ]

    def test_clear_starts_new_chat(self, session, tmp_path):
        store = YamlChatStore(tmp_path / "chats")
        repl = ChatREPL(session, store)
        repl.send("hello")

        repl._handle_command("/clear")

        assert len(store.list_chats()) == 2
        assert repl.orchestrator.history_size == 1

    def test_exit_command(self, session):
        repl = ChatREPL(session)

        assert repl._handle_command("/exit") is False
        assert repl.running is False
        assert repl._handle_command("/bogus") is True


class TestCommands:
    """Tests for the click commands."""

    def test_init_config(self, tmp_path):
        runner = CliRunner()
        target = tmp_path / "mcp.json"

        result = runner.invoke(cli, ["init-config", str(target)])

        assert result.exit_code == 0
        assert "mcpServers" in json.loads(target.read_text())

        again = runner.invoke(cli, ["init-config", str(target)])
        assert again.exit_code == 1

    def test_history_lists_saved_chats(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        store = YamlChatStore()
        chat = store.create_chat("Saved", model="llama3.2")

        result = CliRunner().invoke(cli, ["history"])

        assert result.exit_code == 0
        assert chat.chat_id in result.output

    def test_servers_without_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(cli_main.Config, "GLOBAL_CONFIG_DIR", tmp_path / "home")
        monkeypatch.setattr(cli_main, "find_mcp_config", lambda: None)

        result = CliRunner().invoke(cli, ["servers"])

        assert result.exit_code == 1
        assert "No mcp.json found" in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "mcpchat" in result.output

    def test_configure_writes_local_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(cli_main.Config, "GLOBAL_CONFIG_DIR", tmp_path / "home")
        (tmp_path / "servers.json").write_text('{"mcpServers": {}}')

        result = CliRunner().invoke(cli, ["configure", "-m", "qwen3", "-c", "servers.json"])

        assert result.exit_code == 0
        assert (tmp_path / ".mcpchat" / "config.yaml").exists()
        assert not (tmp_path / "home" / "config.yaml").exists()
        settings = Config.load().merged
        assert settings.model == "ollama/qwen3"
        assert settings.mcp.config_file == str((tmp_path / "servers.json").resolve())

    def test_configure_global(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(cli_main.Config, "GLOBAL_CONFIG_DIR", tmp_path / "home")

        result = CliRunner().invoke(cli, ["configure", "--global", "-m", "ollama/llama3.1"])

        assert result.exit_code == 0
        assert (tmp_path / "home" / "config.yaml").exists()
        assert not (tmp_path / ".mcpchat").exists()
        assert Config.load().merged.model == "ollama/llama3.1"

    def test_configure_without_options_changes_nothing(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(cli_main.Config, "GLOBAL_CONFIG_DIR", tmp_path / "home")

        result = CliRunner().invoke(cli, ["configure"])

        assert result.exit_code == 0
        assert "Nothing to change" in result.output
        assert not (tmp_path / ".mcpchat").exists()
