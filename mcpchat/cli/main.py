"""
mcpchat CLI - Chat with a local model that can use MCP tool servers.

Run `mcpchat` to start an interactive chat in the current directory.
Server definitions come from an mcp.json file; settings from .mcpchat/config.yaml.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from mcpchat import __version__
from mcpchat.core.history import DisplayMessage
from mcpchat.core.orchestrator import extract_thinking
from mcpchat.core.session import ChatSession
from mcpchat.mcp.registry import CapabilityRegistry
from mcpchat.mcp.schema import ServerDescriptor
from mcpchat.providers.base import ChatMessage, ProviderError
from mcpchat.state.store import ChatStore, YamlChatStore
from mcpchat.validation.config import (
    Config,
    ConfigError,
    MCPChatConfig,
    find_mcp_config,
    load_mcp_servers,
    write_sample_mcp_config,
)

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    """Route library logging through rich, on stderr."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


def load_settings(
    model: Optional[str] = None,
    mcp_config: Optional[str] = None,
    ollama_url: Optional[str] = None,
) -> Tuple[MCPChatConfig, List[ServerDescriptor]]:
    """
    Resolve settings and server descriptors.

    Command-line options override config.yaml; mcp.json globalSettings are
    folded in last.

    Raises:
        ConfigError: If no mcp.json can be found or it is invalid.
    """
    settings = Config.load().merged

    updates = {}
    if model:
        updates["model"] = model if "/" in model else f"ollama/{model}"
    if ollama_url:
        updates["ollama"] = settings.ollama.model_copy(update={"base_url": ollama_url})
    if updates:
        settings = settings.model_copy(update=updates)

    path = mcp_config or settings.mcp.config_file
    mcp_path = Path(path).expanduser() if path else find_mcp_config()
    if mcp_path is None:
        raise ConfigError(
            "No mcp.json found. Create one with 'mcpchat init-config mcp.json' "
            "or pass --mcp-config."
        )

    servers = load_mcp_servers(mcp_path)
    settings = servers.apply_to(settings)
    return settings, servers.descriptors()


class ChatREPL:
    """
    Interactive chat loop on top of a :class:`ChatSession`.

    Every message the orchestrator shows is printed and appended to the
    chat store, so `mcpchat history` can list past conversations.
    """

    SLASH_COMMANDS = ["/help", "/tools", "/servers", "/clear", "/exit", "/quit"]

    def __init__(self, session: ChatSession, store: Optional[ChatStore] = None):
        self.session = session
        self.store = store
        self.running = True
        self._status = None
        self._chat_id: Optional[str] = None
        self._titled = False

        self.orchestrator = session.new_orchestrator(
            on_message=self._on_message,
            on_thinking_status=self._on_status,
        )
        self._start_chat()

    def _start_chat(self) -> None:
        if self.store is not None:
            chat = self.store.create_chat("New Chat", model=self.session.provider.model)
            self._chat_id = chat.chat_id
            self._titled = False

    def _record(self, message: DisplayMessage) -> None:
        if self.store is None or self._chat_id is None:
            return
        self.store.append_message(self._chat_id, message)
        if message.is_from_user and not self._titled:
            self.store.rename(self._chat_id, _chat_title(message.content))
            self._titled = True

    # ── Orchestrator callbacks ────────────────────────────────────────────

    def _on_message(self, message: DisplayMessage) -> None:
        self._record(message)
        style = "red" if message.content.startswith("Error: ") else None
        console.print()
        console.print(Text(message.content, style=style))
        console.print()

    def _on_status(self, status: str) -> None:
        if self._status is not None:
            self._status.update(f"[bold blue]{status}[/bold blue]")

    # ── Output ────────────────────────────────────────────────────────────

    def _print_banner(self) -> None:
        info = Text()
        info.append(f"mcpchat v{__version__}", style="bold cyan")
        info.append("  |  ", style="dim")
        provider = self.session.provider
        info.append(f"Model: {provider.provider_name}/{provider.model}", style="dim")
        info.append("  |  ", style="dim")
        info.append(
            f"Servers: {self.session.registry.connected_server_count}  "
            f"Tools: {len(self.session.tools)}",
            style="dim",
        )
        console.print(info)
        console.print("[dim]Type a message, or /help for commands. /exit to quit.[/dim]")
        console.print()

    def _print_help(self) -> None:
        help_text = """
[bold]Commands[/bold]
  /tools      List available tools
  /servers    Show connected servers and their capabilities
  /clear      Start over with a fresh conversation
  /help       Show this help
  /exit       Quit
"""
        console.print(Panel(help_text.strip(), title="mcpchat Help", border_style="blue"))

    def _print_tools(self) -> None:
        print_tools(self.session.registry)

    def _print_servers(self) -> None:
        print_servers(self.session.registry, self.session.registry.connected_server_names())

    def _clear(self) -> None:
        self.orchestrator.clear_history()
        self._start_chat()
        console.clear()
        self._print_banner()

    # ── Loop ──────────────────────────────────────────────────────────────

    def _handle_command(self, cmd: str) -> bool:
        """Handle a slash command. Returns True if should continue."""
        command = cmd.split(maxsplit=1)[0].lower()

        if command in ("/exit", "/quit", "/q"):
            self.running = False
            return False
        elif command in ("/help", "/?"):
            self._print_help()
        elif command == "/tools":
            self._print_tools()
        elif command == "/servers":
            self._print_servers()
        elif command == "/clear":
            self._clear()
        else:
            console.print(f"[yellow]Unknown command: {command}[/yellow]")
            close = [c for c in self.SLASH_COMMANDS if c.startswith(command[:3])]
            if close:
                console.print(f"[dim]Did you mean: {', '.join(close)}?[/dim]")
            else:
                console.print("[dim]Type /help for available commands[/dim]")
        return True

    def send(self, text: str) -> None:
        """Run one user turn to completion."""
        self._record(DisplayMessage(content=text, is_from_user=True))
        with console.status("[bold blue]Thinking...[/bold blue]", spinner="dots") as status:
            self._status = status
            try:
                accepted = self.orchestrator.submit_user_message(text)
            finally:
                self._status = None
        if not accepted:
            console.print("[yellow]Still working on the previous message.[/yellow]")
            return

        reasoning = extract_thinking(_last_assistant_content(self.orchestrator.history))
        if reasoning:
            logger.debug("Model reasoning: %s", reasoning)

    def run(self) -> None:
        """Run the interactive REPL."""
        self._print_banner()

        while self.running:
            try:
                console.print("[bold green]> [/bold green]", end="")
                user_input = input().strip()
                if not user_input:
                    continue
                if user_input.startswith("/"):
                    if not self._handle_command(user_input):
                        break
                    continue
                self.send(user_input)
            except EOFError:
                break
            except KeyboardInterrupt:
                console.print("\n[dim]Interrupted. Type /exit to quit.[/dim]")

        console.print("[dim]Goodbye.[/dim]")


def _chat_title(text: str, limit: int = 40) -> str:
    title = " ".join(text.split())
    return title if len(title) <= limit else title[: limit - 3] + "..."


def _last_assistant_content(history: List[ChatMessage]) -> str:
    for message in reversed(history):
        if message.role == "assistant":
            return message.content
    return ""


def print_tools(registry: CapabilityRegistry) -> None:
    tools = registry.get_all_tools()
    if not tools:
        console.print("[yellow]No tools available.[/yellow]")
        return
    table = Table(title="Tools", show_lines=False)
    table.add_column("Tool", style="cyan")
    table.add_column("Server", style="dim")
    table.add_column("Description")
    for tool in tools:
        table.add_row(tool.name, registry.server_for_tool(tool.name) or "", tool.description or "")
    console.print(table)


def print_servers(registry: CapabilityRegistry, names: List[str]) -> None:
    table = Table(title="MCP Servers")
    table.add_column("Server", style="cyan")
    table.add_column("Status")
    table.add_column("Tools", justify="right")
    table.add_column("Resources", justify="right")
    table.add_column("Prompts", justify="right")
    for name in names:
        connected = registry.is_server_connected(name)
        caps = registry.server_capabilities(name)
        table.add_row(
            name,
            "[green]connected[/green]" if connected else "[red]not connected[/red]",
            str(len(caps["tools"])),
            str(len(caps["resources"])),
            str(len(caps["prompts"])),
        )
    console.print(table)


# ── Commands ─────────────────────────────────────────────────────────────


@click.group(invoke_without_command=True)
@click.version_option(__version__, "--version", "-v", prog_name="mcpchat")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """
    mcpchat - chat with a local model that can use MCP tool servers.

    Run without a command to start an interactive chat.

    \b
    Examples:
        mcpchat                           # Start interactive chat
        mcpchat chat --model qwen3        # Chat with a specific Ollama model
        mcpchat servers                   # Check server connections
        mcpchat init-config mcp.json      # Write a sample server file
        mcpchat configure -m qwen3        # Save qwen3 as the local default
    """
    if ctx.invoked_subcommand is None:
        ctx.invoke(chat)


@cli.command()
@click.option("--model", "-m", default=None, help="Model name, e.g. llama3.2 or ollama/qwen3")
@click.option("--mcp-config", "-c", default=None, help="Path to mcp.json")
@click.option("--ollama-url", default=None, help="Ollama base URL")
@click.option("--no-save", is_flag=True, help="Do not save this chat to .mcpchat/chats/")
def chat(model: Optional[str], mcp_config: Optional[str], ollama_url: Optional[str], no_save: bool) -> None:
    """Start an interactive chat."""
    try:
        settings, descriptors = load_settings(model, mcp_config, ollama_url)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    setup_logging(settings.logging.level)

    try:
        with console.status("[bold blue]Connecting to MCP servers...[/bold blue]"):
            session = ChatSession.start(descriptors, settings=settings)
    except (ProviderError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    with session:
        if not session.provider.validate_connection():
            console.print(
                f"[yellow]Warning: could not reach Ollama at {settings.ollama.base_url}[/yellow]"
            )
        store = None if no_save else YamlChatStore()
        ChatREPL(session, store).run()


@cli.command()
@click.option("--mcp-config", "-c", default=None, help="Path to mcp.json")
def servers(mcp_config: Optional[str]) -> None:
    """Connect to every configured server and report its capabilities."""
    try:
        settings, descriptors = load_settings(mcp_config=mcp_config)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    setup_logging(settings.logging.level)

    with CapabilityRegistry(
        timeouts=settings.mcp.timeouts,
        max_concurrent_connections=settings.mcp.max_concurrent_connections,
    ) as registry:
        with console.status("[bold blue]Connecting...[/bold blue]"):
            registry.initialize(descriptors)
        print_servers(registry, [d.name for d in descriptors])
        print_tools(registry)


@cli.command("init-config")
@click.argument("path", type=click.Path(dir_okay=False), default="mcp.json")
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing file")
def init_config(path: str, force: bool) -> None:
    """Write a sample mcp.json to PATH."""
    target = Path(path)
    if target.exists() and not force:
        console.print(f"[red]Error: {target} already exists (use --force to overwrite)[/red]")
        sys.exit(1)
    write_sample_mcp_config(target)
    console.print(f"[green]Created sample MCP configuration at {target}[/green]")


@cli.command()
@click.option("--model", "-m", default=None, help="Default model, e.g. llama3.2 or ollama/qwen3")
@click.option("--mcp-config", "-c", default=None, help="Default path to mcp.json")
@click.option("--global", "global_", is_flag=True, help="Write ~/.mcpchat/config.yaml instead of ./.mcpchat/")
def configure(model: Optional[str], mcp_config: Optional[str], global_: bool) -> None:
    """Save default settings to config.yaml."""
    if not model and not mcp_config:
        console.print("[yellow]Nothing to change. Pass --model and/or --mcp-config.[/yellow]")
        return

    try:
        config = Config.load()
        if model:
            config.set_model(model if "/" in model else f"ollama/{model}", global_=global_)
        if mcp_config:
            config.set_mcp_config_file(str(Path(mcp_config).expanduser().resolve()), global_=global_)
        settings = config.merged
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    config.save()

    scope = "global" if global_ else "local"
    console.print(f"[green]Saved {scope} settings.[/green] Model: {settings.model}")


@cli.command()
@click.option("--limit", "-n", default=20, help="Number of chats to show")
def history(limit: int) -> None:
    """List saved chats, newest first."""
    chats = YamlChatStore().list_chats()[:limit]
    if not chats:
        console.print("[dim]No saved chats.[/dim]")
        return

    table = Table(title="Saved Chats")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Model", style="dim")
    table.add_column("Messages", justify="right")
    table.add_column("Updated", style="dim")
    for record in chats:
        table.add_row(
            record.chat_id,
            record.title,
            record.model,
            str(len(record.messages)),
            record.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
