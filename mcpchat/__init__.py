"""
mcpchat - Chat with a local model that can call MCP tool servers.

Connects to any number of Model Context Protocol servers over stdio,
aggregates their tools, resources and prompts, and lets an Ollama-hosted
model call those tools during a conversation.

Architecture:
- mcp/          stdio transport, per-server client, capability registry
- core/         schema translation, system prompt, conversation orchestrator
- providers/    chat model providers (Ollama /api/chat)
- validation/   layered YAML settings and the mcp.json server file
- state/        saved chat transcripts under .mcpchat/chats/
"""

__version__ = "1.0.0"
__license__ = "Apache-2.0"

from mcpchat.core.orchestrator import ConversationOrchestrator
from mcpchat.core.session import ChatSession
from mcpchat.mcp.registry import CapabilityRegistry

__all__ = [
    "CapabilityRegistry",
    "ChatSession",
    "ConversationOrchestrator",
    "__version__",
]
