"""Wires config, registry, translator, prompt, and provider into chat sessions."""

import logging
from typing import Any, List, Optional, Sequence

from mcpchat.core.orchestrator import ConversationOrchestrator
from mcpchat.core.prompt import build_system_prompt
from mcpchat.core.translator import translate_tools
from mcpchat.mcp.registry import CapabilityRegistry
from mcpchat.mcp.schema import ServerDescriptor
from mcpchat.providers.base import Provider, ProviderFactory, ToolDefinition
from mcpchat.validation.config import Config, MCPChatConfig

logger = logging.getLogger(__name__)


class ChatSession:
    """
    Shared state for every conversation started from one configuration.

    Holds the capability registry, the translated tools, and the assembled
    system prompt. Each :meth:`new_orchestrator` call starts an independent
    conversation over the same servers.
    """

    def __init__(
        self,
        settings: MCPChatConfig,
        registry: CapabilityRegistry,
        provider: Provider,
        system_prompt: str,
        tools: List[ToolDefinition],
    ):
        self.settings = settings
        self.registry = registry
        self.provider = provider
        self.system_prompt = system_prompt
        self.tools = tools
        self._orchestrators: List[ConversationOrchestrator] = []

    @classmethod
    def start(
        cls,
        descriptors: Sequence[ServerDescriptor],
        settings: Optional[MCPChatConfig] = None,
        provider: Optional[Provider] = None,
        registry: Optional[CapabilityRegistry] = None,
    ) -> "ChatSession":
        """Connect to every server and prepare the prompt and tool list."""
        settings = settings or Config.load().merged
        if provider is None:
            provider = ProviderFactory.create(settings.model, settings)

        registry = registry or CapabilityRegistry(
            timeouts=settings.mcp.timeouts,
            max_concurrent_connections=settings.mcp.max_concurrent_connections,
        )
        registry.initialize(descriptors)
        try:
            tools = registry.get_all_tools()
            resources = registry.get_all_resources()
            prompts = registry.get_all_prompts()

            system_prompt = build_system_prompt(tools, resources, prompts)
            definitions = translate_tools(tools)
        except Exception:
            registry.shutdown()
            raise

        logger.info(
            "Session ready: %d/%d servers, %d tools for model '%s'",
            registry.connected_server_count, len(descriptors), len(definitions), provider.model,
        )
        return cls(settings, registry, provider, system_prompt, definitions)

    def new_orchestrator(self, **callbacks: Any) -> ConversationOrchestrator:
        """Start a conversation. Keyword arguments are the orchestrator callbacks."""
        orchestrator = ConversationOrchestrator(
            provider=self.provider,
            registry=self.registry,
            system_prompt=self.system_prompt,
            tools=self.tools,
            max_iterations=self.settings.agent.max_iterations,
            parallel_tool_calls=self.settings.agent.parallel_tool_calls,
            **callbacks,
        )
        self._orchestrators.append(orchestrator)
        return orchestrator

    def close(self) -> None:
        for orchestrator in self._orchestrators:
            orchestrator.close()
        self._orchestrators.clear()
        self.registry.shutdown()

    def __enter__(self) -> "ChatSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
