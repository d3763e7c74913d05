"""
mcpchat core module.

This module contains schema translation, system prompt assembly, and the
conversation orchestrator.
"""

from mcpchat.core.history import ConversationHistory, DisplayMessage
from mcpchat.core.orchestrator import ConversationOrchestrator, OrchestratorState
from mcpchat.core.prompt import build_system_prompt
from mcpchat.core.session import ChatSession
from mcpchat.core.translator import translate_schema, translate_tools

__all__ = [
    "ChatSession",
    "ConversationHistory",
    "ConversationOrchestrator",
    "DisplayMessage",
    "OrchestratorState",
    "build_system_prompt",
    "translate_schema",
    "translate_tools",
]
