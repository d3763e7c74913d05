"""
mcpchat providers module.

This module provides the chat model abstraction and its wire types.
"""

from mcpchat.providers.base import (
    ChatMessage,
    ChatResponse,
    FunctionCall,
    FunctionDefinition,
    JsonSchema,
    OllamaProvider,
    Provider,
    ProviderError,
    ProviderFactory,
    ToolCall,
    ToolDefinition,
)

__all__ = [
    "ChatMessage",
    "ChatResponse",
    "FunctionCall",
    "FunctionDefinition",
    "JsonSchema",
    "OllamaProvider",
    "Provider",
    "ProviderError",
    "ProviderFactory",
    "ToolCall",
    "ToolDefinition",
]
