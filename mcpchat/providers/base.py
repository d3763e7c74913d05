"""
mcpchat Provider Base - Chat model providers and the wire types they speak.

This module defines the message and tool-definition types exchanged with a
chat-completion API, the interface every provider implements, and a factory
for creating provider instances.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Type

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from mcpchat.validation.config import MCPChatConfig

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


class ProviderError(Exception):
    """Raised when the model could not be reached or answered nonsense."""


# ── Translated tool schema ───────────────────────────────────────────────


class JsonSchema(BaseModel):
    """A parameter schema in the dialect the chat API expects."""

    model_config = ConfigDict(frozen=True)

    type: str = "string"
    description: Optional[str] = None
    properties: Optional[Dict[str, "JsonSchema"]] = None
    items: Optional["JsonSchema"] = None
    required: Optional[List[str]] = None
    enum: Optional[List[Any]] = None
    format: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class FunctionDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: JsonSchema


class ToolDefinition(BaseModel):
    """A tool as advertised to the model: ``{"type": "function", "function": {...}}``."""

    model_config = ConfigDict(frozen=True)

    type: str = "function"
    function: FunctionDefinition


# ── Chat messages ────────────────────────────────────────────────────────


class FunctionCall(BaseModel):
    name: str = "unknown"
    arguments: Optional[Dict[str, Any]] = None

    @field_validator("arguments", mode="before")
    @classmethod
    def _decode_arguments(cls, value: Any) -> Any:
        # Some models send arguments as a JSON-encoded string.
        if isinstance(value, str):
            try:
                decoded = json.loads(value) if value.strip() else {}
            except json.JSONDecodeError:
                return None
            return decoded if isinstance(decoded, dict) else None
        return value


class ToolCall(BaseModel):
    function: Optional[FunctionCall] = None


class ChatMessage(BaseModel):
    """One entry of the conversation history."""

    role: str  # system, user, assistant, tool
    content: str = ""
    images: Optional[List[str]] = None
    tool_calls: Optional[List[ToolCall]] = None

    @field_validator("content", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role="user", content=content)

    @classmethod
    def tool(cls, content: str) -> "ChatMessage":
        return cls(role="tool", content=content)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ChatResponse(BaseModel):
    model: str = ""
    message: ChatMessage
    done: bool = True
    done_reason: Optional[str] = None
    eval_count: int = 0


# ── Providers ────────────────────────────────────────────────────────────


class Provider(ABC):
    """
    Abstract base class for chat model providers.

    All provider implementations must inherit from this class and
    implement the required methods.

    Example:
        >>> class MyProvider(Provider):
        ...     def chat(self, messages, tools=()):
        ...         # Implementation
        ...         pass
    """

    def __init__(self, model: str):
        """
        Initialize the provider.

        Args:
            model: The model identifier.
        """
        self.model = model

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    def chat(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolDefinition] = (),
    ) -> ChatResponse:
        """
        Send the whole conversation and return the model's next message.

        Args:
            messages: Conversation history, oldest first.
            tools: Tools the model may call.

        Returns:
            ChatResponse with the assistant message.

        Raises:
            ProviderError: On transport failure or a malformed response.
        """
        pass

    @abstractmethod
    def validate_connection(self) -> bool:
        """
        Validate that the provider connection is working.

        Returns:
            True if connection is valid, False otherwise.
        """
        pass


class OllamaProvider(Provider):
    """Ollama ``/api/chat`` provider implementation."""

    def __init__(self, model: str, base_url: str = DEFAULT_OLLAMA_URL, timeout: float = 300.0):
        super().__init__(model)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def provider_name(self) -> str:
        return "ollama"

    def build_request(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolDefinition] = (),
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "stream": False,
        }
        if tools:
            body["tools"] = [t.model_dump(exclude_none=True) for t in tools]
        return body

    def chat(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolDefinition] = (),
    ) -> ChatResponse:
        """Generate the next assistant message using Ollama."""
        body = self.build_request(messages, tools)
        logger.debug("Calling Ollama model '%s' with %d messages", self.model, len(messages))

        try:
            response = httpx.post(f"{self.base_url}/api/chat", json=body, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"Ollama returned HTTP {exc.response.status_code}: {exc.response.text[:500]}"
            )
        except httpx.HTTPError as exc:
            raise ProviderError(f"Could not reach Ollama at {self.base_url}: {exc}")
        except ValueError as exc:
            raise ProviderError(f"Ollama returned invalid JSON: {exc}")

        if not isinstance(data, dict) or not data.get("message"):
            raise ProviderError("Ollama response contained no message")

        try:
            return ChatResponse.model_validate(data)
        except ValidationError as exc:
            raise ProviderError(f"Malformed Ollama response: {exc}")

    def validate_connection(self) -> bool:
        """Validate Ollama connection."""
        try:
            response = httpx.get(f"{self.base_url}/api/tags", timeout=5)
            return response.status_code == 200
        except httpx.HTTPError:
            return False


class ProviderFactory:
    """Factory for creating provider instances."""

    _providers: Dict[str, Type[Provider]] = {
        "ollama": OllamaProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: Type[Provider]) -> None:
        """Register a new provider."""
        cls._providers[name] = provider_class

    @classmethod
    def create(cls, model: str, settings: Optional[MCPChatConfig] = None) -> Provider:
        """
        Create a provider instance for the given model.

        Args:
            model: Model identifier (e.g., "ollama/llama3.2" or "llama3.2").
            settings: Validated mcpchat settings.

        Returns:
            Provider instance.

        Raises:
            ValueError: If the provider is not recognized.
        """
        if "/" in model:
            provider_name, model_name = model.split("/", 1)
        else:
            provider_name, model_name = "ollama", model

        if provider_name not in cls._providers:
            available = ", ".join(cls.available_providers())
            raise ValueError(f"Unknown provider: {provider_name} (available: {available})")

        provider_class = cls._providers[provider_name]
        if provider_class is OllamaProvider:
            settings = settings or MCPChatConfig()
            return OllamaProvider(
                model=model_name,
                base_url=settings.ollama.base_url,
                timeout=settings.agent.model_timeout,
            )
        return provider_class(model=model_name)

    @classmethod
    def available_providers(cls) -> List[str]:
        """Get list of available provider names."""
        return list(cls._providers.keys())
