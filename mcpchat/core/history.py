"""Conversation history and the messages shown to the user."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from mcpchat.providers.base import ChatMessage


class DisplayMessage(BaseModel):
    """A message as the UI shows it (never sent to the model)."""

    content: str
    is_from_user: bool = False
    timestamp: datetime = Field(default_factory=datetime.now)


class ConversationHistory:
    """
    Append-only message list for one chat session.

    The system prompt, if non-blank, is always the first message and
    survives :meth:`clear`.
    """

    def __init__(self, system_prompt: Optional[str] = None):
        self._system_prompt = system_prompt
        self._messages: List[ChatMessage] = []
        self._seed()

    def _seed(self) -> None:
        if self.has_system_prompt:
            self._messages.append(ChatMessage.system(self._system_prompt))

    @property
    def system_prompt(self) -> Optional[str]:
        return self._system_prompt

    @property
    def has_system_prompt(self) -> bool:
        return bool(self._system_prompt and self._system_prompt.strip())

    def add(self, message: ChatMessage) -> None:
        if message is None:
            raise TypeError("Message cannot be None")
        self._messages.append(message)

    def add_user_message(self, content: str) -> None:
        if content is None:
            raise TypeError("Content cannot be None")
        self._messages.append(ChatMessage.user(content))

    def add_tool_result(self, output: str) -> None:
        if output is None:
            raise TypeError("Tool result cannot be None")
        self._messages.append(ChatMessage.tool(output))

    def messages(self) -> List[ChatMessage]:
        """A copy of the history, oldest first."""
        return list(self._messages)

    def clear(self) -> None:
        self._messages.clear()
        self._seed()

    def __len__(self) -> int:
        return len(self._messages)
