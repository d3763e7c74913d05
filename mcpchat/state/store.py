"""
mcpchat Chat Store - Persistent chat transcripts.

The core never touches storage itself; the application layer injects a
:class:`ChatStore` and feeds it the messages the orchestrator displays.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field

from mcpchat.core.history import DisplayMessage


class ChatRecord(BaseModel):
    """A saved chat and its visible transcript."""

    chat_id: str
    title: str
    model: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    messages: List[DisplayMessage] = Field(default_factory=list)


class ChatStore(ABC):
    """Storage interface for chat transcripts."""

    @abstractmethod
    def create_chat(self, title: str, model: str = "") -> ChatRecord:
        """Create and persist an empty chat."""

    @abstractmethod
    def append_message(self, chat_id: str, message: DisplayMessage) -> None:
        """Append one message to an existing chat."""

    @abstractmethod
    def load(self, chat_id: str) -> Optional[ChatRecord]:
        """Return the chat, or None if it does not exist."""

    @abstractmethod
    def list_chats(self) -> List[ChatRecord]:
        """All chats, most recently updated first."""

    @abstractmethod
    def rename(self, chat_id: str, title: str) -> bool:
        """Change a chat's title. Returns False if it does not exist."""

    @abstractmethod
    def delete(self, chat_id: str) -> bool:
        """Delete a chat. Returns False if it does not exist."""


class YamlChatStore(ChatStore):
    """
    One YAML file per chat under ``chats_dir``.

    Example:
        >>> store = YamlChatStore(Path(".mcpchat/chats"))
        >>> chat = store.create_chat("New Chat", model="llama3.2")
        >>> store.append_message(chat.chat_id, DisplayMessage(content="hi", is_from_user=True))
    """

    def __init__(self, chats_dir: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            chats_dir: Directory for chat files. Defaults to ./.mcpchat/chats/.
        """
        self.chats_dir = Path(chats_dir) if chats_dir else Path.cwd() / ".mcpchat" / "chats"
        self.chats_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, chat_id: str) -> Path:
        return self.chats_dir / f"{chat_id}.yaml"

    def _save(self, chat: ChatRecord) -> None:
        with open(self._path(chat.chat_id), "w") as f:
            yaml.dump(chat.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)

    def create_chat(self, title: str, model: str = "") -> ChatRecord:
        chat = ChatRecord(chat_id=uuid.uuid4().hex[:12], title=title, model=model)
        self._save(chat)
        return chat

    def append_message(self, chat_id: str, message: DisplayMessage) -> None:
        chat = self.load(chat_id)
        if chat is None:
            raise KeyError(f"Unknown chat: {chat_id}")
        chat.messages.append(message)
        chat.updated_at = datetime.now()
        self._save(chat)

    def load(self, chat_id: str) -> Optional[ChatRecord]:
        path = self._path(chat_id)
        if not path.exists():
            return None
        with open(path) as f:
            data = yaml.safe_load(f)
        return ChatRecord.model_validate(data) if data else None

    def list_chats(self) -> List[ChatRecord]:
        chats = []
        for path in self.chats_dir.glob("*.yaml"):
            chat = self.load(path.stem)
            if chat is not None:
                chats.append(chat)
        chats.sort(key=lambda c: c.updated_at, reverse=True)
        return chats

    def rename(self, chat_id: str, title: str) -> bool:
        chat = self.load(chat_id)
        if chat is None:
            return False
        chat.title = title
        chat.updated_at = datetime.now()
        self._save(chat)
        return True

    def delete(self, chat_id: str) -> bool:
        path = self._path(chat_id)
        if path.exists():
            path.unlink()
            return True
        return False
