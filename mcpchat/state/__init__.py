"""
mcpchat state module.

This module provides persistence for chat transcripts.
"""

from mcpchat.state.store import ChatRecord, ChatStore, YamlChatStore

__all__ = ["ChatRecord", "ChatStore", "YamlChatStore"]
