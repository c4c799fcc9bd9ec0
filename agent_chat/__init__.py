"""Streaming chat client and state container for a remote conversational agent."""

from agent_chat.errors import ChatError, ErrorKind
from agent_chat.reducer import app_reducer
from agent_chat.service import ChatService
from agent_chat.session import ChatSession
from agent_chat.state import AppState, initial_state
from agent_chat.store import ChatStore

__all__ = [
    "AppState",
    "ChatError",
    "ChatService",
    "ChatSession",
    "ChatStore",
    "ErrorKind",
    "app_reducer",
    "initial_state",
]
