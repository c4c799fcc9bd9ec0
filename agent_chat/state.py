"""The immutable application state snapshot the UI renders.

A new ``AppState`` replaces the old one on every transition; nothing in
here is ever mutated in place.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from agent_chat.errors import ChatError
from agent_chat.models import Annotation, McpApprovalRequest

AuthStatus = Literal["initializing", "authenticated", "unauthenticated", "error"]
ChatStatus = Literal["idle", "sending", "streaming", "error"]
Role = Literal["user", "assistant", "approval"]


class StateModel(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


# ---------------------------------------------------------------------------
# Message
# ---------------------------------------------------------------------------

class Attachment(StateModel):
    """Display metadata for a file sent with a user message."""
    file_name: str
    mime_type: str
    size_bytes: int
    data_uri: str | None = None  # images only, for previews


class UsageInfo(StateModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    duration: float = 0.0


class McpApproval(McpApprovalRequest):
    """Approval request as stored on an ``approval`` message."""
    previous_response_id: str = ""
    approved: bool | None = None  # None while the decision is pending


class Message(StateModel):
    id: str
    role: Role
    content: str = ""
    time: datetime | None = None
    attachments: tuple[Attachment, ...] | None = None
    annotations: tuple[Annotation, ...] | None = None
    usage: UsageInfo | None = None
    duration: float | None = None
    mcp_approval: McpApproval | None = None


# ---------------------------------------------------------------------------
# Sub-states
# ---------------------------------------------------------------------------

class AuthState(StateModel):
    status: AuthStatus = "initializing"
    user: dict[str, Any] | None = None
    error: str | None = None


class ChatState(StateModel):
    status: ChatStatus = "idle"
    messages: tuple[Message, ...] = ()
    current_conversation_id: str | None = None
    last_response_id: str | None = None
    error: ChatError | None = None
    streaming_message_id: str | None = None

    @property
    def pending_approval(self) -> Message | None:
        """The newest approval message still waiting for a decision."""
        for message in reversed(self.messages):
            if message.mcp_approval is not None and message.mcp_approval.approved is None:
                return message
        return None


class UiState(StateModel):
    chat_input_enabled: bool = True


class AppState(StateModel):
    auth: AuthState = Field(default_factory=AuthState)
    chat: ChatState = Field(default_factory=ChatState)
    ui: UiState = Field(default_factory=UiState)


def initial_state() -> AppState:
    """State at application start."""
    return AppState()
