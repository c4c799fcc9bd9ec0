"""Every way the application state can change, as reducer intents.

Each intent is a frozen model tagged by a ``type`` string. ``Action`` is the
closed union the reducer accepts.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from agent_chat.errors import ChatError
from agent_chat.models import Annotation, McpApprovalRequest
from agent_chat.state import Message, UsageInfo


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Intent(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class AuthInitialized(Intent):
    type: Literal["AUTH_INITIALIZED"] = "AUTH_INITIALIZED"
    user: dict[str, Any]


class AuthTokenExpired(Intent):
    type: Literal["AUTH_TOKEN_EXPIRED"] = "AUTH_TOKEN_EXPIRED"


# ---------------------------------------------------------------------------
# Chat messages
# ---------------------------------------------------------------------------

class SendMessage(Intent):
    type: Literal["CHAT_SEND_MESSAGE"] = "CHAT_SEND_MESSAGE"
    message: Message


class AddAssistantMessage(Intent):
    type: Literal["CHAT_ADD_ASSISTANT_MESSAGE"] = "CHAT_ADD_ASSISTANT_MESSAGE"
    message_id: str
    time: datetime = Field(default_factory=_now)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

class StartStream(Intent):
    type: Literal["CHAT_START_STREAM"] = "CHAT_START_STREAM"
    message_id: str
    conversation_id: str | None = None


class StreamChunk(Intent):
    type: Literal["CHAT_STREAM_CHUNK"] = "CHAT_STREAM_CHUNK"
    message_id: str
    content: str


class StreamAnnotations(Intent):
    type: Literal["CHAT_STREAM_ANNOTATIONS"] = "CHAT_STREAM_ANNOTATIONS"
    message_id: str
    annotations: tuple[Annotation, ...]


class McpApprovalRequested(Intent):
    type: Literal["CHAT_MCP_APPROVAL_REQUEST"] = "CHAT_MCP_APPROVAL_REQUEST"
    message_id: str
    approval_request: McpApprovalRequest
    previous_response_id: str | None = None


class McpApprovalResponded(Intent):
    type: Literal["CHAT_MCP_APPROVAL_RESPONDED"] = "CHAT_MCP_APPROVAL_RESPONDED"
    approval_request_id: str
    approved: bool


class StreamComplete(Intent):
    type: Literal["CHAT_STREAM_COMPLETE"] = "CHAT_STREAM_COMPLETE"
    message_id: str
    usage: UsageInfo
    response_id: str | None = None


class CancelStream(Intent):
    type: Literal["CHAT_CANCEL_STREAM"] = "CHAT_CANCEL_STREAM"


# ---------------------------------------------------------------------------
# Errors / reset
# ---------------------------------------------------------------------------

class ChatFailed(Intent):
    type: Literal["CHAT_ERROR"] = "CHAT_ERROR"
    error: ChatError


class ClearError(Intent):
    type: Literal["CHAT_CLEAR_ERROR"] = "CHAT_CLEAR_ERROR"


class ClearChat(Intent):
    type: Literal["CHAT_CLEAR"] = "CHAT_CLEAR"


Action = Union[
    AuthInitialized,
    AuthTokenExpired,
    SendMessage,
    AddAssistantMessage,
    StartStream,
    StreamChunk,
    StreamAnnotations,
    McpApprovalRequested,
    McpApprovalResponded,
    StreamComplete,
    CancelStream,
    ChatFailed,
    ClearError,
    ClearChat,
]
