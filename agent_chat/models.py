"""Pydantic models — the wire contract between the chat backend and this client.

These models define the request bodies we POST and the event records that
arrive in the SSE stream. Field names are snake_case in Python and camelCase
on the wire.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for everything that crosses the wire (camelCase aliases, immutable)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict using wire names, with unset optionals dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Shared payload shapes
# ---------------------------------------------------------------------------

class Annotation(WireModel):
    """A citation attached to a span of the assistant's answer."""
    type: str
    label: str = ""
    url: str | None = None
    file_id: str | None = None
    text_to_replace: str | None = None
    start_index: int = 0
    end_index: int = 0
    quote: str | None = None


class McpApprovalRequest(WireModel):
    """An MCP tool call the agent wants the user to approve."""
    id: str
    tool_name: str
    server_label: str
    arguments: str | None = None

    @field_validator("arguments", mode="before")
    @classmethod
    def _arguments_as_text(cls, value: Any) -> Any:
        # Some backends send the tool arguments as an object instead of JSON text
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value)


class FileDataUri(WireModel):
    """A non-image attachment inlined as a data URI."""
    data_uri: str
    file_name: str
    mime_type: str


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class McpApprovalDecision(WireModel):
    approval_request_id: str
    approved: bool


class ChatRequest(WireModel):
    """POST {api_url}/chat/stream request body.

    A new turn carries the user's text and attachments; an approval turn
    carries "Approved"/"Rejected" plus ``mcp_approval``.
    """
    message: str
    conversation_id: str | None = None
    image_data_uris: list[str] | None = None
    file_data_uris: list[FileDataUri] | None = None
    previous_response_id: str | None = None
    mcp_approval: McpApprovalDecision | None = None

    def to_payload(self) -> dict[str, Any]:
        # conversationId is always present; null starts a new conversation
        payload = super().to_payload()
        payload.setdefault("conversationId", None)
        return payload


# ---------------------------------------------------------------------------
# SSE event records (what goes in the `data:` field of each SSE record)
# ---------------------------------------------------------------------------

class ConversationIdEvent(WireModel):
    type: Literal["conversationId"] = "conversationId"
    conversation_id: str


class ChunkEvent(WireModel):
    type: Literal["chunk"] = "chunk"
    content: str


class AnnotationsEvent(WireModel):
    type: Literal["annotations"] = "annotations"
    annotations: list[Annotation] = Field(default_factory=list)


class McpApprovalRequestEvent(WireModel):
    type: Literal["mcpApprovalRequest"] = "mcpApprovalRequest"
    approval_request: McpApprovalRequest


class UsageEvent(WireModel):
    type: Literal["usage"] = "usage"
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    duration: float = 0.0
    response_id: str | None = None


class DoneEvent(WireModel):
    type: Literal["done"] = "done"


class ErrorEvent(WireModel):
    type: Literal["error"] = "error"
    message: str = "Stream error occurred"


StreamEvent = Annotated[
    Union[
        ConversationIdEvent,
        ChunkEvent,
        AnnotationsEvent,
        McpApprovalRequestEvent,
        UsageEvent,
        DoneEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)
