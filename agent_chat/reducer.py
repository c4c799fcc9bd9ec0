"""Application state reducer.

``app_reducer(state, action)`` is a pure function: it never mutates its
input and always returns either a new ``AppState`` or, when nothing
changes, the very same object it was given.

Intents are dispatched through ``_HANDLERS`` keyed by ``action.type``.
Unknown intents fall through to the identity transition.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from agent_chat import actions as a
from agent_chat.state import AppState, AuthState, ChatState, McpApproval, Message


def _index_of(messages: tuple[Message, ...], message_id: str | None) -> int | None:
    if message_id is None:
        return None
    for index, message in enumerate(messages):
        if message.id == message_id:
            return index
    return None


def _replace_at(messages: tuple[Message, ...], index: int, **updates: Any) -> tuple[Message, ...]:
    patched = messages[index].model_copy(update=updates)
    return messages[:index] + (patched,) + messages[index + 1:]


def _with(state: AppState, *, chat: dict[str, Any] | None = None, ui: dict[str, Any] | None = None) -> AppState:
    updates: dict[str, Any] = {}
    if chat is not None:
        updates["chat"] = state.chat.model_copy(update=chat)
    if ui is not None:
        updates["ui"] = state.ui.model_copy(update=ui)
    return state.model_copy(update=updates)


def _input_enabled(chat: ChatState) -> bool:
    # An unanswered approval keeps the input frozen
    return chat.pending_approval is None


def _streaming_index(state: AppState, message_id: str) -> int | None:
    """Index of ``message_id`` if it is the live streaming target, else None."""
    if message_id != state.chat.streaming_message_id:
        return None
    return _index_of(state.chat.messages, message_id)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

def _auth_initialized(state: AppState, action: a.AuthInitialized) -> AppState:
    auth = AuthState(status="authenticated", user=action.user, error=None)
    return state.model_copy(update={"auth": auth})


def _auth_token_expired(state: AppState, action: a.AuthTokenExpired) -> AppState:
    auth = state.auth.model_copy(update={"status": "unauthenticated"})
    return state.model_copy(update={"auth": auth})


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def _send_message(state: AppState, action: a.SendMessage) -> AppState:
    return _with(state, chat={
        "status": "sending",
        "messages": state.chat.messages + (action.message,),
    })


def _add_assistant_message(state: AppState, action: a.AddAssistantMessage) -> AppState:
    placeholder = Message(id=action.message_id, role="assistant", content="", time=action.time)
    return _with(state, chat={"messages": state.chat.messages + (placeholder,)})


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

def _start_stream(state: AppState, action: a.StartStream) -> AppState:
    return _with(
        state,
        chat={
            "status": "streaming",
            "current_conversation_id": action.conversation_id or state.chat.current_conversation_id,
            "streaming_message_id": action.message_id,
            "error": None,
        },
        ui={"chat_input_enabled": False},
    )


def _stream_chunk(state: AppState, action: a.StreamChunk) -> AppState:
    index = _streaming_index(state, action.message_id)
    if index is None:
        return state
    messages = state.chat.messages
    content = messages[index].content + action.content
    return _with(state, chat={"messages": _replace_at(messages, index, content=content)})


def _stream_annotations(state: AppState, action: a.StreamAnnotations) -> AppState:
    index = _streaming_index(state, action.message_id)
    if index is None:
        return state
    messages = state.chat.messages
    existing = messages[index].annotations or ()
    return _with(state, chat={
        "messages": _replace_at(messages, index, annotations=existing + tuple(action.annotations)),
    })


def _mcp_approval_request(state: AppState, action: a.McpApprovalRequested) -> AppState:
    approval = McpApproval(
        **action.approval_request.model_dump(),
        previous_response_id=action.previous_response_id or state.chat.last_response_id or "",
    )
    message = Message(id=f"approval-{action.message_id}", role="approval", mcp_approval=approval)
    return _with(
        state,
        chat={"messages": state.chat.messages + (message,), "status": "idle"},
        ui={"chat_input_enabled": False},
    )


def _mcp_approval_responded(state: AppState, action: a.McpApprovalResponded) -> AppState:
    messages = state.chat.messages
    for index, message in enumerate(messages):
        if message.mcp_approval is not None and message.mcp_approval.id == action.approval_request_id:
            decided = message.mcp_approval.model_copy(update={"approved": action.approved})
            return _with(state, chat={"messages": _replace_at(messages, index, mcp_approval=decided)})
    return state


def _stream_complete(state: AppState, action: a.StreamComplete) -> AppState:
    if action.message_id != state.chat.streaming_message_id:
        return state
    messages = state.chat.messages
    index = _index_of(messages, action.message_id)
    if index is not None:
        messages = _replace_at(messages, index, usage=action.usage, duration=action.usage.duration)
    chat = state.chat.model_copy(update={
        "status": "idle",
        "streaming_message_id": None,
        "messages": messages,
        "last_response_id": action.response_id or state.chat.last_response_id,
    })
    ui = state.ui.model_copy(update={"chat_input_enabled": _input_enabled(chat)})
    return state.model_copy(update={"chat": chat, "ui": ui})


def _cancel_stream(state: AppState, action: a.CancelStream) -> AppState:
    return _with(
        state,
        chat={"status": "idle", "streaming_message_id": None},
        ui={"chat_input_enabled": _input_enabled(state.chat)},
    )


# ---------------------------------------------------------------------------
# Errors / reset
# ---------------------------------------------------------------------------

def _chat_error(state: AppState, action: a.ChatFailed) -> AppState:
    # Non-recoverable errors leave the input disabled
    return _with(
        state,
        chat={"status": "error", "error": action.error, "streaming_message_id": None},
        ui={"chat_input_enabled": action.error.recoverable},
    )


def _clear_error(state: AppState, action: a.ClearError) -> AppState:
    return _with(
        state,
        chat={"error": None, "status": "idle"},
        ui={"chat_input_enabled": _input_enabled(state.chat)},
    )


def _clear_chat(state: AppState, action: a.ClearChat) -> AppState:
    # Auth survives a chat reset
    return state.model_copy(update={
        "chat": ChatState(),
        "ui": state.ui.model_copy(update={"chat_input_enabled": True}),
    })


_HANDLERS: dict[str, Callable[[AppState, Any], AppState]] = {
    "AUTH_INITIALIZED": _auth_initialized,
    "AUTH_TOKEN_EXPIRED": _auth_token_expired,
    "CHAT_SEND_MESSAGE": _send_message,
    "CHAT_ADD_ASSISTANT_MESSAGE": _add_assistant_message,
    "CHAT_START_STREAM": _start_stream,
    "CHAT_STREAM_CHUNK": _stream_chunk,
    "CHAT_STREAM_ANNOTATIONS": _stream_annotations,
    "CHAT_MCP_APPROVAL_REQUEST": _mcp_approval_request,
    "CHAT_MCP_APPROVAL_RESPONDED": _mcp_approval_responded,
    "CHAT_STREAM_COMPLETE": _stream_complete,
    "CHAT_CANCEL_STREAM": _cancel_stream,
    "CHAT_ERROR": _chat_error,
    "CHAT_CLEAR_ERROR": _clear_error,
    "CHAT_CLEAR": _clear_chat,
}


def app_reducer(state: AppState, action: a.Action) -> AppState:
    """Return the state that results from applying ``action`` to ``state``.

    Intents with no registered handler (including anything outside the
    ``Action`` union) return ``state`` unchanged.
    """
    handler = _HANDLERS.get(getattr(action, "type", None))
    if handler is None:
        return state
    return handler(state, action)
