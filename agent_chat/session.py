"""One chat view's worth of wiring.

Owns a ``ChatStore`` and a ``ChatService`` bound to it, and fills in the
conversation id and continuation token from the current state so callers
only deal with text, files and approval decisions.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx

from agent_chat.actions import AuthInitialized, AuthTokenExpired
from agent_chat.attachments import FileSource
from agent_chat.config import settings
from agent_chat.service import AccessTokenProvider, ChatService
from agent_chat.state import AppState
from agent_chat.store import ChatStore


class ChatSession:
    def __init__(
        self,
        get_access_token: AccessTokenProvider,
        *,
        api_url: str | None = None,
        store: ChatStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        **service_options: Any,
    ) -> None:
        self.store = store or ChatStore()
        self.service = ChatService(
            api_url or settings.api_url,
            get_access_token,
            self.store.dispatch,
            http_client=http_client,
            **service_options,
        )

    async def __aenter__(self) -> ChatSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.service.aclose()

    @property
    def state(self) -> AppState:
        return self.store.state

    def sign_in(self, user: dict[str, Any]) -> None:
        self.store.dispatch(AuthInitialized(user=user))

    def sign_out_expired(self) -> None:
        self.store.dispatch(AuthTokenExpired())

    async def send(self, text: str, files: Sequence[FileSource] | None = None) -> None:
        chat = self.state.chat
        await self.service.send_message(
            text,
            chat.current_conversation_id,
            files,
            chat.last_response_id,
        )

    async def respond_to_approval(self, approved: bool, approval_message_id: str | None = None) -> None:
        """Approve or reject a pending tool call (the newest one by default).

        Raises:
            LookupError: No matching approval is waiting for a decision.
        """
        chat = self.state.chat
        if approval_message_id is None:
            message = chat.pending_approval
        else:
            message = next((m for m in chat.messages if m.id == approval_message_id), None)
        if message is None or message.mcp_approval is None:
            raise LookupError("No pending approval request")

        approval = message.mcp_approval
        await self.service.send_mcp_approval(
            approval.id,
            approved,
            chat.last_response_id or approval.previous_response_id or None,
            chat.current_conversation_id,
        )

    async def retry(self) -> None:
        """Re-run the operation behind the current error, if it has one."""
        error = self.state.chat.error
        if error is None or error.retry is None:
            return
        self.service.clear_error()
        await error.retry()

    def cancel(self) -> None:
        self.service.cancel_stream()

    def new_chat(self) -> None:
        self.service.clear_chat()

    def clear_error(self) -> None:
        self.service.clear_error()
