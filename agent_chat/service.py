"""Chat service: the public API the UI calls.

``ChatService`` starts turns against ``POST {api_url}/chat/stream``, drives a
``StreamOrchestrator`` over the response body, and reports everything that
happens as reducer intents through the ``dispatch`` callable it was given.

Only the initiating request is retried (bounded, exponential backoff);
failures in the middle of a stream surface as a ``CHAT_ERROR`` carrying a
retry action instead.

Usage:
    store = ChatStore()
    service = ChatService(settings.api_url, get_access_token, store.dispatch)
    await service.send_message("Hi", store.state.chat.current_conversation_id)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any

import httpx

from agent_chat.actions import (
    Action,
    AddAssistantMessage,
    AuthTokenExpired,
    CancelStream,
    ChatFailed,
    ClearChat,
    ClearError,
    McpApprovalRequested,
    McpApprovalResponded,
    SendMessage,
    StartStream,
    StreamAnnotations,
    StreamChunk,
    StreamComplete,
)
from agent_chat.attachments import (
    DataUriFile,
    FileSource,
    convert_files_to_data_uris,
    create_attachment_metadata,
)
from agent_chat.config import settings
from agent_chat.errors import (
    ChatError,
    ErrorKind,
    RetryAction,
    create_chat_error,
    error_kind_from_status,
    is_token_expired,
    parse_error_from_response,
)
from agent_chat.models import ChatRequest, FileDataUri, McpApprovalDecision
from agent_chat.retry import retry_with_backoff
from agent_chat.state import Attachment, Message
from agent_chat.stream import (
    AnnotationsReceived,
    ApprovalRequested,
    CancellationToken,
    ConversationDiscovered,
    StreamAbortedError,
    StreamOrchestrator,
    StreamUpdate,
    TextDelta,
    TurnCompleted,
)

logger = logging.getLogger(__name__)

Dispatch = Callable[[Action], None]
AccessTokenProvider = Callable[[], Awaitable[str | None]]
FileConverter = Callable[[Sequence[FileSource]], Awaitable[list[DataUriFile]]]
RetryPolicy = Callable[..., Awaitable[Any]]


class ChatService:
    """Issues chat turns and translates their streams into intents.

    Args:
        api_url: Base URL of the chat API (``.../api``).
        get_access_token: Coroutine returning a bearer token, or None when
            the user has no valid session.
        dispatch: Receives every intent, in order.
        http_client: Client to use; one is created (and owned) if omitted.
        convert_files: Attachment converter.
        retry: Retry policy for the initiating request.
        max_attempts: Attempts for the initiating request.
        base_delay_ms: First backoff delay; doubles per attempt.
    """

    def __init__(
        self,
        api_url: str,
        get_access_token: AccessTokenProvider,
        dispatch: Dispatch,
        *,
        http_client: httpx.AsyncClient | None = None,
        convert_files: FileConverter = convert_files_to_data_uris,
        retry: RetryPolicy = retry_with_backoff,
        max_attempts: int | None = None,
        base_delay_ms: int | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._get_access_token = get_access_token
        self._dispatch = dispatch
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.connect_timeout_s, read=None),
        )
        self._convert_files = convert_files
        self._retry = retry
        self.max_attempts = max_attempts or settings.request_max_attempts
        self.base_delay_ms = settings.retry_base_delay_ms if base_delay_ms is None else base_delay_ms
        self._active: CancellationToken | None = None
        self._last_message_id = 0

    async def __aenter__(self) -> ChatService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel any active stream and close the HTTP client if we own it."""
        self.cancel_stream()
        if self._owns_client:
            await self._client.aclose()

    @property
    def is_streaming(self) -> bool:
        return self._active is not None

    # ------------------------------------------------------------------ #
    # Public operations
    # ------------------------------------------------------------------ #

    async def send_message(
        self,
        text: str,
        conversation_id: str | None,
        files: Sequence[FileSource] | None = None,
        previous_response_id: str | None = None,
    ) -> None:
        """Send a user message and stream the assistant's answer.

        Any active stream is cancelled first. Raises the ``ChatError`` that
        was dispatched as ``CHAT_ERROR``; returns normally when the turn
        completes or is cancelled.
        """
        token = self._begin_turn()

        async def retry() -> None:
            await self.send_message(text, conversation_id, files, previous_response_id)

        try:
            access_token = await self._ensure_access_token()
            image_uris, file_uris, attachments = await self._prepare_attachments(files)
            if token.cancelled:
                return

            user_message = Message(
                id=self._next_message_id(),
                role="user",
                content=text,
                attachments=attachments,
                time=datetime.now(timezone.utc),
            )
            self._dispatch(SendMessage(message=user_message))

            message_id = self._next_message_id()
            self._dispatch(AddAssistantMessage(message_id=message_id))
            self._dispatch(StartStream(message_id=message_id, conversation_id=conversation_id))

            body = ChatRequest(
                message=text,
                conversation_id=conversation_id,
                image_data_uris=image_uris or None,
                file_data_uris=file_uris or None,
                previous_response_id=previous_response_id or None,
            )
            await self._run_turn(body, access_token, message_id, conversation_id, token)
        except Exception as exc:
            error = self._report_failure(exc, token, retry)
            if error is None:
                return
            if error is exc:
                raise
            raise error from exc
        finally:
            self._end_turn(token)

    async def send_mcp_approval(
        self,
        approval_request_id: str,
        approved: bool,
        previous_response_id: str | None,
        conversation_id: str | None,
    ) -> None:
        """Answer an MCP tool approval request and stream the continuation."""
        token = self._begin_turn()

        async def retry() -> None:
            await self.send_mcp_approval(approval_request_id, approved, previous_response_id, conversation_id)

        try:
            access_token = await self._ensure_access_token()
            if token.cancelled:
                return

            self._dispatch(McpApprovalResponded(
                approval_request_id=approval_request_id,
                approved=approved,
            ))
            message_id = self._next_message_id()
            self._dispatch(AddAssistantMessage(message_id=message_id))
            self._dispatch(StartStream(message_id=message_id, conversation_id=conversation_id))

            body = ChatRequest(
                message="Approved" if approved else "Rejected",
                conversation_id=conversation_id,
                previous_response_id=previous_response_id or None,
                mcp_approval=McpApprovalDecision(
                    approval_request_id=approval_request_id,
                    approved=approved,
                ),
            )
            await self._run_turn(body, access_token, message_id, conversation_id, token)
        except Exception as exc:
            error = self._report_failure(exc, token, retry)
            if error is None:
                return
            if error is exc:
                raise
            raise error from exc
        finally:
            self._end_turn(token)

    def cancel_stream(self) -> None:
        """Cancel the active stream, if any."""
        token = self._active
        if token is None:
            return
        self._active = None
        token.cancel()
        logger.info("Active chat stream cancelled")
        self._dispatch(CancelStream())

    def clear_chat(self) -> None:
        self._dispatch(ClearChat())

    def clear_error(self) -> None:
        self._dispatch(ClearError())

    # ------------------------------------------------------------------ #
    # Turn plumbing
    # ------------------------------------------------------------------ #

    def _begin_turn(self) -> CancellationToken:
        # The old stream's cancel intent must precede anything the new turn emits
        self.cancel_stream()
        token = CancellationToken()
        self._active = token
        return token

    def _end_turn(self, token: CancellationToken) -> None:
        if self._active is token:
            self._active = None

    def _next_message_id(self) -> str:
        # Millisecond clock, bumped so ids stay unique and sortable by arrival
        now = int(time.time() * 1000)
        self._last_message_id = max(now, self._last_message_id + 1)
        return str(self._last_message_id)

    async def _ensure_access_token(self) -> str:
        try:
            access_token = await self._get_access_token()
        except Exception as exc:
            raise ChatError(ErrorKind.AUTH, f"Failed to acquire access token: {exc}") from exc
        if not access_token:
            raise ChatError(ErrorKind.AUTH, "Failed to acquire access token")
        return access_token

    async def _prepare_attachments(
        self,
        files: Sequence[FileSource] | None,
    ) -> tuple[list[str], list[FileDataUri], tuple[Attachment, ...] | None]:
        """Convert attachments, split into image URIs and document payloads."""
        if not files:
            return [], [], None
        try:
            results = await self._convert_files(files)
        except ChatError:
            raise
        except Exception as exc:
            raise ChatError(ErrorKind.VALIDATION, f"Could not attach files: {exc}") from exc

        image_uris = [r.data_uri for r in results if r.is_image]
        file_uris = [
            FileDataUri(data_uri=r.data_uri, file_name=r.name, mime_type=r.mime_type)
            for r in results
            if not r.is_image
        ]
        return image_uris, file_uris, create_attachment_metadata(results)

    async def _run_turn(
        self,
        body: ChatRequest,
        access_token: str,
        message_id: str,
        conversation_id: str | None,
        token: CancellationToken,
    ) -> None:
        url = f"{self.api_url}{settings.chat_stream_path}"
        logger.info("Starting chat turn for message %s (conversation %s)", message_id, conversation_id)
        response = await self._retry(
            lambda: self._initiate_stream(url, access_token, body, token),
            self.max_attempts,
            self.base_delay_ms,
        )
        try:
            await self._process_stream(response, message_id, conversation_id, token)
        finally:
            await response.aclose()
        logger.info("Chat turn for message %s finished", message_id)

    async def _initiate_stream(
        self,
        url: str,
        access_token: str,
        body: ChatRequest,
        token: CancellationToken,
    ) -> httpx.Response:
        """POST the turn and return the open streaming response.

        Non-2xx responses are read, closed and raised as a ChatError whose
        kind comes from the status code.
        """
        request = self._client.build_request(
            "POST",
            url,
            json=body.to_payload(),
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "text/event-stream",
            },
        )
        try:
            response = await token.guard(self._client.send(request, stream=True))
        except httpx.HTTPError as exc:
            raise ChatError(ErrorKind.NETWORK, f"Request to {url} failed: {exc}") from exc

        if response.is_success:
            return response

        try:
            await response.aread()
            message = parse_error_from_response(response)
        finally:
            await response.aclose()
        raise ChatError(
            error_kind_from_status(response.status_code),
            message,
            status_code=response.status_code,
        )

    async def _process_stream(
        self,
        response: httpx.Response,
        message_id: str,
        conversation_id: str | None,
        token: CancellationToken,
    ) -> None:
        orchestrator = StreamOrchestrator(message_id, token, conversation_id)
        async with aclosing(orchestrator.updates(response.aiter_bytes())) as updates:
            async for update in updates:
                # A superseded turn may still hold decoded frames from its last read
                if token.cancelled:
                    break
                self._dispatch(self._to_intent(update, message_id))

    @staticmethod
    def _to_intent(update: StreamUpdate, message_id: str) -> Action:
        if isinstance(update, ConversationDiscovered):
            return StartStream(message_id=message_id, conversation_id=update.conversation_id)
        if isinstance(update, TextDelta):
            return StreamChunk(message_id=message_id, content=update.content)
        if isinstance(update, AnnotationsReceived):
            return StreamAnnotations(message_id=message_id, annotations=update.annotations)
        if isinstance(update, ApprovalRequested):
            return McpApprovalRequested(
                message_id=message_id,
                approval_request=update.approval_request,
                previous_response_id=update.previous_response_id,
            )
        if isinstance(update, TurnCompleted):
            return StreamComplete(message_id=message_id, usage=update.usage, response_id=update.response_id)
        raise TypeError(f"Unknown stream update: {update!r}")

    def _report_failure(
        self,
        exc: Exception,
        token: CancellationToken,
        retry: RetryAction,
    ) -> ChatError | None:
        """Dispatch the intents for a failed turn; None means benign cancellation."""
        if token.cancelled:
            logger.debug("Chat turn ended after cancellation: %s", exc)
            return None

        error = create_chat_error(exc, ErrorKind.STREAM if isinstance(exc, StreamAbortedError) else None, retry)
        if is_token_expired(error):
            self._dispatch(AuthTokenExpired())
        logger.error("Chat turn failed (%s): %s", error.kind.value, error.message)
        self._dispatch(ChatFailed(error=error))
        return error
