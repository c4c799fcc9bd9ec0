"""Turns one SSE response body into domain updates.

``StreamOrchestrator.updates()`` is an async generator that reads byte
increments, decodes them with ``SseDecoder`` and yields exactly one
``StreamUpdate`` per meaningful event. Fatal problems are raised as
``ChatError(STREAM)``; a cancellation requested through the
``CancellationToken`` ends the generator quietly.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, AsyncIterable, AsyncIterator, Awaitable
from dataclasses import dataclass
from typing import TypeVar, Union

from agent_chat.errors import ChatError, ErrorKind
from agent_chat.models import (
    Annotation,
    AnnotationsEvent,
    ChunkEvent,
    ConversationIdEvent,
    DoneEvent,
    ErrorEvent,
    McpApprovalRequest,
    McpApprovalRequestEvent,
    UsageEvent,
)
from agent_chat.sse import SseDecoder, parse_sse_record
from agent_chat.state import UsageInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

_END_OF_BODY = object()


class StreamAbortedError(Exception):
    """The abort signal fired while a network operation was in flight."""


class CancellationToken:
    """Cancellation state for one turn.

    ``cancelled`` (the caller asked to stop) and ``aborted`` (the abort
    signal fired) are tracked separately: an abort with ``cancelled`` set is
    a benign cancellation, an abort without it is a transport failure.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._abort = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def cancel(self) -> None:
        """Set the cancellation flag and fire the abort signal."""
        self._cancelled = True
        self.abort()

    def abort(self) -> None:
        """Fire the abort signal without marking the turn as cancelled."""
        self._abort.set()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the abort signal fires first.

        Raises StreamAbortedError if aborted before the awaitable finishes.
        A result that is already available when the abort fires still wins.
        """
        task = asyncio.ensure_future(awaitable)
        if self.aborted:
            task.cancel()
            await asyncio.wait({task})
            raise StreamAbortedError("Request aborted")
        waiter = asyncio.ensure_future(self._abort.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.wait({task})
        if task in done:
            return task.result()
        raise StreamAbortedError("Request aborted")


async def _read_next(reader: AsyncIterator[bytes]) -> object:
    try:
        return await reader.__anext__()
    except StopAsyncIteration:
        return _END_OF_BODY


# ---------------------------------------------------------------------------
# Domain updates
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ConversationDiscovered:
    conversation_id: str


@dataclass(frozen=True, slots=True)
class TextDelta:
    content: str


@dataclass(frozen=True, slots=True)
class AnnotationsReceived:
    annotations: tuple[Annotation, ...]


@dataclass(frozen=True, slots=True)
class ApprovalRequested:
    approval_request: McpApprovalRequest
    previous_response_id: str | None = None


@dataclass(frozen=True, slots=True)
class TurnCompleted:
    usage: UsageInfo
    response_id: str | None = None


StreamUpdate = Union[
    ConversationDiscovered,
    TextDelta,
    AnnotationsReceived,
    ApprovalRequested,
    TurnCompleted,
]


class StreamOrchestrator:
    """Consumes one response body for the assistant message ``message_id``.

    Args:
        message_id: Assistant message the stream feeds (used in error text).
        token: Cancellation token checked before every read.
        conversation_id: Conversation already known to the caller. When set,
            ``conversationId`` events are ignored.
    """

    def __init__(
        self,
        message_id: str,
        token: CancellationToken,
        conversation_id: str | None = None,
    ) -> None:
        self.message_id = message_id
        self.token = token
        self.conversation_id = conversation_id
        self.response_id: str | None = None
        self._last_chunk: str | None = None
        self._decoder = SseDecoder()

    async def updates(self, body: AsyncIterable[bytes]) -> AsyncGenerator[StreamUpdate, None]:
        """Yield domain updates until ``done``, end of body, or cancellation."""
        reader = body.__aiter__()
        try:
            while True:
                if self.token.cancelled:
                    logger.debug("Stream for message %s cancelled", self.message_id)
                    return
                data = await self.token.guard(_read_next(reader))
                if data is _END_OF_BODY:
                    break

                for record in self._decoder.feed(data):
                    event = parse_sse_record(record)
                    if event is None:
                        continue
                    if isinstance(event, DoneEvent):
                        return
                    update = self._interpret(event)
                    if update is not None:
                        yield update

            if self._decoder.pending.strip():
                logger.debug("Discarding unterminated SSE record at end of stream")
        except StreamAbortedError as exc:
            if self.token.cancelled:
                logger.debug("Stream for message %s aborted by cancellation", self.message_id)
                return
            raise ChatError(
                ErrorKind.STREAM,
                f"Stream aborted for message {self.message_id}",
            ) from exc
        except ChatError:
            raise
        except Exception as exc:
            raise ChatError(
                ErrorKind.STREAM,
                f"Stream processing failed: {exc} (Message: {self.message_id})",
            ) from exc
        finally:
            await self._release(reader)

    def _interpret(self, event: object) -> StreamUpdate | None:
        if isinstance(event, ConversationIdEvent):
            if self.conversation_id:
                return None
            self.conversation_id = event.conversation_id
            return ConversationDiscovered(event.conversation_id)

        if isinstance(event, ChunkEvent):
            if event.content == self._last_chunk:
                logger.debug("Suppressing duplicate chunk for message %s", self.message_id)
                return None
            self._last_chunk = event.content
            return TextDelta(event.content)

        if isinstance(event, AnnotationsEvent):
            if not event.annotations:
                return None
            return AnnotationsReceived(tuple(event.annotations))

        if isinstance(event, McpApprovalRequestEvent):
            return ApprovalRequested(event.approval_request, self.response_id)

        if isinstance(event, UsageEvent):
            if event.response_id:
                self.response_id = event.response_id
            usage = UsageInfo(
                prompt_tokens=event.prompt_tokens,
                completion_tokens=event.completion_tokens,
                total_tokens=event.total_tokens,
                duration=event.duration,
            )
            return TurnCompleted(usage, event.response_id)

        if isinstance(event, ErrorEvent):
            raise ChatError(
                ErrorKind.STREAM,
                f"Stream error for message {self.message_id}: {event.message}",
            )

        return None

    async def _release(self, reader: object) -> None:
        aclose = getattr(reader, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception:
            logger.debug("Releasing stream reader failed", exc_info=True)
