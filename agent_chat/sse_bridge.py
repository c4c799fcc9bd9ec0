"""SSE bridge — the producing side of the chat stream wire protocol.

Translates stream event records into ``ServerSentEvent`` objects whose
``data:`` field is the event's JSON (``{"type": "chunk", "content": ...}``).
Anything that speaks this protocol to ``ChatService`` can be built on it;
the test suite's in-process backend is.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterable, Iterable

from sse_starlette.sse import ServerSentEvent

from agent_chat.models import StreamEvent


def to_server_sent_event(event: StreamEvent) -> ServerSentEvent:
    """Wrap a single event record as one SSE record."""
    return ServerSentEvent(data=event.model_dump_json(by_alias=True, exclude_none=True))


def encode_sse_body(events: Iterable[StreamEvent]) -> bytes:
    """Encode a complete response body for the given events."""
    return b"".join(to_server_sent_event(event).encode() for event in events)


async def stream_sse_events(
    event_source: AsyncIterable[StreamEvent],
) -> AsyncGenerator[ServerSentEvent, None]:
    """Convert stream event records to SSE events.

    Args:
        event_source: Async iterable of wire event records, in send order.

    Yields:
        ServerSentEvent objects ready for EventSourceResponse.
    """
    async for event in event_source:
        yield to_server_sent_event(event)
