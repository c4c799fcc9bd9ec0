"""Builders and fakes shared by the test modules."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Iterable

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from agent_chat.models import (
    AnnotationsEvent,
    ChunkEvent,
    ConversationIdEvent,
    DoneEvent,
    McpApprovalRequest,
    McpApprovalRequestEvent,
    StreamEvent,
    UsageEvent,
)
from agent_chat.sse_bridge import encode_sse_body, stream_sse_events

API_URL = "http://test/api"
STREAM_URL = f"{API_URL}/chat/stream"


# ---------------------------------------------------------------------------
# Event builders
# ---------------------------------------------------------------------------


def make_usage_event(response_id: str | None = "resp-1") -> UsageEvent:
    return UsageEvent(
        prompt_tokens=12,
        completion_tokens=5,
        total_tokens=17,
        duration=850.0,
        response_id=response_id,
    )


def make_turn_events(
    *chunks: str,
    conversation_id: str | None = "conv-1",
    response_id: str | None = "resp-1",
) -> list[StreamEvent]:
    """A complete turn: conversation id, text chunks, usage, done."""
    events: list[StreamEvent] = []
    if conversation_id:
        events.append(ConversationIdEvent(conversation_id=conversation_id))
    events.extend(ChunkEvent(content=c) for c in chunks)
    events.append(make_usage_event(response_id=response_id))
    events.append(DoneEvent())
    return events


def make_approval_event(request_id: str = "mcpr_1") -> McpApprovalRequestEvent:
    return McpApprovalRequestEvent(
        approval_request=McpApprovalRequest(
            id=request_id,
            tool_name="search_docs",
            server_label="docs",
            arguments='{"query": "pricing"}',
        ),
    )


def make_annotations_event() -> AnnotationsEvent:
    return AnnotationsEvent.model_validate({
        "annotations": [{
            "type": "uri_citation",
            "label": "Pricing page",
            "url": "https://example.com/pricing",
            "startIndex": 0,
            "endIndex": 5,
        }],
    })


def sse_response(events: Iterable[StreamEvent], status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=encode_sse_body(events),
        headers={"content-type": "text/event-stream"},
    )


async def aiter_parts(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


def intent_types(actions) -> list[str]:
    return [a.type for a in actions]


# ---------------------------------------------------------------------------
# Scripted HTTP backend (httpx MockTransport)
# ---------------------------------------------------------------------------


class ControlledStream(httpx.AsyncByteStream):
    """Response body the test feeds by hand; ``None`` ends it."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self.closed = False

    def push(self, *events: StreamEvent) -> None:
        self._queue.put_nowait(encode_sse_body(events))

    def push_raw(self, data: bytes | None) -> None:
        self._queue.put_nowait(data)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item

    async def aclose(self) -> None:
        self.closed = True


class ScriptedBackend:
    """MockTransport handler answering requests from a queue, in order.

    Each queued item is an ``httpx.Response`` or an exception to raise.
    """

    def __init__(self) -> None:
        self.script: list[httpx.Response | Exception] = []
        self.requests: list[httpx.Request] = []

    def reply(self, item: httpx.Response | Exception) -> None:
        self.script.append(item)

    def reply_events(self, events: Iterable[StreamEvent]) -> None:
        self.reply(sse_response(events))

    def reply_stream(self) -> ControlledStream:
        stream = ControlledStream()
        self.reply(httpx.Response(200, stream=stream, headers={"content-type": "text/event-stream"}))
        return stream

    @property
    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.script:
            raise AssertionError(f"Unexpected request to {request.url}")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


# ---------------------------------------------------------------------------
# In-process agent backend (FastAPI + sse-starlette)
# ---------------------------------------------------------------------------


def create_agent_app() -> FastAPI:
    """Minimal backend speaking the chat stream protocol.

    A message mentioning "docs" triggers a tool approval request; the
    approval turn then answers according to the decision.
    """
    app = FastAPI()

    @app.post("/api/chat/stream")
    async def chat_stream(request: Request):
        if request.headers.get("authorization") != "Bearer test-token":
            return JSONResponse({"title": "Unauthorized", "detail": "Token expired"}, status_code=401)
        body = await request.json()

        async def events() -> AsyncIterator[StreamEvent]:
            yield ConversationIdEvent(conversation_id=body.get("conversationId") or "conv-asgi")
            approval = body.get("mcpApproval")
            if approval is not None:
                verdict = "approved" if approval["approved"] else "rejected"
                yield ChunkEvent(content=f"Tool call {verdict}.")
                yield make_usage_event(response_id="resp-after-approval")
            elif "docs" in body["message"]:
                yield make_approval_event()
                yield make_usage_event(response_id="resp-approval")
            else:
                yield ChunkEvent(content="Echo: ")
                yield ChunkEvent(content=body["message"])
                yield make_annotations_event()
                yield make_usage_event(response_id="resp-echo")
            yield DoneEvent()

        return EventSourceResponse(stream_sse_events(events()))

    return app


async def wait_until(predicate, attempts: int = 500) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("Condition not reached")
