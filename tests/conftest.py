"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import httpx
import pytest
import sse_starlette.sse as sse_mod
from helpers import API_URL, ScriptedBackend, create_agent_app

from agent_chat.service import ChatService
from agent_chat.store import ChatStore


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette keeps a module-level exit event bound to the first loop."""
    app_status = getattr(sse_mod, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
async def http_client(backend) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Client whose requests are answered by the scripted backend."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as client:
        yield client


@pytest.fixture
def store() -> ChatStore:
    return ChatStore()


@pytest.fixture
def dispatched() -> list:
    """Every intent the service emitted, in order."""
    return []


@pytest.fixture
def access_token() -> AsyncMock:
    return AsyncMock(return_value="test-token")


@pytest.fixture
async def service(http_client, store, dispatched, access_token) -> AsyncGenerator[ChatService, None]:
    def dispatch(action):
        dispatched.append(action)
        store.dispatch(action)

    svc = ChatService(
        API_URL,
        access_token,
        dispatch,
        http_client=http_client,
        base_delay_ms=0,
    )
    yield svc
    await svc.aclose()


@pytest.fixture
async def asgi_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Client wired to an in-process agent backend."""
    transport = httpx.ASGITransport(app=create_agent_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
