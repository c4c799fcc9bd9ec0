"""Error taxonomy for the chat client.

Every failure that reaches the UI is a ``ChatError``: a kind, a human
message, whether the user can keep typing, and an optional retry action.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import httpx

logger = logging.getLogger(__name__)

RetryAction = Callable[[], Awaitable[Any]]


class ErrorKind(str, Enum):
    AUTH = "AUTH"
    STREAM = "STREAM"
    NETWORK = "NETWORK"
    VALIDATION = "VALIDATION"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER = "SERVER"
    UNKNOWN = "UNKNOWN"


_DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.AUTH: "Your session has expired. Please sign in again.",
    ErrorKind.STREAM: "The response stream was interrupted.",
    ErrorKind.NETWORK: "Unable to reach the chat service. Check your connection.",
    ErrorKind.VALIDATION: "The request was rejected. Check your message and attachments.",
    ErrorKind.RATE_LIMIT: "Too many requests. Please wait a moment and try again.",
    ErrorKind.SERVER: "The chat service encountered an error. Please try again.",
    ErrorKind.UNKNOWN: "Something went wrong. Please try again.",
}

_RETRYABLE = frozenset({ErrorKind.NETWORK, ErrorKind.RATE_LIMIT, ErrorKind.SERVER})


class ChatError(Exception):
    """Structured error surfaced in ``chat.error``.

    Args:
        kind: Error category.
        message: Human-readable message. Falls back to a per-kind default.
        recoverable: Whether chat input stays enabled. Defaults to True for
            everything but AUTH, which needs the user to re-authenticate.
        retry: Zero-argument callable re-running the failed operation.
        status_code: HTTP status of the initiating request, if any.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        *,
        recoverable: bool | None = None,
        retry: RetryAction | None = None,
        status_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.message = message or _DEFAULT_MESSAGES[kind]
        self.recoverable = kind is not ErrorKind.AUTH if recoverable is None else recoverable
        self.retry = retry
        self.status_code = status_code
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"ChatError(kind={self.kind.value}, message={self.message!r}, recoverable={self.recoverable})"


def error_kind_from_status(status_code: int) -> ErrorKind:
    """Map a non-2xx HTTP status to an error kind."""
    if status_code in (401, 403):
        return ErrorKind.AUTH
    if status_code == 429:
        return ErrorKind.RATE_LIMIT
    if status_code >= 500:
        return ErrorKind.SERVER
    if 400 <= status_code < 500:
        return ErrorKind.VALIDATION
    return ErrorKind.UNKNOWN


def error_kind_from_exception(exc: BaseException) -> ErrorKind:
    """Best-effort classification of an arbitrary exception."""
    if isinstance(exc, ChatError):
        return exc.kind
    if isinstance(exc, httpx.HTTPStatusError):
        return error_kind_from_status(exc.response.status_code)
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.ProtocolError)):
        return ErrorKind.NETWORK
    text = str(exc).lower()
    if "401" in text or "unauthorized" in text or "access token" in text:
        return ErrorKind.AUTH
    if "timeout" in text or "network" in text or "connection" in text:
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def parse_error_from_response(response: httpx.Response) -> str:
    """Extract a readable message from an error response.

    Tries an RFC 7807 problem body (``detail``/``title``), then ``message``
    or ``error`` keys, then the raw text, then the reason phrase. The body
    must already have been read.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for key in ("detail", "title", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]

    text = response.text.strip()
    if text:
        return text[:200]
    return response.reason_phrase or f"HTTP {response.status_code}"


def create_chat_error(
    exc: BaseException,
    kind: ErrorKind | None = None,
    retry: RetryAction | None = None,
) -> ChatError:
    """Wrap ``exc`` as a ChatError (existing ChatErrors pass through).

    A retry action is attached when the error does not already carry one.
    """
    if isinstance(exc, ChatError):
        if exc.retry is None:
            exc.retry = retry
        return exc
    resolved = kind or error_kind_from_exception(exc)
    message = str(exc) or None
    return ChatError(resolved, message, retry=retry)


def is_token_expired(exc: BaseException) -> bool:
    """True when the failure means the bearer token is missing or rejected."""
    return isinstance(exc, ChatError) and exc.kind is ErrorKind.AUTH


def is_retryable(exc: BaseException) -> bool:
    """True for failures of the initiating request worth another attempt."""
    return isinstance(exc, ChatError) and exc.kind in _RETRYABLE
