"""SSE frame decoding.

Two stages:

1. ``split_sse_buffer`` / ``SseDecoder`` cut an incrementally growing text
   buffer into complete, blank-line-terminated records and keep the rest
   for the next increment.
2. ``parse_sse_record`` turns one record's ``data:`` payload into a typed
   stream event, dropping anything it does not recognise.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any

from pydantic import ValidationError

from agent_chat.errors import ChatError, ErrorKind
from agent_chat.models import StreamEvent, stream_event_adapter

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = "\n\n"


def split_sse_buffer(buffer: str) -> tuple[list[str], str]:
    """Split ``buffer`` into complete records plus the unconsumed remainder.

    CRLF line endings are normalised first, so a separator split across two
    increments is still recognised once the halves are joined.
    """
    buffer = buffer.replace("\r\n", "\n")
    *records, remainder = buffer.split(RECORD_SEPARATOR)
    return [record for record in records if record.strip()], remainder


class SseDecoder:
    """Stateful wrapper around ``split_sse_buffer`` fed with raw bytes.

    Multi-byte UTF-8 sequences split across increments are held back by
    an incremental decoder until complete.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, data: bytes | str) -> list[str]:
        """Add one increment and return every record it completes, in order."""
        if isinstance(data, bytes):
            data = self._utf8.decode(data)
        if not data:
            return []
        records, self._buffer = split_sse_buffer(self._buffer + data)
        return records

    @property
    def pending(self) -> str:
        """Text received but not yet part of a complete record."""
        return self._buffer


def record_data(record: str) -> str | None:
    """Join the ``data:`` lines of a record; None when it has none.

    Comment lines (``:``) and the ``event``/``id``/``retry`` fields are ignored.
    """
    lines: list[str] = []
    for line in record.split("\n"):
        if not line.startswith("data:"):
            continue
        value = line[len("data:"):]
        lines.append(value[1:] if value.startswith(" ") else value)
    if not lines:
        return None
    return "\n".join(lines)


def _event_payload(parsed: dict[str, Any]) -> dict[str, Any]:
    # Accept both {"type": ..., "data": {...}} and the flat {"type": ..., ...field}
    nested = parsed.get("data")
    if isinstance(nested, dict):
        return {**nested, "type": parsed.get("type")}
    return parsed


def _stream_error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or "Stream error occurred")
    return str(error) if error else "Stream error occurred"


def parse_sse_record(record: str) -> StreamEvent | None:
    """Decode one SSE record into a stream event.

    Returns None for records without data, invalid JSON, or an unknown or
    malformed ``type``. A payload carrying an ``error`` key is a stream-level
    fault and raises ``ChatError(STREAM)``.
    """
    data = record_data(record)
    if data is None:
        return None
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Dropping non-JSON SSE record: %.80s", data)
        return None
    if not isinstance(parsed, dict):
        return None

    payload = _event_payload(parsed)
    if payload.get("error"):
        message = _stream_error_message(payload["error"])
        logger.error("SSE error record received: %s", message)
        raise ChatError(ErrorKind.STREAM, message)

    try:
        return stream_event_adapter.validate_python(payload)
    except ValidationError:
        logger.debug("Dropping unrecognised SSE event type=%r", payload.get("type"))
        return None
