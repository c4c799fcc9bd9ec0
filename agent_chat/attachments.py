"""Inline local files as base64 data URIs."""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
import os
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from agent_chat.config import settings
from agent_chat.errors import ChatError, ErrorKind
from agent_chat.state import Attachment

logger = logging.getLogger(__name__)

FileSource = str | os.PathLike[str]


@dataclass(frozen=True, slots=True)
class DataUriFile:
    data_uri: str
    name: str
    mime_type: str
    size_bytes: int

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


def _read_as_data_uri(path: Path, max_bytes: int) -> DataUriFile:
    if not path.is_file():
        raise ChatError(ErrorKind.VALIDATION, f"Attachment not found: {path.name}")
    size = path.stat().st_size
    if size > max_bytes:
        raise ChatError(
            ErrorKind.VALIDATION,
            f"Attachment {path.name} is {size} bytes (limit {max_bytes})",
        )
    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return DataUriFile(
        data_uri=f"data:{mime_type};base64,{encoded}",
        name=path.name,
        mime_type=mime_type,
        size_bytes=size,
    )


async def convert_files_to_data_uris(
    files: Sequence[FileSource],
    max_bytes: int | None = None,
) -> list[DataUriFile]:
    """Read each file and return it as a data URI, in input order.

    Raises ChatError(VALIDATION) for missing or oversized files.
    """
    limit = settings.max_attachment_bytes if max_bytes is None else max_bytes
    results = []
    for source in files:
        results.append(await asyncio.to_thread(_read_as_data_uri, Path(source), limit))
    logger.debug("Converted %d attachment(s)", len(results))
    return results


def create_attachment_metadata(files: Sequence[DataUriFile]) -> tuple[Attachment, ...]:
    """Display metadata for a user message; only images keep their data URI."""
    return tuple(
        Attachment(
            file_name=f.name,
            mime_type=f.mime_type,
            size_bytes=f.size_bytes,
            data_uri=f.data_uri if f.is_image else None,
        )
        for f in files
    )
