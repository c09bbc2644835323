from __future__ import annotations

import re

from fastapi import UploadFile

from attachment_lite.core.config import get_settings

from .errors import AttachmentValidationError
from .schemas import Attachment

_READ_CHUNK_SIZE = 1024 * 1024


def _normalize_filename(filename: str) -> str:
    cleaned = re.sub(r"[^\w.\- ]+", "_", filename).strip()
    return cleaned or "upload"


async def _read_file_limited(upload: UploadFile, *, max_size: int) -> bytes:
    total = 0
    chunks: list[bytes] = []
    while True:
        chunk = await upload.read(_READ_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > max_size:
            raise AttachmentValidationError(
                f"File '{upload.filename or 'upload'}' exceeds max size of {max_size} bytes."
            )
        chunks.append(chunk)
    return b"".join(chunks)


async def attachment_from_upload(upload: UploadFile, *, max_size: int | None = None) -> Attachment:
    """Build an unpersisted attachment from a multipart upload."""
    if not upload.filename:
        raise AttachmentValidationError("Uploaded file is missing a filename.")

    limit = max_size if max_size is not None else get_settings().attachment_max_size_bytes
    data = await _read_file_limited(upload, max_size=limit)
    if not data:
        raise AttachmentValidationError(f"File '{upload.filename}' is empty.")

    return Attachment.from_bytes(
        data,
        filename=_normalize_filename(upload.filename),
        content_type=upload.content_type,
    )
