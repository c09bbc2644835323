from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

_DEFAULT_MIME_TYPE = "application/octet-stream"


def _file_extension(filename: str) -> str:
    return Path(filename).suffix.lower().lstrip(".")


def _generate_name(extension: str) -> str:
    token = uuid4().hex
    return f"{token}.{extension}" if extension else token


class Attachment(BaseModel):
    """Metadata of one stored file, plus the bytes while they are not written yet.

    Values built from client data start unpersisted and carry a byte source.
    Values rehydrated from a database column are always persisted and never
    carry one.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    original_name: str | None = Field(default=None, alias="originalName")
    size: int
    mime_type: str = Field(default=_DEFAULT_MIME_TYPE, alias="mimeType")
    extension: str = ""
    url: str | None = None
    is_persisted: bool = Field(default=False, exclude=True)

    _source: bytes | None = PrivateAttr(default=None)

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        *,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> Attachment:
        extension = _file_extension(filename) if filename else ""
        mime_type = (content_type or "").strip().lower()
        if not mime_type and filename:
            mime_type = (mimetypes.guess_type(filename)[0] or "").lower()
        mime_type = mime_type or _DEFAULT_MIME_TYPE
        if not extension:
            extension = (mimetypes.guess_extension(mime_type) or "").lstrip(".")

        attachment = cls(
            name=_generate_name(extension),
            original_name=filename,
            size=len(data),
            mime_type=mime_type,
            extension=extension,
        )
        attachment._source = data
        return attachment

    @classmethod
    def from_db(cls, payload: dict[str, Any]) -> Attachment:
        attachment = cls.model_validate(payload)
        attachment.url = None
        attachment.is_persisted = True
        return attachment

    @property
    def source(self) -> bytes | None:
        return self._source

    @property
    def has_pending_source(self) -> bool:
        return not self.is_persisted and self._source is not None

    def mark_written(self) -> None:
        self.is_persisted = True

    def mark_pending(self) -> None:
        # Only values that still hold their bytes can be written again.
        if self._source is not None:
            self.is_persisted = False

    def release_source(self) -> None:
        if self.is_persisted:
            self._source = None

    def to_object(self) -> dict[str, Any]:
        """Shape stored in the database column. Never includes the url."""
        return self.model_dump(by_alias=True, exclude={"url"}, exclude_none=True)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def as_attachment_list(value: Attachment | list[Attachment] | None) -> list[Attachment]:
    if value is None:
        return []
    if isinstance(value, Attachment):
        return [value]
    return [item for item in value if item is not None]


def serialize_attachment_value(
    value: Attachment | list[Attachment] | None,
) -> dict[str, Any] | list[dict[str, Any]] | None:
    if value is None:
        return None
    if isinstance(value, Attachment):
        return value.to_json()
    return [item.to_json() for item in value if item is not None]
