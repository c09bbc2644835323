from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import JSON, inspect
from sqlalchemy.types import TypeDecorator

from .schemas import Attachment


@dataclass(frozen=True)
class AttachmentColumn:
    multiple: bool = False
    pre_compute_url: bool = False
    folder: str | None = None

    def path_for(self, attachment: Attachment) -> str:
        folder = (self.folder or "").strip("/")
        if not folder:
            return attachment.name
        return f"{folder}/{attachment.name}"


class AttachmentType(TypeDecorator):
    """JSON column holding one attachment or a list of them.

    An empty value is stored as SQL NULL. It loads back as ``None`` for
    single columns and as ``[]`` for multiple ones.
    """

    impl = JSON
    cache_ok = True

    def __init__(
        self,
        *,
        multiple: bool = False,
        pre_compute_url: bool = False,
        folder: str | None = None,
    ):
        super().__init__(none_as_null=True)
        self.multiple = multiple
        self.pre_compute_url = pre_compute_url
        self.folder = folder

    @property
    def column(self) -> AttachmentColumn:
        return AttachmentColumn(
            multiple=self.multiple,
            pre_compute_url=self.pre_compute_url,
            folder=self.folder,
        )

    def process_bind_param(self, value: Any, dialect) -> Any:
        if value is None:
            return None
        if isinstance(value, Attachment):
            return [value.to_object()] if self.multiple else value.to_object()
        if isinstance(value, (list, tuple)):
            items = [item.to_object() if isinstance(item, Attachment) else item for item in value]
            items = [item for item in items if item is not None]
            if not items:
                return None
            return items if self.multiple else items[0]
        if isinstance(value, dict):
            return [value] if self.multiple else value
        raise TypeError(f"Cannot store {type(value).__name__} in an attachment column.")

    def process_result_value(self, value: Any, dialect) -> Any:
        if value is None:
            return [] if self.multiple else None
        if isinstance(value, dict):
            value = [value]
        items = [Attachment.from_db(item) for item in value if item is not None]
        if self.multiple:
            return items
        return items[0] if items else None


def discover_attachment_columns(model: type) -> dict[str, AttachmentColumn]:
    columns: dict[str, AttachmentColumn] = {}
    for attr in inspect(model).column_attrs:
        column_type = attr.columns[0].type
        if isinstance(column_type, AttachmentType):
            columns[attr.key] = column_type.column
    return columns
