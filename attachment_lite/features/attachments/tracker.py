from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from weakref import WeakKeyDictionary

from .schemas import Attachment, as_attachment_list


@dataclass
class ColumnState:
    old: list[Attachment] = field(default_factory=list)
    new: list[Attachment] = field(default_factory=list)


class AttachmentColumnTracker:
    """In-memory old/new bookkeeping per model instance and column.

    ``old`` is the durable value, captured once at the first observed mutation.
    ``new`` is the value assigned in memory. Single values are kept as
    one-element lists.
    """

    def __init__(self):
        self._states: WeakKeyDictionary[Any, dict[str, ColumnState]] = WeakKeyDictionary()

    def capture(self, instance: Any, column: str, current_value: Any) -> None:
        columns = self._states.setdefault(instance, {})
        if column in columns:
            return
        snapshot = as_attachment_list(current_value)
        columns[column] = ColumnState(old=snapshot, new=list(snapshot))

    def set_new(self, instance: Any, column: str, value: Any) -> None:
        # Without a prior capture the first observed value becomes the baseline.
        self.capture(instance, column, value)
        self._states[instance][column].new = as_attachment_list(value)

    def is_tracked(self, instance: Any, column: str) -> bool:
        return column in self._states.get(instance, {})

    def tracked_columns(self, instance: Any) -> list[str]:
        return list(self._states.get(instance, {}))

    def diff(self, instance: Any, column: str) -> tuple[list[Attachment], list[Attachment]] | None:
        state = self._states.get(instance, {}).get(column)
        if state is None:
            return None
        return list(state.old), list(state.new)

    def old(self, instance: Any, column: str) -> list[Attachment]:
        state = self._states.get(instance, {}).get(column)
        return list(state.old) if state is not None else []

    def commit(
        self,
        instance: Any,
        column: str,
        persisted: list[Attachment] | None = None,
    ) -> None:
        """Advance ``old`` to what was just made durable (``new`` by default)."""
        state = self._states.get(instance, {}).get(column)
        if state is None:
            return
        state.old = list(state.new if persisted is None else persisted)

    def forget(self, instance: Any) -> None:
        self._states.pop(instance, None)
