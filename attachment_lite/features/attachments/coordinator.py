from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from functools import partial
from typing import Any, Callable
from weakref import WeakKeyDictionary

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import flag_modified

from attachment_lite.features.persistence.events import LifecycleEvent, LifecycleEventBus
from attachment_lite.features.persistence.transaction import TransactionContext

from .columns import AttachmentColumn, discover_attachment_columns
from .errors import AttachmentWriteError
from .schemas import Attachment, as_attachment_list
from .storage import FileStore
from .tracker import AttachmentColumnTracker

logger = logging.getLogger(__name__)

_WrittenFiles = list[tuple[AttachmentColumn, Attachment]]


def _loaded_value(value: Any) -> Any:
    # SQLAlchemy passes NO_VALUE/NEVER_SET symbols for attributes never loaded.
    if value is None or isinstance(value, (Attachment, list)):
        return value
    return None


class AttachmentCoordinator:
    """Keeps attachment files in step with the rows that reference them.

    New files are written before the database statement that references them.
    Superseded or deleted files are removed only once the statement is durable:
    immediately without a transaction, or from the transaction's commit hook.
    A rollback deletes the files written for the statement it discarded.
    Delete failures are logged and never reach the caller.
    """

    def __init__(
        self,
        store: FileStore,
        events: LifecycleEventBus,
        *,
        tracker: AttachmentColumnTracker | None = None,
    ):
        self.store = store
        self.events = events
        self.tracker = tracker or AttachmentColumnTracker()
        self._columns: dict[type, dict[str, AttachmentColumn]] = {}
        self._written: WeakKeyDictionary[Any, _WrittenFiles] = WeakKeyDictionary()
        self._orm_listeners: list[tuple[Any, str, Callable[..., None]]] = []
        self._subscriptions: list[tuple[type, LifecycleEvent, Any]] = []

    def register(self, model: type, columns: Mapping[str, AttachmentColumn] | None = None) -> None:
        resolved = dict(columns) if columns is not None else discover_attachment_columns(model)
        if not resolved:
            raise ValueError(f"{model.__name__} has no attachment columns.")
        self._columns[model] = resolved

        for name in resolved:
            attribute = getattr(model, name)
            listener = self._attribute_listener(name)
            event.listen(attribute, "set", listener, active_history=True)
            self._orm_listeners.append((attribute, "set", listener))
        on_load = self._load_listener(model)
        event.listen(model, "load", on_load)
        self._orm_listeners.append((model, "load", on_load))

        handlers = {
            LifecycleEvent.BEFORE_CREATE: self._before_save,
            LifecycleEvent.BEFORE_UPDATE: self._before_save,
            LifecycleEvent.AFTER_CREATE: self._after_save,
            LifecycleEvent.AFTER_UPDATE: self._after_save,
            LifecycleEvent.PERSIST_FAILED: self._persist_failed,
            LifecycleEvent.AFTER_DELETE: self._after_delete,
            LifecycleEvent.AFTER_FETCH: self._after_fetch,
        }
        for lifecycle_event, handler in handlers.items():
            self.events.subscribe(model, lifecycle_event, handler)
            self._subscriptions.append((model, lifecycle_event, handler))

    def close(self) -> None:
        for target, identifier, listener in self._orm_listeners:
            event.remove(target, identifier, listener)
        for model, lifecycle_event, handler in self._subscriptions:
            self.events.unsubscribe(model, lifecycle_event, handler)
        self._orm_listeners.clear()
        self._subscriptions.clear()
        self._columns.clear()

    def columns_for(self, instance: Any) -> dict[str, AttachmentColumn]:
        for cls in type(instance).__mro__:
            columns = self._columns.get(cls)
            if columns is not None:
                return columns
        return {}

    async def get_url(self, attachment: Attachment, column: AttachmentColumn | None = None) -> str:
        return await self.store.url((column or AttachmentColumn()).path_for(attachment))

    async def compute_urls(self, instances: Iterable[Any]) -> None:
        await asyncio.gather(*(self._after_fetch(instance, None) for instance in instances))

    def _attribute_listener(self, name: str) -> Callable[..., None]:
        def _on_set(target: Any, value: Any, oldvalue: Any, initiator: Any) -> None:
            self.tracker.capture(target, name, _loaded_value(oldvalue))
            self.tracker.set_new(target, name, value)

        return _on_set

    def _load_listener(self, model: type) -> Callable[..., None]:
        names = list(self._columns[model])

        def _on_load(target: Any, context: Any) -> None:
            loaded = inspect(target).dict
            for name in names:
                if name in loaded:
                    self.tracker.capture(target, name, loaded[name])

        return _on_load

    def _sync_in_place_edits(self, instance: Any) -> None:
        """Pick up list edits made without reassigning the attribute."""
        state = inspect(instance)
        columns = self.columns_for(instance)
        for name in self.tracker.tracked_columns(instance):
            # Unloaded attributes cannot have been edited.
            if name not in columns or name not in state.dict:
                continue
            live = state.dict[name]
            old, new = self.tracker.diff(instance, name)
            live_names = [item.name for item in as_attachment_list(live)]
            if live_names == [item.name for item in new]:
                continue
            self.tracker.set_new(instance, name, live)
            if state.has_identity and live_names != [item.name for item in old]:
                flag_modified(instance, name)

    async def _before_save(self, instance: Any, transaction: TransactionContext | None) -> None:
        self._sync_in_place_edits(instance)
        batches: list[tuple[AttachmentColumn, list[Attachment]]] = []
        for name, column in self.columns_for(instance).items():
            state = self.tracker.diff(instance, name)
            if state is None:
                continue
            pending = [item for item in state[1] if item.has_pending_source]
            if pending:
                batches.append((column, pending))
        if not batches:
            return

        written: _WrittenFiles = []
        results = await asyncio.gather(
            *(self._write_batch(column, items, written) for column, items in batches),
            return_exceptions=True,
        )
        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            await self._discard(written)
            raise AttachmentWriteError(
                f"Could not write attachment files for {type(instance).__name__}."
            ) from failures[0]
        self._written[instance] = written

    async def _write_batch(
        self,
        column: AttachmentColumn,
        items: list[Attachment],
        written: _WrittenFiles,
    ) -> None:
        for item in items:
            await self.store.write(item.source or b"", column.path_for(item))
            item.mark_written()
            written.append((column, item))

    async def _after_save(self, instance: Any, transaction: TransactionContext | None) -> None:
        written = self._written.pop(instance, [])
        columns = self.columns_for(instance)
        persisted = {
            name: self.tracker.diff(instance, name)[1]
            for name in self.tracker.tracked_columns(instance)
            if name in columns
        }
        if transaction is None or not transaction.is_active:
            await self._finalize_save(instance, persisted, written)
            return
        transaction.on_commit(partial(self._finalize_save, instance, persisted, written))
        transaction.on_rollback(partial(self._discard, written))

    async def _finalize_save(
        self,
        instance: Any,
        persisted: dict[str, list[Attachment]],
        written: _WrittenFiles,
    ) -> None:
        columns = self.columns_for(instance)
        try:
            for name, values in persisted.items():
                keep = {item.name for item in values}
                stale = [item for item in self.tracker.old(instance, name) if item.name not in keep]
                await self._delete_files((columns[name], item) for item in stale)
                self.tracker.commit(instance, name, values)
            for _, item in written:
                item.release_source()
        except Exception:
            logger.warning(
                "Attachment cleanup after save failed for %s.",
                type(instance).__name__,
                exc_info=True,
            )

    async def _persist_failed(self, instance: Any, transaction: TransactionContext | None) -> None:
        await self._discard(self._written.pop(instance, []))

    async def _discard(self, written: _WrittenFiles) -> None:
        """Delete files whose database write did not become durable."""
        try:
            await self._delete_files(written)
            for _, item in written:
                item.mark_pending()
        except Exception:
            logger.warning("Discarding written attachment files failed.", exc_info=True)

    async def _after_delete(self, instance: Any, transaction: TransactionContext | None) -> None:
        columns = self.columns_for(instance)
        untracked = {
            name: as_attachment_list(getattr(instance, name))
            for name in columns
            if not self.tracker.is_tracked(instance, name)
        }
        if transaction is None or not transaction.is_active:
            await self._purge(instance, untracked)
            return
        # Nothing to undo on rollback: the row and its files stay.
        transaction.on_commit(partial(self._purge, instance, untracked))

    async def _purge(self, instance: Any, untracked: dict[str, list[Attachment]]) -> None:
        try:
            files: _WrittenFiles = []
            for name, column in self.columns_for(instance).items():
                stored = untracked[name] if name in untracked else self.tracker.old(instance, name)
                files.extend((column, item) for item in stored)
            await self._delete_files(files)
            self.tracker.forget(instance)
        except Exception:
            logger.warning(
                "Attachment cleanup after delete failed for %s.",
                type(instance).__name__,
                exc_info=True,
            )

    async def _after_fetch(self, instance: Any, transaction: TransactionContext | None) -> None:
        lookups = []
        for name, column in self.columns_for(instance).items():
            if not column.pre_compute_url:
                continue
            for item in as_attachment_list(getattr(instance, name)):
                lookups.append(self._attach_url(column, item))
        if lookups:
            await asyncio.gather(*lookups)

    async def _attach_url(self, column: AttachmentColumn, item: Attachment) -> None:
        item.url = await self.store.url(column.path_for(item))

    async def _delete_files(self, files: Iterable[tuple[AttachmentColumn, Attachment]]) -> None:
        paths = [column.path_for(item) for column, item in files]
        if paths:
            await asyncio.gather(*(self._safe_delete(path) for path in paths))

    async def _safe_delete(self, path: str) -> None:
        try:
            await self.store.delete(path)
            logger.debug("Deleted attachment file %s", path)
        except Exception:
            logger.warning("Failed to delete attachment file %s", path, exc_info=True)
