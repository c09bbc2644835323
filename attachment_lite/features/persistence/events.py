from __future__ import annotations

from collections import defaultdict
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from .transaction import TransactionContext


class LifecycleEvent(str, Enum):
    BEFORE_CREATE = "before_create"
    AFTER_CREATE = "after_create"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"
    BEFORE_DELETE = "before_delete"
    AFTER_DELETE = "after_delete"
    PERSIST_FAILED = "persist_failed"
    AFTER_FETCH = "after_fetch"


LifecycleHandler = Callable[[Any, "TransactionContext | None"], Awaitable[None]]


class LifecycleEventBus:
    """Typed model lifecycle callbacks, owned by the persistence layer.

    Handlers are registered per model class and also fire for instances of
    subclasses. They run one after another in subscription order; an exception
    stops the chain and reaches the caller of ``emit``.
    """

    def __init__(self):
        self._handlers: dict[tuple[type, LifecycleEvent], list[LifecycleHandler]] = defaultdict(list)

    def subscribe(self, model: type, event: LifecycleEvent, handler: LifecycleHandler) -> None:
        self._handlers[(model, event)].append(handler)

    def unsubscribe(self, model: type, event: LifecycleEvent, handler: LifecycleHandler) -> None:
        handlers = self._handlers.get((model, event))
        if handlers and handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, model: type, event: LifecycleEvent) -> list[LifecycleHandler]:
        handlers: list[LifecycleHandler] = []
        for cls in model.__mro__:
            handlers.extend(self._handlers.get((cls, event), ()))
        return handlers

    async def emit(
        self,
        event: LifecycleEvent,
        instance: Any,
        transaction: TransactionContext | None = None,
    ) -> None:
        for handler in self.handlers_for(type(instance), event):
            await handler(instance, transaction)
