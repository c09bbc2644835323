from .errors import PersistenceDomainError, RecordNotFoundError, TransactionStateError
from .events import LifecycleEvent, LifecycleEventBus, LifecycleHandler
from .repo import ModelRepository, Page
from .transaction import TransactionContext, TransactionHook

__all__ = [
    "LifecycleEvent",
    "LifecycleEventBus",
    "LifecycleHandler",
    "ModelRepository",
    "Page",
    "PersistenceDomainError",
    "RecordNotFoundError",
    "TransactionContext",
    "TransactionHook",
    "TransactionStateError",
]
