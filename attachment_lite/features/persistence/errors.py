from __future__ import annotations


class PersistenceDomainError(Exception):
    """Base exception for model persistence operations."""


class RecordNotFoundError(PersistenceDomainError):
    pass


class TransactionStateError(PersistenceDomainError):
    pass
