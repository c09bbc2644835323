from __future__ import annotations

import logging
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction, async_sessionmaker

from .errors import TransactionStateError

logger = logging.getLogger(__name__)

TransactionHook = Callable[[], Awaitable[None]]


class TransactionContext:
    """A database transaction with ordered after-commit/after-rollback hooks.

    Exactly one of the two hook lists is drained when the transaction resolves.
    A savepoint created with :meth:`nested` hands its hooks to its parent on
    commit, because the parent can still roll back. On rollback it runs its own
    rollback hooks right away.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        parent: TransactionContext | None = None,
        savepoint: AsyncSessionTransaction | None = None,
        owns_session: bool = False,
    ):
        self._session = session
        self._parent = parent
        self._savepoint = savepoint
        self._owns_session = owns_session
        self._active = True
        self._commit_hooks: list[TransactionHook] = []
        self._rollback_hooks: list[TransactionHook] = []

    @classmethod
    async def begin(cls, session_factory: async_sessionmaker[AsyncSession]) -> TransactionContext:
        session = session_factory()
        await session.begin()
        return cls(session, owns_session=True)

    @property
    def session(self) -> AsyncSession:
        return self._session

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_nested(self) -> bool:
        return self._parent is not None

    def on_commit(self, hook: TransactionHook) -> None:
        self._ensure_active()
        self._commit_hooks.append(hook)

    def on_rollback(self, hook: TransactionHook) -> None:
        self._ensure_active()
        self._rollback_hooks.append(hook)

    async def nested(self) -> TransactionContext:
        self._ensure_active()
        savepoint = await self._session.begin_nested()
        return TransactionContext(self._session, parent=self, savepoint=savepoint)

    async def commit(self) -> None:
        self._ensure_active()
        try:
            if self._savepoint is not None:
                await self._savepoint.commit()
            else:
                await self._session.commit()
        except Exception:
            logger.debug("Commit failed; resolving transaction as rolled back.")
            await self._resolve_rollback()
            raise

        self._active = False
        commit_hooks, rollback_hooks = self._drain()
        try:
            if self.is_nested:
                self._parent._commit_hooks.extend(commit_hooks)
                self._parent._rollback_hooks.extend(rollback_hooks)
            else:
                await _run_hooks(commit_hooks)
        finally:
            await self._close()

    async def rollback(self) -> None:
        self._ensure_active()
        await self._resolve_rollback()

    async def _resolve_rollback(self) -> None:
        self._active = False
        _, rollback_hooks = self._drain()
        try:
            if self._savepoint is not None:
                await self._savepoint.rollback()
            else:
                await self._session.rollback()
            await _run_hooks(rollback_hooks)
        finally:
            await self._close()

    def _drain(self) -> tuple[list[TransactionHook], list[TransactionHook]]:
        commit_hooks, rollback_hooks = self._commit_hooks, self._rollback_hooks
        self._commit_hooks, self._rollback_hooks = [], []
        return commit_hooks, rollback_hooks

    def _ensure_active(self) -> None:
        if not self._active:
            raise TransactionStateError("Transaction has already been committed or rolled back.")

    async def _close(self) -> None:
        if self._owns_session:
            await self._session.close()

    async def __aenter__(self) -> TransactionContext:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self._active:
            return
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()


async def _run_hooks(hooks: list[TransactionHook]) -> None:
    for hook in hooks:
        await hook()
