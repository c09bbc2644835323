from __future__ import annotations

import asyncio
import math
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from sqlalchemy import func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import RecordNotFoundError
from .events import LifecycleEvent, LifecycleEventBus
from .transaction import TransactionContext

ModelT = TypeVar("ModelT")


@dataclass
class Page(Generic[ModelT]):
    items: list[ModelT]
    total: int
    page: int
    per_page: int

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))


class ModelRepository:
    """Runs model writes and reads while firing lifecycle events around them.

    Without a transaction every call uses its own session and commits before
    the ``after_*`` events fire. With one, statements are flushed inside the
    transaction's session and become durable only when it commits.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        events: LifecycleEventBus | None = None,
    ):
        self._session_factory = session_factory
        self.events = events or LifecycleEventBus()

    async def transaction(self) -> TransactionContext:
        return await TransactionContext.begin(self._session_factory)

    @asynccontextmanager
    async def _session_for(self, transaction: TransactionContext | None) -> AsyncIterator[AsyncSession]:
        if transaction is not None:
            yield transaction.session
            return
        async with self._session_factory() as session:
            yield session

    async def save(self, instance: ModelT, *, transaction: TransactionContext | None = None) -> ModelT:
        if inspect(instance).has_identity:
            before, after = LifecycleEvent.BEFORE_UPDATE, LifecycleEvent.AFTER_UPDATE
        else:
            before, after = LifecycleEvent.BEFORE_CREATE, LifecycleEvent.AFTER_CREATE

        try:
            await self.events.emit(before, instance, transaction)
            async with self._session_for(transaction) as session:
                session.add(instance)
                if transaction is None:
                    await session.commit()
                else:
                    await session.flush()
        except Exception:
            await self.events.emit(LifecycleEvent.PERSIST_FAILED, instance, transaction)
            raise
        await self.events.emit(after, instance, transaction)
        return instance

    async def create(
        self,
        model: type[ModelT],
        *,
        transaction: TransactionContext | None = None,
        **values: Any,
    ) -> ModelT:
        return await self.save(model(**values), transaction=transaction)

    async def delete(self, instance: Any, *, transaction: TransactionContext | None = None) -> None:
        await self.events.emit(LifecycleEvent.BEFORE_DELETE, instance, transaction)
        async with self._session_for(transaction) as session:
            session.add(instance)
            await session.delete(instance)
            if transaction is None:
                await session.commit()
            else:
                await session.flush()
        await self.events.emit(LifecycleEvent.AFTER_DELETE, instance, transaction)

    async def find(
        self,
        model: type[ModelT],
        pk: Any,
        *,
        transaction: TransactionContext | None = None,
    ) -> ModelT | None:
        async with self._session_for(transaction) as session:
            row = await session.get(model, pk)
        if row is not None:
            await self._fetched([row], transaction)
        return row

    async def find_or_fail(
        self,
        model: type[ModelT],
        pk: Any,
        *,
        transaction: TransactionContext | None = None,
    ) -> ModelT:
        row = await self.find(model, pk, transaction=transaction)
        if row is None:
            raise RecordNotFoundError(f"{model.__name__} '{pk}' was not found.")
        return row

    async def first(
        self,
        model: type[ModelT],
        *,
        transaction: TransactionContext | None = None,
        **filters: Any,
    ) -> ModelT | None:
        stmt = select(model).filter_by(**filters).order_by(*_primary_key(model)).limit(1)
        async with self._session_for(transaction) as session:
            row = (await session.execute(stmt)).scalars().first()
        if row is not None:
            await self._fetched([row], transaction)
        return row

    async def all(
        self,
        model: type[ModelT],
        *,
        transaction: TransactionContext | None = None,
    ) -> list[ModelT]:
        stmt = select(model).order_by(*_primary_key(model))
        async with self._session_for(transaction) as session:
            rows = list((await session.execute(stmt)).scalars().all())
        await self._fetched(rows, transaction)
        return rows

    async def paginate(
        self,
        model: type[ModelT],
        *,
        page: int = 1,
        per_page: int = 20,
        transaction: TransactionContext | None = None,
    ) -> Page[ModelT]:
        safe_page = max(1, page)
        safe_per_page = max(1, min(per_page, 100))
        count_stmt = select(func.count()).select_from(model)
        stmt = (
            select(model)
            .order_by(*_primary_key(model))
            .limit(safe_per_page)
            .offset((safe_page - 1) * safe_per_page)
        )
        async with self._session_for(transaction) as session:
            total = int((await session.execute(count_stmt)).scalar_one())
            rows = list((await session.execute(stmt)).scalars().all())
        await self._fetched(rows, transaction)
        return Page(items=rows, total=total, page=safe_page, per_page=safe_per_page)

    async def _fetched(self, rows: Sequence[Any], transaction: TransactionContext | None) -> None:
        await asyncio.gather(
            *(self.events.emit(LifecycleEvent.AFTER_FETCH, row, transaction) for row in rows)
        )


def _primary_key(model: type) -> tuple:
    return tuple(inspect(model).primary_key)
