from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial
from pathlib import Path

import pytest
from sqlalchemy import ForeignKey, Integer, String, event, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Mapped, mapped_column

from attachment_lite.db import Base, build_session_factory
from attachment_lite.features.attachments import (
    Attachment,
    AttachmentColumn,
    AttachmentCoordinator,
    AttachmentType,
    LocalFileStore,
)
from attachment_lite.features.persistence import LifecycleEventBus, ModelRepository


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    avatar: Mapped[Attachment | None] = mapped_column(AttachmentType(), nullable=True)
    photos: Mapped[list[Attachment]] = mapped_column(AttachmentType(multiple=True), nullable=True)


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)


class RecordingStore(LocalFileStore):
    """Local store that records calls and can be told to fail."""

    def __init__(self, root: Path):
        super().__init__(root, base_url="/uploads")
        self.writes: list[str] = []
        self.deletes: list[str] = []
        self.fail_writes_for: set[str] = set()
        self.fail_deletes = False

    async def write(self, data: bytes, path: str) -> None:
        if any(marker in path for marker in self.fail_writes_for):
            raise OSError(f"disk full while writing {path}")
        await super().write(data, path)
        self.writes.append(path)

    async def delete(self, path: str) -> None:
        self.deletes.append(path)
        if self.fail_deletes:
            raise PermissionError(f"cannot delete {path}")
        await super().delete(path)


@dataclass
class Harness:
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    repo: ModelRepository
    store: RecordingStore
    coordinator: AttachmentCoordinator

    async def count_users(self) -> int:
        async with self.session_factory() as session:
            return int((await session.execute(select(func.count()).select_from(User))).scalar_one())

    async def reload(self, user_id: int) -> User | None:
        async with self.session_factory() as session:
            return await session.get(User, user_id)


def _enable_sqlite_transactions(engine: AsyncEngine) -> None:
    # pysqlite defers BEGIN, which breaks SAVEPOINT and foreign key checks.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


@asynccontextmanager
async def _open_harness(
    tmp_path: Path,
    *,
    columns: Mapping[str, AttachmentColumn] | None = None,
) -> AsyncIterator[Harness]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'attachments.db'}")
    _enable_sqlite_transactions(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = build_session_factory(engine)
    events = LifecycleEventBus()
    store = RecordingStore(tmp_path / "files")
    coordinator = AttachmentCoordinator(store, events)
    coordinator.register(User, columns)
    try:
        yield Harness(
            engine=engine,
            session_factory=session_factory,
            repo=ModelRepository(session_factory, events),
            store=store,
            coordinator=coordinator,
        )
    finally:
        coordinator.close()
        await engine.dispose()


@pytest.fixture
def open_harness(tmp_path: Path):
    return partial(_open_harness, tmp_path)


@pytest.fixture
def user_model() -> type[User]:
    return User


@pytest.fixture
def post_model() -> type[Post]:
    return Post
