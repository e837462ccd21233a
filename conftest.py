"""
Shared fixtures: every test gets its own SQLite file through aiosqlite.
"""
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from members import Roster, migrate_members_to_v2
from scheduling import Scheduler
from store import Base, Record, RecordStore, now_iso


@pytest_asyncio.fixture
async def sessions(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'formpick.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def store(sessions):
    return RecordStore(sessions)


@pytest_asyncio.fixture
async def plant_raw(sessions):
    """Put text under a key as-is, the way a damaged store would hold it."""
    async def _plant(key: str, text: str) -> None:
        async with sessions() as s:
            await s.merge(Record(key=key, value=text, updated_at=now_iso()))
            await s.commit()
    return _plant


@pytest_asyncio.fixture
async def roster(store):
    await migrate_members_to_v2(store)
    return Roster(store)


@pytest_asyncio.fixture
async def scheduler(store, roster):
    return Scheduler(store, roster)
