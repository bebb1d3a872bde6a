import asyncio
import time

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from chrysalis.database import init_db
from chrysalis.services.notifier import ChangeNotifier
from chrysalis.services.ordering import ChapterOrderer
from chrysalis.services.versions import VersionStore
from chrysalis.store import DocumentStore


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'chrysalis.db'}", poolclass=NullPool)
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def store(engine):
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    return DocumentStore(maker)


@pytest.fixture
def versions(store):
    return VersionStore(store)


@pytest.fixture
def orderer(store):
    return ChapterOrderer(store)


@pytest.fixture
async def notifier(store):
    n = ChangeNotifier(store)
    yield n
    await n.aclose()


@pytest.fixture
def eventually():
    async def _wait(predicate, timeout: float = 3.0):
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait
