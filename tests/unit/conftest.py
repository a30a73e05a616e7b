import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from services.management_service.db.session import init_db
from services.management_service.db.storage import Storage


@pytest_asyncio.fixture
async def storage(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)

    sm = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
    try:
        yield Storage(sm)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def website(storage):
    return await storage.create_website("https://example.com/", name="Example")
