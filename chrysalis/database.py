from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from chrysalis.settings.config import settings


def normalize_url(raw_url: str) -> str:
    if raw_url.startswith("postgresql+psycopg"):
        # if someone provided a sync URL by mistake, upgrade it to async
        return raw_url.replace("postgresql+psycopg", "postgresql+asyncpg", 1)
    return raw_url


DATABASE_URL = normalize_url(settings.DATABASE_URL)

engine = create_async_engine(DATABASE_URL, echo=settings.DATABASE_ECHO, future=True)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
Base = declarative_base()


async def init_db(bind=None):
    # Only run create_all in dev; pass an engine to target something other than the default
    if bind is None and not settings.RUN_DB_CREATE_ALL:
        return
    from chrysalis import models  # noqa: F401  (registers tables on Base.metadata)
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
