"""Async SQLAlchemy engine and session factory.

Usage in routes:
    from attachments.database import get_db

    @router.get("/files")
    async def list_files(db: AsyncSession = Depends(get_db)):
        result = await db.execute(select(FileRecord))
        return result.scalars().all()
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from attachments.config import settings

# SQLite (tests, local dev) gets a fresh connection per session
if settings.DATABASE_URL.startswith("sqlite"):
    _engine_kwargs = {"poolclass": NullPool}
else:
    _engine_kwargs = {"pool_size": 10, "max_overflow": 20, "pool_pre_ping": True}

engine = create_async_engine(settings.DATABASE_URL, echo=False, **_engine_kwargs)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
