"""Async SQLAlchemy engine, session factory and schema bootstrap.

The facility registry is the only relational state; upload sessions live on
the blob store (see services/upload_sessions.py).
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from facility_uploads.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_models() -> None:
    """Create the facilities table (and its indexes) if missing."""
    from facility_uploads.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
