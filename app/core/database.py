"""Async SQLAlchemy engine and session factory.

One engine (and its connection pool) per process: created on import,
shared by every request, disposed from the app lifespan on shutdown.
"""

import logging
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding one session per request."""
    async with async_session() as session:
        yield session


async def dispose_engine() -> None:
    await engine.dispose()
    logger.info("Database engine disposed")
