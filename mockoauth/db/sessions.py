from collections.abc import AsyncGenerator
from os import getenv
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

DATABASE_URL = getenv("DATABASE_URL", "sqlite+aiosqlite:///./mockoauth.db")
SQL_ECHO = getenv("SQL_ECHO", "false").lower() == "true"

engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO)

# Store helpers read attributes after commit, so loaded rows must stay populated
session_maker = async_sessionmaker(engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)

Base: Any = declarative_base()


async def get_async_session() -> AsyncGenerator[AsyncSession, Any]:
    async with session_maker() as session:
        yield session


async def create_tables() -> None:
    """
    Create any missing tables for the ORM models.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
