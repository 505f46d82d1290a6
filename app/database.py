from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession


@lru_cache
def get_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    # Created on first use so importing the app never needs a database driver
    return create_async_engine(
        database_url,
        echo=echo,
        future=True,
        pool_pre_ping=True,
    )


@lru_cache
def get_sessionmaker(database_url: str, echo: bool = False) -> async_sessionmaker:
    return async_sessionmaker(
        get_engine(database_url, echo),
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async def create_db_and_tables(database_url: str, echo: bool = False):
    async with get_engine(database_url, echo).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def dispose_engine(database_url: str, echo: bool = False):
    await get_engine(database_url, echo).dispose()
