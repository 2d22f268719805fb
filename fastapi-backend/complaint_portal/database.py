from typing import AsyncGenerator
from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from .config import get_settings
# Register table metadata before create_all runs.
from . import models  # noqa: F401

DATABASE_URL = get_settings().database_url

# Ensure we use the async driver for postgres
if DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
elif DATABASE_URL.startswith("postgresql+psycopg2://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql+psycopg2://", "postgresql+asyncpg://")
elif DATABASE_URL.startswith("sqlite://") and "aiosqlite" not in DATABASE_URL:
    DATABASE_URL = DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://", 1)

engine_kwargs = {"echo": False, "future": True}
if DATABASE_URL.startswith("sqlite"):
    engine_kwargs["connect_args"] = {"check_same_thread": False}

    if ":memory:" in DATABASE_URL or DATABASE_URL == "sqlite+aiosqlite://":
        # In-memory DBs need StaticPool so every session shares one connection.
        engine_kwargs["poolclass"] = StaticPool
    else:
        # NullPool avoids handing a connection created on one event loop to another.
        engine_kwargs["poolclass"] = NullPool
else:
    # Bound store access at the adapter boundary rather than in decision logic.
    engine_kwargs["pool_timeout"] = 30

engine = create_async_engine(DATABASE_URL, **engine_kwargs)

async_session_factory = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        yield session


async def init_db() -> None:
    # Schema migrations are owned by the deployment pipeline for Postgres;
    # local/dev SQLite databases are created straight from model metadata.
    if "postgres" in engine.dialect.name:
        return
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
