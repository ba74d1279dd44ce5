from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.settings import Settings


class Database:
    """Engine plus session factory, created at startup and disposed at shutdown."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.sessionmaker = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        connect_args = {}
        if settings.database_url.startswith("postgresql+asyncpg"):
            connect_args["command_timeout"] = settings.db_command_timeout_seconds
        engine = create_async_engine(
            settings.database_url,
            future=True,
            echo=False,
            pool_pre_ping=True,
            pool_timeout=settings.db_pool_timeout_seconds,
            connect_args=connect_args,
        )
        return cls(engine)

    async def dispose(self) -> None:
        await self.engine.dispose()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    database: Database = request.app.state.database
    async with database.sessionmaker() as session:
        yield session
