from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.utils.config import get_settings


def build_engine(database_url: str, echo: bool = False, **options: Any) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        options.setdefault("connect_args", {"check_same_thread": False})
    else:
        # Row locks during allocation make a dead pooled connection costly.
        options.setdefault("pool_pre_ping", True)
    return create_async_engine(database_url, echo=echo, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


settings = get_settings()

engine = build_engine(settings.database_url, echo=settings.database_echo)

async_session_factory = build_session_factory(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session_factory() as session:
        yield session
