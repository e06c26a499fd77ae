"""Database engine and request-scoped dependencies."""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .alerts import AlertConfig
from .config import DATABASE_URL, load_alert_config
from .store import LedgerStore

engine = create_async_engine(DATABASE_URL, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


async def get_store(session: AsyncSession = Depends(get_session)) -> LedgerStore:
    return LedgerStore(session)


async def get_alert_config(store: LedgerStore = Depends(get_store)) -> AlertConfig:
    """Loaded once per request and passed explicitly to the alert functions."""

    return await load_alert_config(store)
