"""Engine, session and transaction plumbing shared by the repositories."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from packages.db.models import TicketCounterTable

from .errors import ConflictError, PersistenceError

logger = logging.getLogger(__name__)

TICKET_COUNTER = "tickets"


def to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def build_engine(dsn: str, *, echo: bool = False) -> AsyncEngine:
    return create_async_engine(to_asyncpg_dsn(dsn), echo=echo, future=True, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def ensure_schema(engine: AsyncEngine) -> None:
    """Create missing tables and seed the ticket-number counter row."""

    async with engine.begin() as connection:
        await connection.run_sync(SQLModel.metadata.create_all)

    session_factory = build_session_factory(engine)
    async with session_factory() as session:
        async with session.begin():
            existing = await session.get(TicketCounterTable, TICKET_COUNTER)
            if existing is None:
                session.add(TicketCounterTable(name=TICKET_COUNTER, value=0))


@asynccontextmanager
async def transaction(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Run the enclosed block in one transaction, translating storage failures.

    Any exception raised inside the block rolls the whole unit back. Driver
    errors surface as `ConflictError` or `PersistenceError`; domain errors pass
    through untouched.
    """

    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except IntegrityError as exc:
        logger.warning("Transaction rejected by a constraint: %s", exc.orig)
        raise ConflictError("The change conflicts with an existing record") from exc
    except SQLAlchemyError as exc:
        logger.exception("Transaction failed and was rolled back")
        raise PersistenceError() from exc


def ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")


def optional_datetime(value: datetime | None) -> datetime | None:
    return None if value is None else ensure_datetime(value)
