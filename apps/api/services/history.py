from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from packages.db.models import TicketHistoryTable

from .database import ensure_datetime


class HistoryAction(str, Enum):
    """Kinds of entries recorded in a ticket's audit trail."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(slots=True)
class TicketHistoryEntry:
    """Immutable record describing one accepted change to a ticket."""

    id: int
    ticket_id: str
    user_id: str | None
    action: HistoryAction
    notes: str
    created_at: datetime


class AuditTrailRecorder:
    """Append-only writer and newest-first reader for `ticket_history`.

    `append` is a pure insert and must run inside the transaction of the change
    it documents; it never reads, updates or deletes existing entries.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(
        self,
        session: AsyncSession,
        *,
        ticket_id: str,
        actor_id: str | None,
        action: HistoryAction,
        notes: str,
    ) -> TicketHistoryEntry:
        row = TicketHistoryTable(
            ticket_id=ticket_id,
            user_id=actor_id,
            action=action.value,
            notes=notes,
            created_at=datetime.now(timezone.utc),
        )
        session.add(row)
        await session.flush()
        return self._table_to_entry(row)

    async def iter_history(self, ticket_id: str, *, batch_size: int = 50) -> AsyncIterator[TicketHistoryEntry]:
        """Yield entries newest first, fetching them in keyset-paginated batches."""

        if batch_size < 1:
            raise ValueError("batch_size must be positive")

        last_id: int | None = None
        while True:
            query = select(TicketHistoryTable).where(TicketHistoryTable.ticket_id == ticket_id)
            if last_id is not None:
                query = query.where(TicketHistoryTable.id < last_id)
            query = query.order_by(TicketHistoryTable.id.desc()).limit(batch_size)

            async with self._session_factory() as session:
                result = await session.execute(query)
                rows = result.scalars().all()

            for row in rows:
                yield self._table_to_entry(row)
            if len(rows) < batch_size:
                return
            last_id = rows[-1].id

    async def get_history(self, ticket_id: str) -> list[TicketHistoryEntry]:
        return [entry async for entry in self.iter_history(ticket_id)]

    @staticmethod
    def _table_to_entry(row: TicketHistoryTable) -> TicketHistoryEntry:
        if row.id is None:
            raise RuntimeError("History entry has not been flushed")
        return TicketHistoryEntry(
            id=row.id,
            ticket_id=row.ticket_id,
            user_id=row.user_id,
            action=HistoryAction(row.action),
            notes=row.notes,
            created_at=ensure_datetime(row.created_at),
        )
