from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from packages.db.models import TicketCommentTable

from .database import ensure_datetime


@dataclass(slots=True)
class TicketComment:
    """Annotation left on a ticket; internal notes are hidden from submitters."""

    id: int
    ticket_id: str
    user_id: str | None
    content: str
    is_internal: bool
    created_at: datetime


class TicketCommentStore:
    """Insert and read `ticket_comments` rows, oldest first."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(
        self,
        session: AsyncSession,
        *,
        ticket_id: str,
        actor_id: str | None,
        content: str,
        is_internal: bool,
        created_at: datetime,
    ) -> TicketComment:
        row = TicketCommentTable(
            ticket_id=ticket_id,
            user_id=actor_id,
            content=content,
            is_internal=is_internal,
            created_at=created_at,
        )
        session.add(row)
        await session.flush()
        return self._table_to_comment(row)

    async def list_comments(self, ticket_id: str, *, include_internal: bool = False) -> list[TicketComment]:
        query = select(TicketCommentTable).where(TicketCommentTable.ticket_id == ticket_id)
        if not include_internal:
            query = query.where(TicketCommentTable.is_internal.is_(False))
        query = query.order_by(TicketCommentTable.id)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._table_to_comment(row) for row in result.scalars().all()]

    @staticmethod
    def _table_to_comment(row: TicketCommentTable) -> TicketComment:
        if row.id is None:
            raise RuntimeError("Comment has not been flushed")
        return TicketComment(
            id=row.id,
            ticket_id=row.ticket_id,
            user_id=row.user_id,
            content=row.content,
            is_internal=bool(row.is_internal),
            created_at=ensure_datetime(row.created_at),
        )
