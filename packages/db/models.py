"""SQLModel table definitions for the helpdesk data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class TicketTable(SQLModel, table=True):
    """Support tickets submitted by end users."""

    __tablename__ = "tickets"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_number: int = Field(sa_column=Column(Integer, nullable=False, unique=True, index=True))
    category: str = Field(sa_column=Column(String(100), nullable=False, index=True))
    description: str = Field(sa_column=Column(Text, nullable=False))
    submitter_email: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    status: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    urgency: str = Field(sa_column=Column(String(50), nullable=False))
    assignee_id: str | None = Field(
        default=None, sa_column=Column(String(36), nullable=True, index=True)
    )
    solution: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    due_date: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    resolved_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    resolved_by: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketCounterTable(SQLModel, table=True):
    """Monotonic counters; the `tickets` row backs ticket numbering."""

    __tablename__ = "ticket_counters"

    name: str = Field(primary_key=True)
    value: int = Field(default=0, sa_column=Column(Integer, nullable=False))


class TicketHistoryTable(SQLModel, table=True):
    """Append-only audit trail of accepted ticket changes.

    `ticket_id` carries no foreign key; rows outlive the ticket they describe.
    """

    __tablename__ = "ticket_history"

    id: int | None = Field(default=None, primary_key=True)
    ticket_id: str = Field(sa_column=Column(String(36), nullable=False, index=True))
    user_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    action: str = Field(sa_column=Column(String(50), nullable=False))
    notes: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class SolutionTable(SQLModel, table=True):
    """Reusable reference answers grouped by category."""

    __tablename__ = "solutions"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    category: str = Field(sa_column=Column(String(100), nullable=False, index=True))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class EmailSolutionHistoryTable(SQLModel, table=True):
    """Solutions surfaced to a submitter email for a given ticket."""

    __tablename__ = "email_solution_history"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    ticket_id: str = Field(sa_column=Column(String(36), nullable=False, index=True))
    solution_id: str = Field(
        sa_column=Column(String(36), ForeignKey("solutions.id", ondelete="CASCADE"), nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class UserTable(SQLModel, table=True):
    """Staff and admin accounts that tickets can be assigned to."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    email: str = Field(sa_column=Column(String(255), nullable=False, unique=True))
    role: str = Field(default="staff", sa_column=Column(String(20), nullable=False))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketCommentTable(SQLModel, table=True):
    """Public replies and staff-only internal notes attached to a ticket."""

    __tablename__ = "ticket_comments"

    id: int | None = Field(default=None, primary_key=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    user_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    content: str = Field(sa_column=Column(Text, nullable=False))
    is_internal: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
