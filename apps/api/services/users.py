from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol, Sequence

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from packages.db.models import UserTable

from .database import ensure_datetime, transaction
from .errors import ValidationError

_EMAIL_ADAPTER = TypeAdapter(EmailStr)


def normalize_email(value: str) -> str:
    """Validate an email address and return its canonical lower-cased form."""

    try:
        email = _EMAIL_ADAPTER.validate_python((value or "").strip())
    except PydanticValidationError as exc:
        raise ValidationError(f"'{value}' is not a valid email address") from exc
    return str(email).lower()


class UserRole(str, Enum):
    """Roles a directory user can hold."""

    ADMIN = "admin"
    STAFF = "staff"


@dataclass(slots=True)
class DirectoryUser:
    """Staff or admin account known to the helpdesk."""

    id: str
    name: str
    email: str
    role: UserRole
    is_active: bool
    created_at: datetime
    updated_at: datetime


class UserLookup(Protocol):
    async def exists(self, session: AsyncSession, user_id: str) -> bool:
        ...


class UserDirectory:
    """Persistence helper wrapping the `users` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def exists(self, session: AsyncSession, user_id: str) -> bool:
        row = await session.get(UserTable, user_id)
        return row is not None

    async def create_user(self, *, name: str, email: str, role: UserRole = UserRole.STAFF) -> DirectoryUser:
        name = (name or "").strip()
        if not name:
            raise ValidationError("User name must not be empty")
        now = datetime.now(timezone.utc)
        row = UserTable(
            name=name,
            email=normalize_email(email),
            role=UserRole(role).value,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        async with transaction(self._session_factory) as session:
            session.add(row)
        return self._table_to_user(row)

    async def get_user(self, user_id: str) -> DirectoryUser | None:
        async with self._session_factory() as session:
            row = await session.get(UserTable, user_id)
            return None if row is None else self._table_to_user(row)

    async def list_users(self) -> Sequence[DirectoryUser]:
        async with self._session_factory() as session:
            result = await session.execute(select(UserTable).order_by(UserTable.name.asc()))
            return [self._table_to_user(row) for row in result.scalars().all()]

    @staticmethod
    def _table_to_user(row: UserTable) -> DirectoryUser:
        return DirectoryUser(
            id=row.id,
            name=row.name,
            email=row.email,
            role=UserRole(row.role),
            is_active=row.is_active,
            created_at=ensure_datetime(row.created_at),
            updated_at=ensure_datetime(row.updated_at),
        )
