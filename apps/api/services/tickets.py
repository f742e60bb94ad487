from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, fields
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping, Sequence

from opentelemetry import trace
from sqlalchemy import String, cast, delete, func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from packages.db.models import TicketCounterTable, TicketTable

from .assignment import AssignmentResolver
from .comments import TicketComment, TicketCommentStore
from .database import TICKET_COUNTER, ensure_datetime, optional_datetime, transaction
from .errors import AuthorizationError, NotFoundError, ValidationError
from .history import AuditTrailRecorder, HistoryAction
from .notifications import NotificationDispatcher, NotificationKind, TicketNotification
from .solutions import SolutionMatch, SolutionMatcher
from .users import UserDirectory, UserRole, normalize_email

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MAX_CATEGORY_LENGTH = 100
MAX_SEARCH_RESULTS = 50


class TicketStatus(str, Enum):
    """Canonical states of the ticket lifecycle."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class TicketUrgency(str, Enum):
    """Priority classification driving default triage."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(slots=True)
class Ticket:
    """Primary ticket record."""

    id: str
    ticket_number: int
    category: str
    description: str
    submitter_email: str
    status: TicketStatus
    urgency: TicketUrgency
    assignee_id: str | None
    solution: str | None
    due_date: datetime | None
    resolved_at: datetime | None
    resolved_by: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TicketSubmission:
    """A newly created ticket with the solutions recorded as shown to its submitter."""

    ticket: Ticket
    suggestions: list[SolutionMatch]


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated user performing a change."""

    user_id: str
    role: UserRole = UserRole.STAFF

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN


def derive_urgency(due_date: datetime, *, now: datetime) -> TicketUrgency:
    """Map the time left until `due_date` to an urgency level."""

    remaining = due_date - now
    if remaining <= timedelta(days=1):
        return TicketUrgency.CRITICAL
    if remaining <= timedelta(days=3):
        return TicketUrgency.HIGH
    if remaining <= timedelta(days=7):
        return TicketUrgency.NORMAL
    return TicketUrgency.LOW


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_enum(enum_type: type[Enum], value: Any, field_name: str) -> Any:
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"Invalid {field_name} '{value}', expected one of: {allowed}") from exc


def _parse_due_date(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"Invalid due date '{value}'") from exc
    if not isinstance(value, datetime):
        raise ValidationError("Due date must be a datetime")
    return _to_utc(value)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class _Unset(Enum):
    UNSET = "UNSET"

    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset.UNSET


@dataclass(frozen=True, slots=True)
class TicketPatch:
    """Sparse set of ticket changes.

    Fields left as `UNSET` are not part of the request. An explicit `None`
    clears a nullable field.
    """

    status: TicketStatus | _Unset = UNSET
    assignee_id: str | None | _Unset = UNSET
    urgency: TicketUrgency | _Unset = UNSET
    due_date: datetime | None | _Unset = UNSET
    solution: str | None | _Unset = UNSET

    def __post_init__(self) -> None:
        if self.status is not UNSET:
            object.__setattr__(self, "status", _parse_enum(TicketStatus, self.status, "status"))
        if self.urgency is not UNSET:
            object.__setattr__(self, "urgency", _parse_enum(TicketUrgency, self.urgency, "urgency"))
        if self.assignee_id is not UNSET and self.assignee_id is not None:
            assignee = str(self.assignee_id).strip()
            object.__setattr__(self, "assignee_id", assignee or None)
        if self.due_date is not UNSET:
            object.__setattr__(self, "due_date", _parse_due_date(self.due_date))
        if self.solution is not UNSET and self.solution is not None:
            solution = str(self.solution).strip()
            object.__setattr__(self, "solution", solution or None)

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(field.name for field in fields(cls))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TicketPatch":
        unknown = sorted(set(data) - set(cls.field_names()))
        if unknown:
            raise ValidationError(f"Unknown ticket fields: {', '.join(unknown)}")
        return cls(**dict(data))

    def present(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.field_names() if getattr(self, name) is not UNSET}


class TicketUpdateBuilder:
    """Collect staged column values and the matching history clauses."""

    _PATCHABLE_COLUMNS = frozenset(
        {"status", "assignee_id", "urgency", "due_date", "solution", "resolved_at", "resolved_by"}
    )

    def __init__(self, ticket_id: str) -> None:
        self._ticket_id = ticket_id
        self._values: dict[str, Any] = {}
        self._clauses: list[str] = []

    def stage(self, column: str, value: Any, clause: str | None = None) -> None:
        if column not in self._PATCHABLE_COLUMNS:
            raise KeyError(f"Column '{column}' cannot be patched")
        self._values[column] = value.value if isinstance(value, Enum) else value
        if clause:
            self._clauses.append(clause)

    @property
    def has_changes(self) -> bool:
        return bool(self._values)

    @property
    def staged(self) -> Mapping[str, Any]:
        return dict(self._values)

    @property
    def notes(self) -> str:
        return " ".join(self._clauses)

    def statement(self, *, updated_at: datetime):
        if not self._values:
            raise ValueError("No staged changes")
        return (
            update(TicketTable)
            .where(TicketTable.id == self._ticket_id)
            .values(**self._values, updated_at=updated_at)
            .execution_options(synchronize_session=False)
        )


class TicketAccessPolicy:
    """Staff may change unassigned tickets or their own; admins and the system actor may change any."""

    def ensure_can_update(self, actor: Actor | None, ticket: Ticket) -> None:
        if actor is None or actor.is_admin:
            return
        if ticket.assignee_id is None or ticket.assignee_id == actor.user_id:
            return
        raise AuthorizationError(f"Not authorized to update ticket #{ticket.ticket_number}")


class TicketStore:
    """Persistence helper wrapping `tickets` and the ticket-number counter."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def next_ticket_number(self, session: AsyncSession) -> int:
        """Increment the counter row; the row stays locked until the caller commits."""

        result = await session.execute(
            update(TicketCounterTable)
            .where(TicketCounterTable.name == TICKET_COUNTER)
            .values(value=TicketCounterTable.value + 1)
            .returning(TicketCounterTable.value)
            .execution_options(synchronize_session=False)
        )
        value = result.scalar_one_or_none()
        if value is None:
            session.add(TicketCounterTable(name=TICKET_COUNTER, value=1))
            await session.flush()
            return 1
        return int(value)

    async def insert(self, session: AsyncSession, ticket: Ticket) -> None:
        session.add(
            TicketTable(
                id=ticket.id,
                ticket_number=ticket.ticket_number,
                category=ticket.category,
                description=ticket.description,
                submitter_email=ticket.submitter_email,
                status=ticket.status.value,
                urgency=ticket.urgency.value,
                assignee_id=ticket.assignee_id,
                solution=ticket.solution,
                due_date=ticket.due_date,
                resolved_at=ticket.resolved_at,
                resolved_by=ticket.resolved_by,
                created_at=ticket.created_at,
                updated_at=ticket.updated_at,
            )
        )
        await session.flush()

    async def lock(self, session: AsyncSession, ticket_id: str) -> TicketTable | None:
        result = await session.execute(
            select(TicketTable).where(TicketTable.id == ticket_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def apply(
        self, session: AsyncSession, builder: TicketUpdateBuilder, *, updated_at: datetime
    ) -> None:
        await session.execute(builder.statement(updated_at=updated_at))

    async def touch(self, session: AsyncSession, ticket_id: str, *, updated_at: datetime) -> None:
        await session.execute(
            update(TicketTable)
            .where(TicketTable.id == ticket_id)
            .values(updated_at=updated_at)
            .execution_options(synchronize_session=False)
        )

    async def delete(self, session: AsyncSession, ticket_id: str) -> bool:
        result = await session.execute(
            delete(TicketTable)
            .where(TicketTable.id == ticket_id)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            return None if row is None else self.to_ticket(row)

    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        assignee_id: str | None = None,
        submitter_email: str | None = None,
        text: str | None = None,
        limit: int | None = None,
    ) -> Sequence[Ticket]:
        query = select(TicketTable)
        if status is not None:
            query = query.where(TicketTable.status == status.value)
        if assignee_id is not None:
            query = query.where(TicketTable.assignee_id == assignee_id)
        if submitter_email is not None:
            query = query.where(TicketTable.submitter_email == submitter_email.lower())
        if text:
            pattern = "%" + _escape_like(text) + "%"
            query = query.where(
                or_(
                    TicketTable.category.ilike(pattern, escape="\\"),
                    TicketTable.description.ilike(pattern, escape="\\"),
                    TicketTable.submitter_email.ilike(pattern, escape="\\"),
                    TicketTable.solution.ilike(pattern, escape="\\"),
                    cast(TicketTable.ticket_number, String).ilike(pattern, escape="\\"),
                )
            )
        query = query.order_by(TicketTable.ticket_number.desc())
        if limit is not None:
            query = query.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self.to_ticket(row) for row in result.scalars().all()]

    async def count_by_status(self) -> dict[TicketStatus, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketTable.status, func.count()).group_by(TicketTable.status)
            )
            counts = {status: 0 for status in TicketStatus}
            for status, count in result.all():
                counts[TicketStatus(status)] = int(count)
            return counts

    @staticmethod
    def to_ticket(row: TicketTable) -> Ticket:
        return Ticket(
            id=row.id,
            ticket_number=int(row.ticket_number),
            category=row.category,
            description=row.description,
            submitter_email=row.submitter_email,
            status=TicketStatus(row.status),
            urgency=TicketUrgency(row.urgency),
            assignee_id=row.assignee_id,
            solution=row.solution,
            due_date=optional_datetime(row.due_date),
            resolved_at=optional_datetime(row.resolved_at),
            resolved_by=row.resolved_by,
            created_at=ensure_datetime(row.created_at),
            updated_at=ensure_datetime(row.updated_at),
        )


@dataclass(slots=True)
class TicketStats:
    total: int
    open: int
    in_progress: int
    resolved: int


class TicketLifecycleManager:
    """Orchestrate ticket creation, updates and deletion.

    Each operation runs as a single transaction: the ticket row mutation, its
    history entry and (on creation) the solution exposure records commit or
    roll back together. Emails are queued only after the commit succeeds.

    Concurrent updates of one ticket are serialised by the row lock taken when
    the current state is read; the later writer compares against the state the
    earlier one committed (last write wins).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        store: TicketStore | None = None,
        recorder: AuditTrailRecorder | None = None,
        comments: TicketCommentStore | None = None,
        matcher: SolutionMatcher | None = None,
        assignments: AssignmentResolver | None = None,
        access_policy: TicketAccessPolicy | None = None,
        notifier: NotificationDispatcher | None = None,
        default_urgency: TicketUrgency | str = TicketUrgency.NORMAL,
    ) -> None:
        self._session_factory = session_factory
        self._store = store or TicketStore(session_factory)
        self._recorder = recorder or AuditTrailRecorder(session_factory)
        self._comments = comments or TicketCommentStore(session_factory)
        self._matcher = matcher or SolutionMatcher(session_factory)
        self._assignments = assignments or AssignmentResolver(UserDirectory(session_factory))
        self._access_policy = access_policy or TicketAccessPolicy()
        self._notifier = notifier
        self._default_urgency = _parse_enum(TicketUrgency, default_urgency, "urgency")

    async def create_ticket(
        self,
        *,
        category: str,
        description: str,
        submitter_email: str,
        urgency: TicketUrgency | str | None = None,
        due_date: datetime | str | None = None,
        actor: Actor | None = None,
    ) -> Ticket:
        submission = await self.submit_ticket(
            category=category,
            description=description,
            submitter_email=submitter_email,
            urgency=urgency,
            due_date=due_date,
            actor=actor,
        )
        return submission.ticket

    async def submit_ticket(
        self,
        *,
        category: str,
        description: str,
        submitter_email: str,
        urgency: TicketUrgency | str | None = None,
        due_date: datetime | str | None = None,
        actor: Actor | None = None,
    ) -> TicketSubmission:
        """Create a ticket and return it with the solutions shown to the submitter."""

        category = (category or "").strip()
        description = (description or "").strip()
        if not category:
            raise ValidationError("Category is required")
        if len(category) > MAX_CATEGORY_LENGTH:
            raise ValidationError(f"Category must be at most {MAX_CATEGORY_LENGTH} characters")
        if not description:
            raise ValidationError("Description is required")
        email = normalize_email(submitter_email)
        due = _parse_due_date(due_date)

        now = datetime.now(timezone.utc)
        if urgency is not None:
            resolved_urgency = _parse_enum(TicketUrgency, urgency, "urgency")
        elif due is not None:
            resolved_urgency = derive_urgency(due, now=now)
        else:
            resolved_urgency = self._default_urgency

        with tracer.start_as_current_span("tickets.create") as span:
            async with transaction(self._session_factory) as session:
                number = await self._store.next_ticket_number(session)
                ticket = Ticket(
                    id=str(uuid.uuid4()),
                    ticket_number=number,
                    category=category,
                    description=description,
                    submitter_email=email,
                    status=TicketStatus.OPEN,
                    urgency=resolved_urgency,
                    assignee_id=None,
                    solution=None,
                    due_date=due,
                    resolved_at=None,
                    resolved_by=None,
                    created_at=now,
                    updated_at=now,
                )
                await self._store.insert(session, ticket)
                await self._recorder.append(
                    session,
                    ticket_id=ticket.id,
                    actor_id=actor.user_id if actor else None,
                    action=HistoryAction.CREATED,
                    notes="Ticket submitted",
                )
                matches = await self._matcher.match_for_ticket(
                    session,
                    ticket_id=ticket.id,
                    category=category,
                    description=description,
                    submitter_email=email,
                )
            span.set_attribute("helpdesk.ticket_number", number)

        logger.info(
            "Created ticket #%d in %s (urgency=%s, suggestions=%d)",
            number,
            category,
            resolved_urgency.value,
            len(matches),
        )
        self._notify(
            TicketNotification(
                kind=NotificationKind.CONFIRMATION,
                recipient=email,
                ticket_number=number,
                category=category,
            )
        )
        return TicketSubmission(ticket=ticket, suggestions=list(matches))

    async def update_ticket(
        self,
        ticket_id: str,
        changes: TicketPatch | Mapping[str, Any],
        *,
        actor: Actor | None = None,
    ) -> Ticket:
        """Apply the fields present in `changes` and record one history entry.

        A resolve by the system actor (`actor=None`) leaves `resolved_by` as None.
        """

        patch = changes if isinstance(changes, TicketPatch) else TicketPatch.from_mapping(changes)
        actor_id = actor.user_id if actor else None

        with tracer.start_as_current_span("tickets.update") as span:
            span.set_attribute("helpdesk.ticket_id", ticket_id)
            async with transaction(self._session_factory) as session:
                row = await self._store.lock(session, ticket_id)
                if row is None:
                    raise NotFoundError(f"Ticket {ticket_id} not found")
                current = self._store.to_ticket(row)
                self._access_policy.ensure_can_update(actor, current)

                now = datetime.now(timezone.utc)
                builder = await self._stage_changes(session, current, patch, actor_id=actor_id, now=now)
                if not builder.has_changes:
                    logger.debug("No field changes for ticket #%d", current.ticket_number)
                    return current

                await self._store.apply(session, builder, updated_at=now)
                await session.refresh(row)
                updated = self._store.to_ticket(row)
                await self._recorder.append(
                    session,
                    ticket_id=ticket_id,
                    actor_id=actor_id,
                    action=HistoryAction.UPDATED,
                    notes=builder.notes,
                )
            span.set_attribute("helpdesk.changed_fields", ",".join(builder.staged))

        logger.info("Updated ticket #%d: %s", updated.ticket_number, builder.notes)
        self._notify_status_change(current, updated)
        return updated

    async def delete_ticket(self, ticket_id: str, *, actor: Actor | None = None) -> None:
        with tracer.start_as_current_span("tickets.delete"):
            async with transaction(self._session_factory) as session:
                deleted = await self._store.delete(session, ticket_id)
                if not deleted:
                    raise NotFoundError(f"Ticket {ticket_id} not found")
                await self._recorder.append(
                    session,
                    ticket_id=ticket_id,
                    actor_id=actor.user_id if actor else None,
                    action=HistoryAction.DELETED,
                    notes="Ticket deleted.",
                )
        logger.info("Deleted ticket %s", ticket_id)

    async def add_comment(
        self,
        ticket_id: str,
        content: str,
        *,
        actor: Actor | None = None,
        internal: bool = False,
    ) -> TicketComment:
        """Attach a comment, bump `updated_at` and record the annotation in history.

        Internal notes require a staff actor.
        """

        content = (content or "").strip()
        if not content:
            raise ValidationError("Comment content cannot be empty")
        if internal and actor is None:
            raise AuthorizationError("Only staff can add internal notes")
        actor_id = actor.user_id if actor else None

        with tracer.start_as_current_span("tickets.comment") as span:
            span.set_attribute("helpdesk.ticket_id", ticket_id)
            async with transaction(self._session_factory) as session:
                row = await self._store.lock(session, ticket_id)
                if row is None:
                    raise NotFoundError(f"Ticket {ticket_id} not found")
                number = int(row.ticket_number)
                now = datetime.now(timezone.utc)
                comment = await self._comments.add(
                    session,
                    ticket_id=ticket_id,
                    actor_id=actor_id,
                    content=content,
                    is_internal=internal,
                    created_at=now,
                )
                await self._store.touch(session, ticket_id, updated_at=now)
                await self._recorder.append(
                    session,
                    ticket_id=ticket_id,
                    actor_id=actor_id,
                    action=HistoryAction.UPDATED,
                    notes="Internal note added." if internal else "Comment added.",
                )

        logger.info("Added %s to ticket #%d", "internal note" if internal else "comment", number)
        return comment

    async def list_comments(self, ticket_id: str, *, include_internal: bool = False) -> list[TicketComment]:
        if await self._store.get_ticket(ticket_id) is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return await self._comments.list_comments(ticket_id, include_internal=include_internal)

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._store.get_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        assignee_id: str | None = None,
        submitter_email: str | None = None,
    ) -> Sequence[Ticket]:
        return await self._store.list_tickets(
            status=status, assignee_id=assignee_id, submitter_email=submitter_email
        )

    async def search_tickets(self, text: str, *, limit: int = MAX_SEARCH_RESULTS) -> Sequence[Ticket]:
        """Case-insensitive substring match over category, description, email, solution and number."""

        text = (text or "").strip()
        if not text:
            raise ValidationError("Search text is required")
        if limit < 1:
            raise ValidationError("Search limit must be positive")
        return await self._store.list_tickets(text=text, limit=min(limit, MAX_SEARCH_RESULTS))

    async def ticket_stats(self) -> TicketStats:
        counts = await self._store.count_by_status()
        return TicketStats(
            total=sum(counts.values()),
            open=counts[TicketStatus.OPEN],
            in_progress=counts[TicketStatus.IN_PROGRESS],
            resolved=counts[TicketStatus.RESOLVED],
        )

    async def _stage_changes(
        self,
        session: AsyncSession,
        current: Ticket,
        patch: TicketPatch,
        *,
        actor_id: str | None,
        now: datetime,
    ) -> TicketUpdateBuilder:
        builder = TicketUpdateBuilder(current.id)

        if patch.status is not UNSET and patch.status is not current.status:
            builder.stage("status", patch.status, f"Status changed to {patch.status.value}.")
            if patch.status is TicketStatus.RESOLVED:
                builder.stage("resolved_at", now)
                builder.stage("resolved_by", actor_id)
            elif current.status is TicketStatus.RESOLVED:
                builder.stage("resolved_at", None)
                builder.stage("resolved_by", None)

        if patch.assignee_id is not UNSET and patch.assignee_id != current.assignee_id:
            if patch.assignee_id is None:
                builder.stage("assignee_id", None, "Unassigned ticket.")
            else:
                try:
                    await self._assignments.validate(session, patch.assignee_id)
                except NotFoundError as exc:
                    raise ValidationError(f"Cannot assign ticket to unknown user {patch.assignee_id}") from exc
                clause = "Assigned ticket." if current.assignee_id is None else "Reassigned ticket."
                builder.stage("assignee_id", patch.assignee_id, clause)

        if patch.urgency is not UNSET and patch.urgency is not current.urgency:
            builder.stage("urgency", patch.urgency, f"Urgency changed to {patch.urgency.value}.")

        if patch.due_date is not UNSET and patch.due_date != current.due_date:
            if patch.due_date is None:
                clause = "Due date removed."
            elif current.due_date is None:
                clause = f"Due date set to {patch.due_date:%Y-%m-%d %H:%M} UTC."
            else:
                clause = f"Due date changed to {patch.due_date:%Y-%m-%d %H:%M} UTC."
            builder.stage("due_date", patch.due_date, clause)

        if patch.solution is not UNSET and patch.solution != current.solution:
            clause = "Solution removed." if patch.solution is None else "Solution updated."
            builder.stage("solution", patch.solution, clause)

        return builder

    def _notify_status_change(self, before: Ticket, after: Ticket) -> None:
        if before.status is after.status:
            return
        if after.status is TicketStatus.IN_PROGRESS:
            kind = NotificationKind.IN_PROGRESS
        elif after.status is TicketStatus.RESOLVED:
            kind = NotificationKind.RESOLVED
        else:
            return
        self._notify(
            TicketNotification(
                kind=kind,
                recipient=after.submitter_email,
                ticket_number=after.ticket_number,
                category=after.category,
                detail=after.solution,
            )
        )

    def _notify(self, notification: TicketNotification) -> None:
        if self._notifier is None:
            return
        self._notifier.enqueue(notification)
