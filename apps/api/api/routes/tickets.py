from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from apps.api.dependencies.auth import AdminUser, CurrentUser, Role, StaffUser
from apps.api.dependencies.services import HistoryRecorderDep, TicketManagerDep
from apps.api.services.comments import TicketComment
from apps.api.services.errors import HelpdeskError
from apps.api.services.history import TicketHistoryEntry
from apps.api.services.tickets import MAX_SEARCH_RESULTS, Ticket, TicketStatus, TicketUrgency

from .errors import http_error
from .solutions import SolutionModel

router = APIRouter(prefix="/tickets", tags=["tickets"])


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class TicketModel(BaseModel):
    id: str
    ticket_number: int
    category: str
    description: str
    submitter_email: str
    status: TicketStatus
    urgency: TicketUrgency
    assignee_id: str | None = None
    solution: str | None = None
    due_date: str | None = None
    resolved_at: str | None = None
    resolved_by: str | None = None
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketModel":
        return cls(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            category=ticket.category,
            description=ticket.description,
            submitter_email=ticket.submitter_email,
            status=ticket.status,
            urgency=ticket.urgency,
            assignee_id=ticket.assignee_id,
            solution=ticket.solution,
            due_date=_isoformat(ticket.due_date),
            resolved_at=_isoformat(ticket.resolved_at),
            resolved_by=ticket.resolved_by,
            created_at=ticket.created_at.isoformat(),
            updated_at=ticket.updated_at.isoformat(),
        )


class TicketCreatedModel(TicketModel):
    suggested_solutions: list[SolutionModel] = Field(default_factory=list)


class TicketHistoryModel(BaseModel):
    id: int
    ticket_id: str
    user_id: str | None = None
    action: str
    notes: str
    created_at: str

    @classmethod
    def from_entity(cls, entry: TicketHistoryEntry) -> "TicketHistoryModel":
        return cls(
            id=entry.id,
            ticket_id=entry.ticket_id,
            user_id=entry.user_id,
            action=entry.action.value,
            notes=entry.notes,
            created_at=entry.created_at.isoformat(),
        )


class TicketCommentModel(BaseModel):
    id: int
    ticket_id: str
    user_id: str | None = None
    content: str
    is_internal: bool
    created_at: str

    @classmethod
    def from_entity(cls, comment: TicketComment) -> "TicketCommentModel":
        return cls(
            id=comment.id,
            ticket_id=comment.ticket_id,
            user_id=comment.user_id,
            content=comment.content,
            is_internal=comment.is_internal,
            created_at=comment.created_at.isoformat(),
        )


class TicketStatsModel(BaseModel):
    total: int
    open: int
    in_progress: int
    resolved: int


class TicketCreateRequest(BaseModel):
    category: str
    description: str
    submitter_email: str
    urgency: TicketUrgency | None = None
    due_date: datetime | None = None


class TicketCommentRequest(BaseModel):
    content: str
    is_internal: bool = False


class TicketUpdateRequest(BaseModel):
    """Sparse update; only fields present in the body are applied."""

    model_config = ConfigDict(extra="forbid")

    status: TicketStatus | None = None
    assignee_id: str | None = None
    urgency: TicketUrgency | None = None
    due_date: datetime | None = None
    solution: str | None = None


@router.post("", response_model=TicketCreatedModel, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    manager: TicketManagerDep,
    user: CurrentUser,
) -> TicketCreatedModel:
    try:
        submission = await manager.submit_ticket(
            category=payload.category,
            description=payload.description,
            submitter_email=payload.submitter_email,
            urgency=payload.urgency,
            due_date=payload.due_date,
            actor=user.as_actor(),
        )
    except HelpdeskError as exc:
        raise http_error(exc) from exc
    return TicketCreatedModel(
        **TicketModel.from_entity(submission.ticket).model_dump(),
        suggested_solutions=[SolutionModel.from_entity(match.solution) for match in submission.suggestions],
    )


@router.get("", response_model=list[TicketModel], summary="List tickets, newest first")
async def list_tickets(
    manager: TicketManagerDep,
    _: StaffUser,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    assignee_id: str | None = None,
    submitter_email: str | None = None,
) -> list[TicketModel]:
    tickets = await manager.list_tickets(
        status=status_filter, assignee_id=assignee_id, submitter_email=submitter_email
    )
    return [TicketModel.from_entity(item) for item in tickets]


@router.get("/search", response_model=list[TicketModel], summary="Free-text ticket search")
async def search_tickets(
    manager: TicketManagerDep,
    _: StaffUser,
    q: str = Query(min_length=1),
    limit: int = Query(default=MAX_SEARCH_RESULTS, ge=1, le=MAX_SEARCH_RESULTS),
) -> list[TicketModel]:
    try:
        tickets = await manager.search_tickets(q, limit=limit)
    except HelpdeskError as exc:
        raise http_error(exc) from exc
    return [TicketModel.from_entity(item) for item in tickets]


@router.get("/stats", response_model=TicketStatsModel)
async def ticket_stats(manager: TicketManagerDep, _: StaffUser) -> TicketStatsModel:
    stats = await manager.ticket_stats()
    return TicketStatsModel(
        total=stats.total, open=stats.open, in_progress=stats.in_progress, resolved=stats.resolved
    )


@router.get("/{ticket_id}", response_model=TicketModel)
async def get_ticket(ticket_id: str, manager: TicketManagerDep, _: StaffUser) -> TicketModel:
    try:
        ticket = await manager.get_ticket(ticket_id)
    except HelpdeskError as exc:
        raise http_error(exc) from exc
    return TicketModel.from_entity(ticket)


@router.patch("/{ticket_id}", response_model=TicketModel)
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    manager: TicketManagerDep,
    user: StaffUser,
) -> TicketModel:
    try:
        ticket = await manager.update_ticket(
            ticket_id, payload.model_dump(exclude_unset=True), actor=user.as_actor()
        )
    except HelpdeskError as exc:
        raise http_error(exc) from exc
    return TicketModel.from_entity(ticket)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_id: str, manager: TicketManagerDep, user: AdminUser) -> None:
    try:
        await manager.delete_ticket(ticket_id, actor=user.as_actor())
    except HelpdeskError as exc:
        raise http_error(exc) from exc


@router.get("/{ticket_id}/history", response_model=list[TicketHistoryModel])
async def ticket_history(
    ticket_id: str, recorder: HistoryRecorderDep, _: StaffUser
) -> list[TicketHistoryModel]:
    entries = await recorder.get_history(ticket_id)
    return [TicketHistoryModel.from_entity(entry) for entry in entries]


@router.post(
    "/{ticket_id}/comments", response_model=TicketCommentModel, status_code=status.HTTP_201_CREATED
)
async def add_comment(
    ticket_id: str,
    payload: TicketCommentRequest,
    manager: TicketManagerDep,
    user: StaffUser,
) -> TicketCommentModel:
    try:
        comment = await manager.add_comment(
            ticket_id, payload.content, actor=user.as_actor(), internal=payload.is_internal
        )
    except HelpdeskError as exc:
        raise http_error(exc) from exc
    return TicketCommentModel.from_entity(comment)


@router.get("/{ticket_id}/comments", response_model=list[TicketCommentModel])
async def list_comments(
    ticket_id: str, manager: TicketManagerDep, user: CurrentUser
) -> list[TicketCommentModel]:
    """Internal notes are only returned to staff."""

    try:
        comments = await manager.list_comments(ticket_id, include_internal=user.has_role(Role.STAFF))
    except HelpdeskError as exc:
        raise http_error(exc) from exc
    return [TicketCommentModel.from_entity(item) for item in comments]
