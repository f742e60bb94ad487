from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request

from apps.api.services.history import AuditTrailRecorder
from apps.api.services.solutions import SolutionCatalog, SolutionMatcher
from apps.api.services.tickets import TicketLifecycleManager
from apps.api.services.users import UserDirectory


def _from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{label} is not available")
    return service


async def get_ticket_manager(request: Request) -> TicketLifecycleManager:
    return _from_state(request, "ticket_manager", "Ticket service")


async def get_history_recorder(request: Request) -> AuditTrailRecorder:
    return _from_state(request, "history_recorder", "Ticket history")


async def get_solution_matcher(request: Request) -> SolutionMatcher:
    return _from_state(request, "solution_matcher", "Solution search")


async def get_solution_catalog(request: Request) -> SolutionCatalog:
    return _from_state(request, "solution_catalog", "Solution catalogue")


async def get_user_directory(request: Request) -> UserDirectory:
    return _from_state(request, "user_directory", "User directory")


TicketManagerDep = Annotated[TicketLifecycleManager, Depends(get_ticket_manager)]
HistoryRecorderDep = Annotated[AuditTrailRecorder, Depends(get_history_recorder)]
SolutionMatcherDep = Annotated[SolutionMatcher, Depends(get_solution_matcher)]
SolutionCatalogDep = Annotated[SolutionCatalog, Depends(get_solution_catalog)]
UserDirectoryDep = Annotated[UserDirectory, Depends(get_user_directory)]
