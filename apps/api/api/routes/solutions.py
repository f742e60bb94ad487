from __future__ import annotations

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from apps.api.dependencies.auth import AdminUser
from apps.api.dependencies.services import SolutionCatalogDep, SolutionMatcherDep
from apps.api.services.errors import HelpdeskError
from apps.api.services.solutions import Solution, SolutionMatch

from .errors import http_error

router = APIRouter(prefix="/solutions", tags=["solutions"])


class SolutionModel(BaseModel):
    id: str
    category: str
    title: str
    description: str
    created_at: str

    @classmethod
    def from_entity(cls, solution: Solution) -> "SolutionModel":
        return cls(
            id=solution.id,
            category=solution.category,
            title=solution.title,
            description=solution.description,
            created_at=solution.created_at.isoformat(),
        )


class SolutionMatchModel(BaseModel):
    solution: SolutionModel
    score: int
    previously_shown: bool

    @classmethod
    def from_entity(cls, match: SolutionMatch) -> "SolutionMatchModel":
        return cls(
            solution=SolutionModel.from_entity(match.solution),
            score=match.score,
            previously_shown=match.previously_shown,
        )


class SolutionCreateRequest(BaseModel):
    category: str = Field(max_length=100)
    title: str = Field(max_length=255)
    description: str


@router.get("/search", response_model=list[SolutionMatchModel], summary="Suggest solutions while typing")
async def search_solutions(
    matcher: SolutionMatcherDep,
    category: str,
    description: str = "",
    email: str | None = Query(default=None),
) -> list[SolutionMatchModel]:
    matches = await matcher.search(category=category, description=description, submitter_email=email)
    return [SolutionMatchModel.from_entity(match) for match in matches]


@router.get("", response_model=list[SolutionModel])
async def list_solutions(catalog: SolutionCatalogDep, category: str | None = None) -> list[SolutionModel]:
    solutions = await catalog.list_solutions(category=category)
    return [SolutionModel.from_entity(item) for item in solutions]


@router.post("", response_model=SolutionModel, status_code=status.HTTP_201_CREATED)
async def create_solution(
    payload: SolutionCreateRequest, catalog: SolutionCatalogDep, _: AdminUser
) -> SolutionModel:
    try:
        solution = await catalog.create_solution(
            category=payload.category, title=payload.title, description=payload.description
        )
    except HelpdeskError as exc:
        raise http_error(exc) from exc
    return SolutionModel.from_entity(solution)
