from __future__ import annotations

from fastapi import APIRouter, status
from pydantic import BaseModel

from apps.api.dependencies.auth import AdminUser
from apps.api.dependencies.services import UserDirectoryDep
from apps.api.services.errors import HelpdeskError
from apps.api.services.users import DirectoryUser, UserRole

from .errors import http_error

router = APIRouter(prefix="/users", tags=["users"])


class UserModel(BaseModel):
    id: str
    name: str
    email: str
    role: UserRole
    is_active: bool
    created_at: str

    @classmethod
    def from_entity(cls, user: DirectoryUser) -> "UserModel":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            is_active=user.is_active,
            created_at=user.created_at.isoformat(),
        )


class UserCreateRequest(BaseModel):
    name: str
    email: str
    role: UserRole = UserRole.STAFF


@router.get("", response_model=list[UserModel])
async def list_users(directory: UserDirectoryDep, _: AdminUser) -> list[UserModel]:
    users = await directory.list_users()
    return [UserModel.from_entity(user) for user in users]


@router.post("", response_model=UserModel, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreateRequest, directory: UserDirectoryDep, _: AdminUser) -> UserModel:
    try:
        user = await directory.create_user(name=payload.name, email=payload.email, role=payload.role)
    except HelpdeskError as exc:
        raise http_error(exc) from exc
    return UserModel.from_entity(user)
