from collections.abc import Callable
from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from apps.api.services.tickets import Actor
from apps.api.services.users import UserRole


class Role(str, Enum):
    """Supported roles."""

    ADMIN = "admin"
    STAFF = "staff"


class User:
    """Simple representation of an authenticated user."""

    def __init__(self, username: str, roles: tuple[Role, ...], user_id: str | None = None):
        self.username = username
        self.roles = roles
        self.user_id = user_id

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    def as_actor(self) -> Actor | None:
        """Acting identity for ticket changes; anonymous callers act as the system."""

        if self.user_id is None:
            return None
        role = UserRole.ADMIN if self.has_role(Role.ADMIN) else UserRole.STAFF
        return Actor(user_id=self.user_id, role=role)


# Stand-in for the JWT identity provider: token -> (user id, username, roles).
TOKEN_USER_MAP: dict[str, tuple[str, str, tuple[Role, ...]]] = {
    "admin-token": ("00000000-0000-4000-8000-000000000001", "admin", (Role.ADMIN, Role.STAFF)),
    "staff-token": ("00000000-0000-4000-8000-000000000002", "staff", (Role.STAFF,)),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None) -> User:
    """Return a user instance associated with the provided bearer token."""

    if token is None:
        return User(username="anonymous", roles=())

    if token not in TOKEN_USER_MAP:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    user_id, username, roles = TOKEN_USER_MAP[token]
    return User(username=username, roles=roles, user_id=user_id)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> User:
    """Resolve the caller from the bearer token, reusing the middleware result."""

    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = resolve_user_from_token(token)
    request.state.user = user
    return user


def role_required(role: Role) -> Callable[[User], User]:
    """Dependency factory ensuring the current user has the requested role."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not user.is_authenticated:
            raise HTTPException(status_code=401, detail="Authentication required")
        if not user.has_role(role):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


require_staff = role_required(Role.STAFF)
require_admin = role_required(Role.ADMIN)

CurrentUser = Annotated[User, Depends(get_current_user)]
StaffUser = Annotated[User, Depends(require_staff)]
AdminUser = Annotated[User, Depends(require_admin)]
