"""Role-based access control middleware for FastAPI."""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from apps.api.dependencies.auth import User, resolve_user_from_token


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return credentials.strip() or None


class RBACMiddleware(BaseHTTPMiddleware):
    """Resolve the caller once per request and expose it as `request.state.user`."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        try:
            user: User = resolve_user_from_token(_bearer_token(request.headers.get("Authorization")))
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

        span = trace.get_current_span()
        if user.user_id is not None:
            span.set_attribute("enduser.id", user.user_id)
            span.set_attribute("enduser.role", ",".join(role.value for role in user.roles))

        request.state.user = user
        return await call_next(request)
