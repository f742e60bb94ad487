from fastapi import APIRouter, Request

from apps.api.dependencies.auth import StaffUser

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/secure", summary="Staff health check including database reachability")
async def secure_ping(request: Request, user: StaffUser) -> dict[str, str]:
    tester = getattr(request.app.state, "postgres_tester", None)
    if tester is None:
        database = "unknown"
    else:
        database = "ok" if await tester.check() else "unavailable"
    return {"status": "ok", "user": user.username, "database": database}
