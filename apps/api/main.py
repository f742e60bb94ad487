import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.api.api.routes import ping, solutions, tickets, users
from apps.api.core.config import Settings, get_settings
from apps.api.core.logging import configure_logging, init_tracer, shutdown_tracer
from apps.api.middleware import RBACMiddleware
from apps.api.services.assignment import AssignmentResolver
from apps.api.services.comments import TicketCommentStore
from apps.api.services.database import build_engine, build_session_factory, ensure_schema
from apps.api.services.errors import PersistenceError
from apps.api.services.history import AuditTrailRecorder
from apps.api.services.notifications import NotificationDispatcher, build_email_sender
from apps.api.services.postgres import PostgresConnectionTester
from apps.api.services.solutions import SolutionCatalog, SolutionMatcher
from apps.api.services.tickets import TicketLifecycleManager, TicketStore
from apps.api.services.users import UserDirectory

logger = logging.getLogger(__name__)

_SERVICE_NAMES = (
    "ticket_manager",
    "history_recorder",
    "solution_matcher",
    "solution_catalog",
    "user_directory",
)


def attach_services(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    *,
    notifier: NotificationDispatcher | None = None,
) -> None:
    """Construct the lifecycle collaborators and publish them on `app.state`."""

    directory = UserDirectory(session_factory)
    recorder = AuditTrailRecorder(session_factory)
    matcher = SolutionMatcher(session_factory, limit=settings.solution_match_limit)
    app.state.user_directory = directory
    app.state.history_recorder = recorder
    app.state.solution_matcher = matcher
    app.state.solution_catalog = SolutionCatalog(session_factory)
    app.state.ticket_manager = TicketLifecycleManager(
        session_factory,
        store=TicketStore(session_factory),
        recorder=recorder,
        comments=TicketCommentStore(session_factory),
        matcher=matcher,
        assignments=AssignmentResolver(directory),
        notifier=notifier,
        default_urgency=settings.default_urgency,
    )


def _detach_services(app: FastAPI) -> None:
    for name in _SERVICE_NAMES:
        setattr(app.state, name, None)


async def _storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Unhandled storage error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": str(PersistenceError())})


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app_logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = app_logger
    app.state.tracer_provider = tracer_provider
    postgres_tester = PostgresConnectionTester(dsn=settings.postgres_dsn)
    app.state.postgres_tester = postgres_tester

    dispatcher = NotificationDispatcher(
        build_email_sender(settings), max_queue_size=settings.notification_queue_size
    )
    dispatcher.start()
    app.state.notification_dispatcher = dispatcher

    _detach_services(app)
    db_engine = build_engine(settings.postgres_dsn, echo=settings.db_echo)
    app.state.db_engine = db_engine
    try:
        if not await postgres_tester.check():
            app_logger.warning("PostgreSQL is not reachable; ticket services disabled")
        else:
            await ensure_schema(db_engine)
            attach_services(app, build_session_factory(db_engine), settings, notifier=dispatcher)
    except SQLAlchemyError:
        app_logger.exception("Failed to initialise the ticket schema; ticket services disabled")
        _detach_services(app)
    try:
        yield
    finally:
        await dispatcher.stop()
        await db_engine.dispose()
        await postgres_tester.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RBACMiddleware)
    app.add_exception_handler(SQLAlchemyError, _storage_error_handler)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(solutions.router)
    app.include_router(users.router)
    return app


app = create_app()
