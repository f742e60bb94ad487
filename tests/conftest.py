from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from apps.api.services.assignment import AssignmentResolver
from apps.api.services.database import build_session_factory, ensure_schema
from apps.api.services.history import AuditTrailRecorder
from apps.api.services.notifications import NotificationDispatcher, TicketNotification
from apps.api.services.solutions import SolutionCatalog, SolutionMatcher
from apps.api.services.tickets import Actor, TicketLifecycleManager, TicketStore
from apps.api.services.users import DirectoryUser, UserDirectory, UserRole


class RecordingSender:
    def __init__(self) -> None:
        self.sent: list[TicketNotification] = []

    async def send(self, notification: TicketNotification) -> None:
        self.sent.append(notification)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncEngine:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'helpdesk.db'}",
        connect_args={"timeout": 30},
    )
    await ensure_schema(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return build_session_factory(engine)


@pytest.fixture
def directory(session_factory) -> UserDirectory:
    return UserDirectory(session_factory)


@pytest.fixture
def recorder(session_factory) -> AuditTrailRecorder:
    return AuditTrailRecorder(session_factory)


@pytest.fixture
def matcher(session_factory) -> SolutionMatcher:
    return SolutionMatcher(session_factory, limit=5)


@pytest.fixture
def catalog(session_factory) -> SolutionCatalog:
    return SolutionCatalog(session_factory)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest_asyncio.fixture
async def dispatcher(sender: RecordingSender) -> NotificationDispatcher:
    dispatcher = NotificationDispatcher(sender, max_queue_size=100)
    dispatcher.start()
    try:
        yield dispatcher
    finally:
        await dispatcher.stop()


@pytest.fixture
def manager(session_factory, directory, recorder, matcher, dispatcher) -> TicketLifecycleManager:
    return TicketLifecycleManager(
        session_factory,
        store=TicketStore(session_factory),
        recorder=recorder,
        matcher=matcher,
        assignments=AssignmentResolver(directory),
        notifier=dispatcher,
    )


@pytest_asyncio.fixture
async def staff_member(directory: UserDirectory) -> DirectoryUser:
    return await directory.create_user(name="Dana Reyes", email="dana@acme.io")


@pytest_asyncio.fixture
async def other_staff_member(directory: UserDirectory) -> DirectoryUser:
    return await directory.create_user(name="Sam Okafor", email="sam@acme.io")


@pytest.fixture
def staff_actor(staff_member: DirectoryUser) -> Actor:
    return Actor(user_id=staff_member.id, role=UserRole.STAFF)


@pytest_asyncio.fixture
async def admin_actor(directory: UserDirectory) -> Actor:
    admin = await directory.create_user(name="Avery Admin", email="avery@acme.io", role=UserRole.ADMIN)
    return Actor(user_id=admin.id, role=UserRole.ADMIN)
