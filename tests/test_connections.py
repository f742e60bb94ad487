from unittest.mock import AsyncMock, MagicMock

import pytest

from apps.api.services.postgres import PostgresConnectionTester, to_libpq_dsn


def test_to_libpq_dsn_strips_driver():
    assert to_libpq_dsn("postgresql+asyncpg://u:p@db:5432/helpdesk") == "postgresql://u:p@db:5432/helpdesk"
    assert to_libpq_dsn("postgresql://db/helpdesk") == "postgresql://db/helpdesk"


@pytest.mark.asyncio
async def test_postgres_connection_tester(monkeypatch):
    connection_mock = AsyncMock()
    captured = {}

    class DummyAcquire:
        async def __aenter__(self):
            return connection_mock

        async def __aexit__(self, exc_type, exc, tb):
            return False

    pool_mock = MagicMock()
    pool_mock.acquire.return_value = DummyAcquire()
    pool_mock.close = AsyncMock()

    async def create_pool(**kwargs):
        captured.update(kwargs)
        return pool_mock

    monkeypatch.setattr("apps.api.services.postgres.asyncpg.create_pool", create_pool)

    tester = PostgresConnectionTester("postgresql+asyncpg://db/helpdesk")
    assert await tester.check() is True
    assert captured["dsn"] == "postgresql://db/helpdesk"
    connection_mock.execute.assert_awaited_with("SELECT 1")
    await tester.close()
    pool_mock.close.assert_awaited()


@pytest.mark.asyncio
async def test_postgres_check_reports_unreachable_database(monkeypatch):
    async def create_pool(**kwargs):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr("apps.api.services.postgres.asyncpg.create_pool", create_pool)

    tester = PostgresConnectionTester("postgresql://db/helpdesk", timeout=0.5)
    assert await tester.check() is False
