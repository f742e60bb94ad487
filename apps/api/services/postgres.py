from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import asyncpg

logger = logging.getLogger(__name__)


def to_libpq_dsn(dsn: str) -> str:
    """Strip a SQLAlchemy driver suffix so asyncpg accepts the DSN."""

    scheme, separator, rest = dsn.partition("://")
    if not separator:
        return dsn
    return f"{scheme.split('+', 1)[0]}://{rest}"


@dataclass(slots=True)
class PostgresConnectionTester:
    """Startup check confirming the helpdesk database is reachable."""

    dsn: str
    timeout: float = 5.0
    _pool: asyncpg.Pool | None = None

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=to_libpq_dsn(self.dsn), min_size=1, max_size=1, timeout=self.timeout
            )
        return self._pool

    async def test_connection(self) -> bool:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            await connection.execute("SELECT 1")
        return True

    async def check(self) -> bool:
        """Like `test_connection` but reports failure instead of raising."""

        try:
            return await asyncio.wait_for(self.test_connection(), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as exc:
            logger.warning("PostgreSQL connectivity check failed: %s", exc)
            return False

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
