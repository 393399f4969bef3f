"""PostgreSQL pool for the scan store.

``get_pool()`` hands out a wrapper around :class:`asyncpg.Pool` that
retries a query on a fresh connection when the old one was dropped by the
server (idle reapers, restarts).  JSONB columns are decoded to Python
objects by a per-connection codec, so repos read ``scans.result`` as a dict.
"""

import asyncio
import json
import logging
from typing import Any

import asyncpg

from diffguard.config import settings

logger = logging.getLogger(__name__)

# Errors that mean the connection is gone and the query never ran
_DEAD_CONNECTION_ERRORS = (
    asyncpg.ConnectionDoesNotExistError,
    asyncpg.InterfaceError,
    ConnectionResetError,
    OSError,
)

_MAX_RETRIES = 3
_MAX_BACKOFF = 8.0


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog",
    )


class _RetryingPool:
    """Proxy for :class:`asyncpg.Pool` whose query shorthands survive dead connections.

    ``fetch``/``fetchrow``/``fetchval``/``execute`` are retried with
    exponential backoff; every other attribute goes straight to the pool.
    """

    __slots__ = ("_pool",)

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def fetch(self, query: str, *args: Any, **kw: Any) -> list:
        return await self._run(self._pool.fetch, query, *args, **kw)

    async def fetchrow(self, query: str, *args: Any, **kw: Any):
        return await self._run(self._pool.fetchrow, query, *args, **kw)

    async def fetchval(self, query: str, *args: Any, **kw: Any):
        return await self._run(self._pool.fetchval, query, *args, **kw)

    async def execute(self, query: str, *args: Any, **kw: Any) -> str:
        return await self._run(self._pool.execute, query, *args, **kw)

    @staticmethod
    async def _run(func, *args: Any, **kw: Any):
        for attempt in range(_MAX_RETRIES + 1):
            try:
                return await func(*args, **kw)
            except _DEAD_CONNECTION_ERRORS as exc:
                if attempt >= _MAX_RETRIES:
                    # The pool itself is poisoned; the next get_pool() builds a new one
                    _forget_pool()
                    raise
                wait = min(0.5 * (2 ** attempt), _MAX_BACKOFF)
                logger.warning(
                    "DB connection lost (attempt %d/%d): %s, retrying in %.1fs",
                    attempt + 1, _MAX_RETRIES + 1, exc, wait,
                )
                await asyncio.sleep(wait)

    def __getattr__(self, name: str):
        return getattr(self._pool, name)


_pool: asyncpg.Pool | None = None
_pool_loop: asyncio.AbstractEventLoop | None = None
_wrapper: _RetryingPool | None = None


def _forget_pool() -> None:
    global _pool, _pool_loop, _wrapper
    _pool = None
    _pool_loop = None
    _wrapper = None


async def get_pool() -> _RetryingPool:
    """Get or create the pool; a pool bound to another event loop is replaced."""
    global _pool, _pool_loop, _wrapper
    loop = asyncio.get_running_loop()
    if _pool is not None and _pool_loop is not loop:
        _pool.terminate()
        _forget_pool()
    if _pool is None:
        _pool = await asyncio.wait_for(
            asyncpg.create_pool(
                dsn=settings.DATABASE_URL,
                min_size=1,
                max_size=10,
                command_timeout=60,
                max_inactive_connection_lifetime=300.0,
                init=_init_connection,
                server_settings={"statement_timeout": "30000"},
            ),
            timeout=20,
        )
        _pool_loop = loop
        _wrapper = _RetryingPool(_pool)
    return _wrapper  # type: ignore[return-value]


async def close_pool() -> None:
    """Close the pool.  Called during app shutdown."""
    if _pool is not None:
        await _pool.close()
    _forget_pool()
