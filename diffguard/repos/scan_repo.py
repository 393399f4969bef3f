"""Scan repository -- database ops for the scans table."""

import logging
from uuid import UUID

import asyncpg

from diffguard.errors import PersistenceError
from diffguard.repos.db import get_pool

logger = logging.getLogger(__name__)

_SCAN_COLUMNS = """
    id, user_id, repository_id, provider, mode, ref, status,
    total_files, scanned_files, progress, message, result, error,
    created_at, updated_at, completed_at
"""

# Columns the scheduler may write; anything else is a programming error
_UPDATABLE = frozenset({
    "status", "total_files", "scanned_files", "progress", "message",
    "result", "error", "completed_at",
})


async def create_scan(
    user_id: UUID,
    repository_id: UUID,
    *,
    provider: str,
    mode: str,
    ref: str,
) -> dict:
    """Insert a new pending scan."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        INSERT INTO scans (user_id, repository_id, provider, mode, ref, status, message)
        VALUES ($1, $2, $3, $4, $5, 'pending', 'Queued')
        RETURNING {_SCAN_COLUMNS}
        """,
        user_id,
        repository_id,
        provider,
        mode,
        ref,
    )
    return dict(row)


async def get_scan(scan_id: UUID) -> dict | None:
    """Fetch a scan by primary key. Returns None if not found."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"SELECT {_SCAN_COLUMNS} FROM scans WHERE id = $1",
        scan_id,
    )
    return dict(row) if row else None


async def get_scans_by_user(user_id: UUID, limit: int = 20) -> list[dict]:
    """Most recent scans for a user, newest first (without results)."""
    pool = await get_pool()
    rows = await pool.fetch(
        """
        SELECT s.id, s.repository_id, r.name AS repository_name, s.provider,
               s.mode, s.ref, s.status, s.progress, s.total_files,
               s.scanned_files, s.error, s.created_at, s.completed_at
        FROM scans s
        JOIN repositories r ON r.id = s.repository_id
        WHERE s.user_id = $1
        ORDER BY s.created_at DESC
        LIMIT $2
        """,
        user_id,
        limit,
    )
    return [dict(r) for r in rows]


async def update_scan(scan_id: UUID, **fields) -> dict:
    """Partially update a scan and return the new row.

    Raises ``PersistenceError`` when the write fails or no row matched.
    """
    unknown = set(fields) - _UPDATABLE
    if unknown:
        raise ValueError(f"Cannot update scan column(s): {', '.join(sorted(unknown))}")
    if not fields:
        raise ValueError("update_scan needs at least one field")

    columns = list(fields)
    assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(columns, start=2))
    try:
        pool = await get_pool()
        row = await pool.fetchrow(
            f"""
            UPDATE scans
            SET {assignments}, updated_at = now()
            WHERE id = $1
            RETURNING {_SCAN_COLUMNS}
            """,
            scan_id,
            *(fields[c] for c in columns),
        )
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
        raise PersistenceError(f"Could not update scan {scan_id}: {exc}") from exc
    if row is None:
        raise PersistenceError(f"Scan {scan_id} not found")
    return dict(row)


async def interrupt_stale_scans() -> int:
    """Fail scans a previous process left pending or in progress.

    Returns the number of scans marked failed.  Run once at startup.
    """
    pool = await get_pool()
    result = await pool.execute(
        """
        UPDATE scans
        SET status = 'failed',
            error = 'Scan interrupted by a server restart',
            message = 'Scan failed',
            completed_at = now(),
            updated_at = now()
        WHERE status IN ('pending', 'in-progress')
        """
    )
    # asyncpg returns a status string like "UPDATE 3"
    count = int(result.split()[-1]) if result else 0
    if count:
        logger.warning("Marked %d interrupted scan(s) as failed", count)
    return count
