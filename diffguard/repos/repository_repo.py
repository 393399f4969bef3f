"""Repository repository -- reads for the repositories table."""

from uuid import UUID

from diffguard.repos.db import get_pool


async def get_repository_by_id(repository_id: UUID) -> dict | None:
    """Fetch a connected repository (``name`` + ``provider``). Returns None if not found."""
    pool = await get_pool()
    row = await pool.fetchrow(
        "SELECT id, user_id, name, provider, created_at FROM repositories WHERE id = $1",
        repository_id,
    )
    return dict(row) if row else None
