"""User repository -- database reads for the users table."""

from uuid import UUID

from diffguard.repos.db import get_pool


async def get_user_by_id(user_id: UUID) -> dict | None:
    """Fetch a user by primary key. Returns None if not found."""
    pool = await get_pool()
    row = await pool.fetchrow(
        "SELECT id, email, display_name, created_at, updated_at FROM users WHERE id = $1",
        user_id,
    )
    return dict(row) if row else None
