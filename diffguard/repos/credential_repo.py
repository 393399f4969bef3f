"""Source-credential repository -- reads for the source_credentials table.

Tokens are written (and encrypted at rest) by the credential service that
owns OAuth; this module only reads the usable token for a scan.
"""

from uuid import UUID

from diffguard.repos.db import get_pool


async def get_active_credential(user_id: UUID, provider: str) -> dict | None:
    """Return the user's active, unexpired credential for *provider*, or None."""
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        SELECT id, user_id, provider, access_token, username, organization,
               token_expires_at
        FROM source_credentials
        WHERE user_id = $1
          AND provider = $2
          AND is_active
          AND (token_expires_at IS NULL OR token_expires_at > now())
        ORDER BY updated_at DESC
        LIMIT 1
        """,
        user_id,
        provider,
    )
    return dict(row) if row else None
