"""Baseline -- users, source credentials, repositories and scans.

Revision ID: 0001_baseline
Revises: None
Create Date: 2026-10-19

Idempotent (IF NOT EXISTS throughout) so it can run against a database
that already holds the tables.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email           VARCHAR(320) NOT NULL UNIQUE,
            display_name    VARCHAR(255),
            created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS source_credentials (
            id                UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id           UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            provider          VARCHAR(20) NOT NULL
                              CHECK (provider IN ('github', 'bitbucket', 'azure')),
            access_token      TEXT NOT NULL,
            refresh_token     TEXT,
            username          VARCHAR(255),
            organization      VARCHAR(255),
            token_expires_at  TIMESTAMPTZ,
            is_active         BOOLEAN NOT NULL DEFAULT true,
            created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at        TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_source_credentials_user_provider "
        "ON source_credentials(user_id, provider) WHERE is_active"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS repositories (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id     UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            name        VARCHAR(500) NOT NULL,
            provider    VARCHAR(20) NOT NULL
                        CHECK (provider IN ('github', 'bitbucket', 'azure')),
            created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (user_id, provider, name)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS scans (
            id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id        UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            repository_id  UUID NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
            provider       VARCHAR(20) NOT NULL,
            mode           VARCHAR(20) NOT NULL
                           CHECK (mode IN ('branch', 'pull-request')),
            ref            VARCHAR(255) NOT NULL,
            status         VARCHAR(20) NOT NULL DEFAULT 'pending'
                           CHECK (status IN ('pending', 'in-progress', 'completed', 'failed')),
            total_files    INTEGER NOT NULL DEFAULT 0,
            scanned_files  INTEGER NOT NULL DEFAULT 0,
            progress       INTEGER NOT NULL DEFAULT 0
                           CHECK (progress BETWEEN 0 AND 100),
            message        TEXT,
            result         JSONB,
            error          TEXT,
            created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
            completed_at   TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_scans_user_created ON scans(user_id, created_at DESC)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_scans_status ON scans(status)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS scans")
    op.execute("DROP TABLE IF EXISTS repositories")
    op.execute("DROP TABLE IF EXISTS source_credentials")
    op.execute("DROP TABLE IF EXISTS users")
