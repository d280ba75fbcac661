"""add archived_at to sessions

Revision ID: 0004_session_archived_at
Revises: 0003_ranked_sessions
Create Date: 2026-03-02 08:40:00
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0004_session_archived_at"
down_revision: str | None = "0003_ranked_sessions"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute(
        """
        ALTER TABLE sessions
        ADD COLUMN IF NOT EXISTS archived_at TIMESTAMPTZ NULL;
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_sessions_completed_unarchived
        ON sessions (updated_at)
        WHERE status = 'completed' AND archived_at IS NULL;
        """
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_sessions_completed_unarchived;")
    op.execute(
        """
        ALTER TABLE IF EXISTS sessions
        DROP COLUMN IF EXISTS archived_at;
        """
    )
