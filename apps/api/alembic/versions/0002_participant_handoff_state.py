"""add handoff_state to session_participants

Revision ID: 0002_participant_handoff_state
Revises: 0001_sessions_core
Create Date: 2026-02-14 10:30:00
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002_participant_handoff_state"
down_revision: str | None = "0001_sessions_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute(
        """
        ALTER TABLE session_participants
        ADD COLUMN IF NOT EXISTS handoff_state VARCHAR(24) NULL DEFAULT 'rsvp_joined';
        """
    )
    op.execute(
        """
        UPDATE session_participants
        SET handoff_state = 'rsvp_joined'
        WHERE handoff_state IS NULL;
        """
    )
    op.execute(
        """
        DO $$
        BEGIN
            IF NOT EXISTS (
                SELECT 1 FROM pg_constraint WHERE conname = 'ck_session_participants_handoff_state'
            ) THEN
                ALTER TABLE session_participants
                ADD CONSTRAINT ck_session_participants_handoff_state
                CHECK (
                    handoff_state IS NULL
                    OR handoff_state IN ('rsvp_joined', 'opened_roblox', 'confirmed_in_game', 'stuck')
                );
            END IF;
        END
        $$;
        """
    )


def downgrade() -> None:
    op.execute(
        """
        ALTER TABLE IF EXISTS session_participants
        DROP CONSTRAINT IF EXISTS ck_session_participants_handoff_state;
        """
    )
    op.execute(
        """
        ALTER TABLE IF EXISTS session_participants
        DROP COLUMN IF EXISTS handoff_state;
        """
    )
