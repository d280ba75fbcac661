"""ranked sessions: is_ranked flag, match_results and user_rankings

Revision ID: 0003_ranked_sessions
Revises: 0002_participant_handoff_state
Create Date: 2026-02-20 09:15:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0003_ranked_sessions"
down_revision: str | None = "0002_participant_handoff_state"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute(
        """
        ALTER TABLE sessions
        ADD COLUMN IF NOT EXISTS is_ranked BOOLEAN NOT NULL DEFAULT FALSE;
        """
    )
    op.create_check_constraint(
        "ck_sessions_ranked_public",
        "sessions",
        "NOT is_ranked OR visibility = 'public'",
    )
    op.create_index("ix_sessions_is_ranked_created_at", "sessions", ["is_ranked", "created_at"])

    op.create_table(
        "match_results",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=False),
        sa.Column("winner_id", sa.String(length=64), nullable=False),
        sa.Column("submitted_by", sa.String(length=64), nullable=False),
        sa.Column("rating_delta", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", name="uq_match_results_session_id"),
    )
    op.create_index("ix_match_results_created_at", "match_results", ["created_at"])

    op.create_table(
        "user_rankings",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False, server_default="1000"),
        sa.Column("wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("losses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_ranked_match_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_user_rankings_rating", "user_rankings", ["rating"])


def downgrade() -> None:
    op.drop_index("ix_user_rankings_rating", table_name="user_rankings")
    op.drop_table("user_rankings")
    op.drop_index("ix_match_results_created_at", table_name="match_results")
    op.drop_table("match_results")
    op.drop_index("ix_sessions_is_ranked_created_at", table_name="sessions")
    op.drop_constraint("ck_sessions_ranked_public", "sessions", type_="check")
    op.execute(
        """
        ALTER TABLE IF EXISTS sessions
        DROP COLUMN IF EXISTS is_ranked;
        """
    )
