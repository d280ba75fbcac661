"""create sessions, participants and invites

Revision ID: 0001_sessions_core
Revises:
Create Date: 2026-02-07 17:25:12
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_sessions_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("host_id", sa.String(length=64), nullable=False),
        sa.Column("game_ref", sa.BigInteger(), nullable=False),
        sa.Column("original_input_url", sa.Text(), nullable=False),
        sa.Column("normalized_from", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("visibility", sa.String(length=16), nullable=False, server_default="public"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("max_participants", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("max_participants BETWEEN 2 AND 50", name="ck_sessions_max_participants"),
        sa.CheckConstraint(
            "visibility IN ('public', 'friends', 'invite_only')",
            name="ck_sessions_visibility",
        ),
        sa.CheckConstraint(
            "status IN ('scheduled', 'active', 'completed', 'cancelled')",
            name="ck_sessions_status",
        ),
    )
    op.create_index("ix_sessions_game_ref", "sessions", ["game_ref"])
    op.create_index("ix_sessions_status_scheduled_start", "sessions", ["status", "scheduled_start"])
    op.create_index("ix_sessions_host_id_created_at", "sessions", ["host_id", "created_at"])

    op.create_table(
        "session_participants",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="member"),
        sa.Column("state", sa.String(length=16), nullable=False, server_default="joined"),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", "user_id", name="uq_session_participants_session_user"),
        sa.CheckConstraint("role IN ('host', 'member')", name="ck_session_participants_role"),
        sa.CheckConstraint("state IN ('joined', 'left')", name="ck_session_participants_state"),
    )
    op.create_index("ix_session_participants_session_state", "session_participants", ["session_id", "state"])
    op.create_index("ix_session_participants_user_id", "session_participants", ["user_id"])

    op.create_table(
        "session_invites",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=False),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_session_invites_code"),
    )
    op.create_index("ix_session_invites_session_id", "session_invites", ["session_id"])


def downgrade() -> None:
    op.drop_index("ix_session_invites_session_id", table_name="session_invites")
    op.drop_table("session_invites")
    op.drop_index("ix_session_participants_user_id", table_name="session_participants")
    op.drop_index("ix_session_participants_session_state", table_name="session_participants")
    op.drop_table("session_participants")
    op.drop_index("ix_sessions_host_id_created_at", table_name="sessions")
    op.drop_index("ix_sessions_status_scheduled_start", table_name="sessions")
    op.drop_index("ix_sessions_game_ref", table_name="sessions")
    op.drop_table("sessions")
