from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class SessionVisibility(str, Enum):
    PUBLIC = "public"
    FRIENDS = "friends"
    INVITE_ONLY = "invite_only"


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ParticipantRole(str, Enum):
    HOST = "host"
    MEMBER = "member"


class ParticipantState(str, Enum):
    JOINED = "joined"
    LEFT = "left"


class HandoffState(str, Enum):
    RSVP_JOINED = "rsvp_joined"
    OPENED_ROBLOX = "opened_roblox"
    CONFIRMED_IN_GAME = "confirmed_in_game"
    STUCK = "stuck"


def _uuid() -> str:
    return str(uuid4())


class PlaySession(Base):
    __tablename__ = "sessions"
    __table_args__ = (
        CheckConstraint("max_participants BETWEEN 2 AND 50", name="ck_sessions_max_participants"),
        CheckConstraint("NOT is_ranked OR visibility = 'public'", name="ck_sessions_ranked_public"),
        Index("ix_sessions_status_scheduled_start", "status", "scheduled_start"),
        Index("ix_sessions_host_id_created_at", "host_id", "created_at"),
        Index("ix_sessions_is_ranked_created_at", "is_ranked", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    host_id: Mapped[str] = mapped_column(String(64), nullable=False)
    game_ref: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    original_input_url: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_from: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    visibility: Mapped[str] = mapped_column(String(16), nullable=False, server_default="public")
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="active")
    is_ranked: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False, server_default="10")
    scheduled_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scheduled_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class SessionParticipant(Base):
    __tablename__ = "session_participants"
    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_session_participants_session_user"),
        Index("ix_session_participants_session_state", "session_id", "state"),
        Index("ix_session_participants_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, server_default="member")
    state: Mapped[str] = mapped_column(String(16), nullable=False, server_default="joined")
    handoff_state: Mapped[str | None] = mapped_column(String(24), nullable=True, server_default="rsvp_joined")
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class SessionInvite(Base):
    __tablename__ = "session_invites"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class MatchResult(Base):
    __tablename__ = "match_results"
    __table_args__ = (
        UniqueConstraint("session_id", name="uq_match_results_session_id"),
        Index("ix_match_results_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    winner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    submitted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    rating_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class UserRanking(Base):
    __tablename__ = "user_rankings"
    __table_args__ = (Index("ix_user_rankings_rating", "rating"),)

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1000")
    wins: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    losses: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    last_ranked_match_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
