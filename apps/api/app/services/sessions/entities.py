from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.models import HandoffState, ParticipantRole, ParticipantState, SessionStatus, SessionVisibility

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is written as UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def canonical_web_url(game_ref: int) -> str:
    return f"https://www.roblox.com/games/{game_ref}"


def canonical_start_url(game_ref: int) -> str:
    return f"https://www.roblox.com/games/start?placeId={game_ref}"


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    id: str
    host_id: str
    game_ref: int
    title: str
    description: str | None
    visibility: SessionVisibility
    status: SessionStatus
    is_ranked: bool
    max_participants: int
    scheduled_start: datetime | None
    original_input_url: str
    normalized_from: str
    created_at: datetime
    updated_at: datetime
    archived_at: datetime | None = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


@dataclass(frozen=True, slots=True)
class ParticipantSnapshot:
    session_id: str
    user_id: str
    role: ParticipantRole
    state: ParticipantState
    handoff_state: HandoffState | None
    joined_at: datetime


@dataclass(frozen=True, slots=True)
class InviteSnapshot:
    session_id: str
    code: str
    created_by: str
    created_at: datetime
    expires_at: datetime | None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass(frozen=True, slots=True)
class RankingSnapshot:
    user_id: str
    rating: int
    wins: int
    losses: int
    last_ranked_match_at: datetime | None


@dataclass(frozen=True, slots=True)
class RatingUpdate:
    user_id: str
    rating: int
    wins: int
    losses: int
    delta: int


@dataclass(frozen=True, slots=True)
class PlayedMatch:
    session_id: str
    session_title: str | None
    winner_id: str
    rating_delta: int
    played_at: datetime
    participant_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SessionDetail:
    session: SessionSnapshot
    participants: list[ParticipantSnapshot]
    invite_code: str | None
    invite_link: str | None

    @property
    def joined_count(self) -> int:
        return sum(1 for item in self.participants if item.state == ParticipantState.JOINED)


@dataclass(frozen=True, slots=True)
class SessionListItem:
    session: SessionSnapshot
    joined_count: int


@dataclass(frozen=True, slots=True)
class SessionPage:
    sessions: list[SessionListItem]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


@dataclass(frozen=True, slots=True)
class CreatedSession:
    session: SessionSnapshot
    invite_code: str
    invite_link: str
    notified_user_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class InviteSummary:
    code: str
    session: SessionSnapshot
    joined_count: int


def session_from_row(row: Mapping[str, Any]) -> SessionSnapshot:
    return SessionSnapshot(
        id=str(row["id"]),
        host_id=str(row["host_id"]),
        game_ref=int(row["game_ref"]),
        title=str(row["title"]),
        description=row.get("description"),
        visibility=SessionVisibility(row["visibility"]),
        status=SessionStatus(row["status"]),
        is_ranked=bool(row["is_ranked"]),
        max_participants=int(row["max_participants"]),
        scheduled_start=as_utc(row.get("scheduled_start")),
        original_input_url=str(row["original_input_url"]),
        normalized_from=str(row["normalized_from"]),
        created_at=as_utc(row["created_at"]),
        updated_at=as_utc(row["updated_at"]),
        archived_at=as_utc(row.get("archived_at")),
    )


def participant_from_row(row: Mapping[str, Any]) -> ParticipantSnapshot:
    raw_handoff = row.get("handoff_state")
    return ParticipantSnapshot(
        session_id=str(row["session_id"]),
        user_id=str(row["user_id"]),
        role=ParticipantRole(row["role"]),
        state=ParticipantState(row["state"]),
        handoff_state=HandoffState(raw_handoff) if raw_handoff else None,
        joined_at=as_utc(row["joined_at"]),
    )


def invite_from_row(row: Mapping[str, Any]) -> InviteSnapshot:
    return InviteSnapshot(
        session_id=str(row["session_id"]),
        code=str(row["code"]),
        created_by=str(row["created_by"]),
        created_at=as_utc(row["created_at"]),
        expires_at=as_utc(row.get("expires_at")),
    )


def ranking_from_row(row: Mapping[str, Any]) -> RankingSnapshot:
    return RankingSnapshot(
        user_id=str(row["user_id"]),
        rating=int(row["rating"]),
        wins=int(row["wins"]),
        losses=int(row["losses"]),
        last_ranked_match_at=as_utc(row.get("last_ranked_match_at")),
    )
