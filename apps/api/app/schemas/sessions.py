from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.services.sessions.entities import (
    CreatedSession,
    InviteSummary,
    ParticipantSnapshot,
    SessionDetail,
    SessionListItem,
    SessionPage,
    SessionSnapshot,
    canonical_start_url,
    canonical_web_url,
)
from app.services.sessions.history import MatchHistory
from app.services.sessions.leaderboard import Leaderboard
from app.services.sessions.ranking import MatchResultSubmission

VisibilityLiteral = Literal["public", "friends", "invite_only"]
SessionStatusLiteral = Literal["scheduled", "active", "completed", "cancelled"]
HandoffActionLiteral = Literal["opened", "confirmed", "stuck"]
LeaderboardTypeLiteral = Literal["weekly", "all_time"]


class SessionCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    game_url: str = Field(alias="robloxUrl", min_length=1, max_length=2048)
    title: str = Field(min_length=1, max_length=120)
    description: str | None = Field(default=None, max_length=2000)
    visibility: VisibilityLiteral = "public"
    max_participants: int = Field(default=10, ge=2, le=50, alias="maxParticipants")
    scheduled_start: datetime | None = Field(default=None, alias="scheduledStart")
    is_ranked: bool = Field(default=False, alias="isRanked")
    invite_friend_ids: list[str] = Field(default_factory=list, alias="inviteFriendIds", max_length=50)
    host_name: str | None = Field(default=None, alias="hostName", max_length=64)


class SessionJoinRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invite_code: str | None = Field(default=None, alias="inviteCode", max_length=32)


class BulkDeleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_ids: list[str] = Field(alias="sessionIds", min_length=1, max_length=100)


class BulkDeleteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deleted_count: int = Field(alias="deletedCount")


class MatchResultRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    winner_id: str = Field(alias="winnerId", min_length=1, max_length=64)


class SessionOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    host_id: str = Field(alias="hostId")
    game_ref: int = Field(alias="gameRef")
    canonical_web_url: str = Field(alias="canonicalWebUrl")
    canonical_start_url: str = Field(alias="canonicalStartUrl")
    original_input_url: str = Field(alias="originalInputUrl")
    normalized_from: str = Field(alias="normalizedFrom")
    title: str
    description: str | None = None
    visibility: VisibilityLiteral
    status: SessionStatusLiteral
    is_ranked: bool = Field(alias="isRanked")
    max_participants: int = Field(alias="maxParticipants")
    scheduled_start: datetime | None = Field(default=None, alias="scheduledStart")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    archived_at: datetime | None = Field(default=None, alias="archivedAt")

    @classmethod
    def from_snapshot(cls, session: SessionSnapshot) -> "SessionOut":
        return cls(
            id=session.id,
            host_id=session.host_id,
            game_ref=session.game_ref,
            canonical_web_url=canonical_web_url(session.game_ref),
            canonical_start_url=canonical_start_url(session.game_ref),
            original_input_url=session.original_input_url,
            normalized_from=session.normalized_from,
            title=session.title,
            description=session.description,
            visibility=session.visibility.value,
            status=session.status.value,
            is_ranked=session.is_ranked,
            max_participants=session.max_participants,
            scheduled_start=session.scheduled_start,
            created_at=session.created_at,
            updated_at=session.updated_at,
            archived_at=session.archived_at,
        )


class ParticipantOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    role: Literal["host", "member"]
    state: Literal["joined", "left"]
    handoff_state: str | None = Field(default=None, alias="handoffState")
    joined_at: datetime = Field(alias="joinedAt")

    @classmethod
    def from_snapshot(cls, participant: ParticipantSnapshot) -> "ParticipantOut":
        return cls(
            user_id=participant.user_id,
            role=participant.role.value,
            state=participant.state.value,
            handoff_state=participant.handoff_state.value if participant.handoff_state else None,
            joined_at=participant.joined_at,
        )


class SessionCreateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session: SessionOut
    invite_code: str = Field(alias="inviteCode")
    invite_link: str = Field(alias="inviteLink")
    notified_user_ids: list[str] = Field(default_factory=list, alias="notifiedUserIds")

    @classmethod
    def from_created(cls, created: CreatedSession) -> "SessionCreateResponse":
        return cls(
            session=SessionOut.from_snapshot(created.session),
            invite_code=created.invite_code,
            invite_link=created.invite_link,
            notified_user_ids=list(created.notified_user_ids),
        )


class SessionDetailResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session: SessionOut
    participants: list[ParticipantOut]
    participant_count: int = Field(alias="participantCount")
    invite_code: str | None = Field(default=None, alias="inviteCode")
    invite_link: str | None = Field(default=None, alias="inviteLink")

    @classmethod
    def from_detail(cls, detail: SessionDetail) -> "SessionDetailResponse":
        return cls(
            session=SessionOut.from_snapshot(detail.session),
            participants=[ParticipantOut.from_snapshot(item) for item in detail.participants],
            participant_count=detail.joined_count,
            invite_code=detail.invite_code,
            invite_link=detail.invite_link,
        )


class SessionListItemOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session: SessionOut
    participant_count: int = Field(alias="participantCount")

    @classmethod
    def from_item(cls, item: SessionListItem) -> "SessionListItemOut":
        return cls(session=SessionOut.from_snapshot(item.session), participant_count=item.joined_count)


class SessionListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sessions: list[SessionListItemOut]
    total: int
    limit: int
    offset: int
    has_more: bool = Field(alias="hasMore")

    @classmethod
    def from_page(cls, page: SessionPage) -> "SessionListResponse":
        return cls(
            sessions=[SessionListItemOut.from_item(item) for item in page.sessions],
            total=page.total,
            limit=page.limit,
            offset=page.offset,
            has_more=page.has_more,
        )


class InviteSummaryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    session_id: str = Field(alias="sessionId")
    title: str
    game_ref: int = Field(alias="gameRef")
    canonical_web_url: str = Field(alias="canonicalWebUrl")
    host_id: str = Field(alias="hostId")
    visibility: VisibilityLiteral
    status: SessionStatusLiteral
    participant_count: int = Field(alias="participantCount")
    max_participants: int = Field(alias="maxParticipants")

    @classmethod
    def from_summary(cls, summary: InviteSummary) -> "InviteSummaryResponse":
        session = summary.session
        return cls(
            code=summary.code,
            session_id=session.id,
            title=session.title,
            game_ref=session.game_ref,
            canonical_web_url=canonical_web_url(session.game_ref),
            host_id=session.host_id,
            visibility=session.visibility.value,
            status=session.status.value,
            participant_count=summary.joined_count,
            max_participants=session.max_participants,
        )


class RatingUpdateOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    rating: int
    wins: int
    losses: int
    delta: int


class TierPromotionOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    from_tier: str = Field(alias="fromTier")
    to_tier: str = Field(alias="toTier")


class MatchResultResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    winner_id: str = Field(alias="winnerId")
    rating_delta: int = Field(alias="ratingDelta")
    updates: list[RatingUpdateOut]
    promotion: TierPromotionOut | None = None

    @classmethod
    def from_submission(cls, submission: MatchResultSubmission) -> "MatchResultResponse":
        promotion = submission.promotion
        return cls(
            session_id=submission.session_id,
            winner_id=submission.winner_id,
            rating_delta=submission.rating_delta,
            updates=[
                RatingUpdateOut(
                    user_id=item.user_id,
                    rating=item.rating,
                    wins=item.wins,
                    losses=item.losses,
                    delta=item.delta,
                )
                for item in submission.updates
            ],
            promotion=(
                TierPromotionOut(
                    user_id=promotion.user_id,
                    from_tier=promotion.from_tier.value,
                    to_tier=promotion.to_tier.value,
                )
                if promotion is not None
                else None
            ),
        )


class LeaderboardEntryOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rank: int
    user_id: str = Field(alias="userId")
    rating: int
    wins: int
    losses: int
    tier: str | None = None


class LeaderboardResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: LeaderboardTypeLiteral
    since: datetime | None = None
    entries: list[LeaderboardEntryOut]

    @classmethod
    def from_leaderboard(cls, board: Leaderboard) -> "LeaderboardResponse":
        return cls(
            type=board.board_type.value,
            since=board.since,
            entries=[
                LeaderboardEntryOut(
                    rank=entry.rank,
                    user_id=entry.user_id,
                    rating=entry.rating,
                    wins=entry.wins,
                    losses=entry.losses,
                    tier=entry.tier.value if entry.tier is not None else None,
                )
                for entry in board.entries
            ],
        )


class OpponentOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    # No profile store yet; kept so clients can render a name once one exists.
    display_name: str | None = Field(default=None, alias="displayName")


class MatchHistoryEntryOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    session_title: str = Field(alias="sessionTitle")
    played_at: datetime = Field(alias="playedAt")
    result: Literal["win", "loss"]
    winner_id: str = Field(alias="winnerId")
    rating_delta: int = Field(alias="ratingDelta")
    opponents: list[OpponentOut]


class MatchHistoryResponse(BaseModel):
    timezone: str
    entries: list[MatchHistoryEntryOut]

    @classmethod
    def from_history(cls, history: MatchHistory) -> "MatchHistoryResponse":
        return cls(
            timezone=history.timezone,
            entries=[
                MatchHistoryEntryOut(
                    session_id=entry.session_id,
                    session_title=entry.session_title,
                    played_at=entry.played_at,
                    result=entry.result.value,
                    winner_id=entry.winner_id,
                    rating_delta=entry.rating_delta,
                    opponents=[OpponentOut(user_id=user_id) for user_id in entry.opponent_ids],
                )
                for entry in history.entries
            ],
        )


class LifecycleSweepResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    auto_completed_count: int = Field(alias="autoCompletedCount")
    archived_count: int = Field(alias="archivedCount")
    checked_at: datetime = Field(alias="checkedAt")
    archive_mode: str = Field(alias="archiveMode")
