from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, Response, status

from app.api.deps import CurrentUserId, LifecycleSvc, RankingSvc
from app.models import HandoffState, SessionStatus, SessionVisibility
from app.schemas.sessions import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    HandoffActionLiteral,
    InviteSummaryResponse,
    MatchResultRequest,
    MatchResultResponse,
    SessionCreateRequest,
    SessionCreateResponse,
    SessionDetailResponse,
    SessionJoinRequest,
    SessionListResponse,
    SessionStatusLiteral,
    VisibilityLiteral,
)

router = APIRouter(prefix="/api", tags=["sessions"])

_HANDOFF_ACTIONS: dict[str, HandoffState] = {
    "opened": HandoffState.OPENED_ROBLOX,
    "confirmed": HandoffState.CONFIRMED_IN_GAME,
    "stuck": HandoffState.STUCK,
}


@router.post("/sessions", response_model=SessionCreateResponse, status_code=status.HTTP_201_CREATED)
def create_session(
    payload: SessionCreateRequest,
    user_id: CurrentUserId,
    lifecycle: LifecycleSvc,
) -> SessionCreateResponse:
    created = lifecycle.create_session(
        host_id=user_id,
        game_url=payload.game_url,
        title=payload.title,
        description=payload.description,
        visibility=SessionVisibility(payload.visibility),
        max_participants=payload.max_participants,
        scheduled_start=payload.scheduled_start,
        is_ranked=payload.is_ranked,
        invited_user_ids=payload.invite_friend_ids,
        host_name=payload.host_name,
    )
    return SessionCreateResponse.from_created(created)


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(
    lifecycle: LifecycleSvc,
    status_filter: Annotated[SessionStatusLiteral, Query(alias="status")] = "active",
    visibility: VisibilityLiteral | None = None,
    game_ref: Annotated[int | None, Query(alias="gameRef", gt=0)] = None,
    host_id: Annotated[str | None, Query(alias="hostId", max_length=64)] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> SessionListResponse:
    page = lifecycle.list_sessions(
        status=SessionStatus(status_filter),
        visibility=SessionVisibility(visibility) if visibility else None,
        game_ref=game_ref,
        host_id=host_id,
        limit=limit,
        offset=offset,
    )
    return SessionListResponse.from_page(page)


@router.post("/sessions/bulk-delete", response_model=BulkDeleteResponse)
def bulk_delete_sessions(
    payload: BulkDeleteRequest,
    user_id: CurrentUserId,
    lifecycle: LifecycleSvc,
) -> BulkDeleteResponse:
    deleted = lifecycle.bulk_delete_sessions(session_ids=payload.session_ids, requester_id=user_id)
    return BulkDeleteResponse(deleted_count=deleted)


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
def get_session(session_id: str, lifecycle: LifecycleSvc) -> SessionDetailResponse:
    return SessionDetailResponse.from_detail(lifecycle.get_session_by_id(session_id))


@router.post("/sessions/{session_id}/join", response_model=SessionDetailResponse)
def join_session(
    session_id: str,
    user_id: CurrentUserId,
    lifecycle: LifecycleSvc,
    payload: SessionJoinRequest | None = None,
) -> SessionDetailResponse:
    detail = lifecycle.join_session(
        session_id=session_id,
        user_id=user_id,
        invite_code=payload.invite_code if payload is not None else None,
    )
    return SessionDetailResponse.from_detail(detail)


@router.post("/sessions/{session_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
def leave_session(session_id: str, user_id: CurrentUserId, lifecycle: LifecycleSvc) -> Response:
    lifecycle.leave_session(session_id=session_id, user_id=user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sessions/{session_id}/handoff/{action}", response_model=SessionDetailResponse)
def update_handoff_state(
    session_id: str,
    action: HandoffActionLiteral,
    user_id: CurrentUserId,
    lifecycle: LifecycleSvc,
) -> SessionDetailResponse:
    detail = lifecycle.update_handoff_state(
        session_id=session_id,
        user_id=user_id,
        next_state=_HANDOFF_ACTIONS[action],
    )
    return SessionDetailResponse.from_detail(detail)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(session_id: str, user_id: CurrentUserId, lifecycle: LifecycleSvc) -> Response:
    lifecycle.delete_session(session_id=session_id, requester_id=user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sessions/{session_id}/result", response_model=MatchResultResponse)
def submit_match_result(
    session_id: str,
    payload: MatchResultRequest,
    user_id: CurrentUserId,
    ranking: RankingSvc,
) -> MatchResultResponse:
    submission = ranking.submit_match_result(
        session_id=session_id,
        winner_id=payload.winner_id,
        submitted_by=user_id,
    )
    return MatchResultResponse.from_submission(submission)


@router.get("/invites/{code}", response_model=InviteSummaryResponse)
def get_invite_summary(code: str, lifecycle: LifecycleSvc) -> InviteSummaryResponse:
    return InviteSummaryResponse.from_summary(lifecycle.get_invite_summary(code))
