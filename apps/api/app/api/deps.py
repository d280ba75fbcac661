from __future__ import annotations

import hmac
from collections.abc import Iterator
from typing import Annotated

from fastapi import BackgroundTasks, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import SessionLocal
from app.services.sessions import (
    GameLinkResolver,
    InviteNotifier,
    LeaderboardService,
    LoggingInviteNotifier,
    MatchHistoryService,
    RankingService,
    SessionLifecycleManager,
    SessionLifecycleSweeper,
    SessionStore,
)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


DBSession = Annotated[Session, Depends(get_db)]


def get_current_user_id(
    request: Request,
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id or len(user_id) > 64:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    request.state.user_id = user_id
    return user_id


CurrentUserId = Annotated[str, Depends(get_current_user_id)]


def require_internal_caller(
    x_internal_token: Annotated[str | None, Header(alias="X-Internal-Token")] = None,
) -> None:
    expected = settings.internal_api_token
    if expected is None:
        if settings.app_env == "production":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Internal endpoint disabled")
        return
    if not x_internal_token or not hmac.compare_digest(x_internal_token, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid internal token")


def get_link_resolver(request: Request) -> GameLinkResolver:
    resolver = getattr(request.app.state, "link_resolver", None)
    if resolver is None:
        resolver = GameLinkResolver()
        request.app.state.link_resolver = resolver
    return resolver


def get_invite_notifier() -> InviteNotifier:
    return LoggingInviteNotifier()


def get_session_store(db: DBSession) -> SessionStore:
    return SessionStore(db)


Store = Annotated[SessionStore, Depends(get_session_store)]


def get_lifecycle_manager(
    store: Store,
    resolver: Annotated[GameLinkResolver, Depends(get_link_resolver)],
    notifier: Annotated[InviteNotifier, Depends(get_invite_notifier)],
    background_tasks: BackgroundTasks,
) -> SessionLifecycleManager:
    # Invite pushes run after the response is sent.
    return SessionLifecycleManager(store, resolver, notifier, schedule=background_tasks.add_task)


def get_ranking_service(store: Store) -> RankingService:
    return RankingService(store)


def get_leaderboard_service(store: Store) -> LeaderboardService:
    return LeaderboardService(store)


def get_match_history_service(store: Store) -> MatchHistoryService:
    return MatchHistoryService(store)


def get_lifecycle_sweeper(store: Store) -> SessionLifecycleSweeper:
    return SessionLifecycleSweeper(store)


LifecycleSvc = Annotated[SessionLifecycleManager, Depends(get_lifecycle_manager)]
RankingSvc = Annotated[RankingService, Depends(get_ranking_service)]
LeaderboardSvc = Annotated[LeaderboardService, Depends(get_leaderboard_service)]
SweeperSvc = Annotated[SessionLifecycleSweeper, Depends(get_lifecycle_sweeper)]
MatchHistorySvc = Annotated[MatchHistoryService, Depends(get_match_history_service)]
