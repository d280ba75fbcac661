from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query

from app.api.deps import CurrentUserId, MatchHistorySvc
from app.schemas.sessions import MatchHistoryResponse

router = APIRouter(prefix="/api/me", tags=["me"])


@router.get("/match-history", response_model=MatchHistoryResponse)
def get_match_history(
    user_id: CurrentUserId,
    history: MatchHistorySvc,
    limit: Annotated[int | None, Query(ge=1, le=50)] = None,
) -> MatchHistoryResponse:
    return MatchHistoryResponse.from_history(history.get_match_history(user_id=user_id, limit=limit))
