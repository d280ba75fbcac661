from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query

from app.api.deps import LeaderboardSvc
from app.schemas.sessions import LeaderboardResponse

router = APIRouter(prefix="/api/leaderboard", tags=["leaderboard"])


@router.get("", response_model=LeaderboardResponse)
def get_leaderboard(
    leaderboard: LeaderboardSvc,
    board_type: Annotated[str, Query(alias="type", max_length=16)] = "weekly",
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
    include_tier: Annotated[bool, Query(alias="includeTier")] = False,
) -> LeaderboardResponse:
    board = leaderboard.get_leaderboard(board_type=board_type, limit=limit, include_tier=include_tier)
    return LeaderboardResponse.from_leaderboard(board)
