from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import SweeperSvc, require_internal_caller
from app.schemas.sessions import LifecycleSweepResponse

router = APIRouter(
    prefix="/api/internal",
    tags=["internal"],
    dependencies=[Depends(require_internal_caller)],
)


@router.post("/sessions/lifecycle-sweep", response_model=LifecycleSweepResponse)
def run_lifecycle_sweep(sweeper: SweeperSvc) -> LifecycleSweepResponse:
    result = sweeper.run()
    return LifecycleSweepResponse(
        auto_completed_count=result.auto_completed_count,
        archived_count=result.archived_count,
        checked_at=result.checked_at,
        archive_mode=result.archive_mode,
    )
