"""Time-based session lifecycle transitions.

Each run moves stale ``active`` sessions to ``completed`` and then archives
``completed`` sessions past the retention window. Every transition is a
conditional update filtered on the current status, so concurrent runs across
processes and normal request traffic cannot double-transition a row.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.core.config import settings
from app.services.sessions.entities import Clock, utc_now
from app.services.sessions.store import SessionStore

logger = logging.getLogger("squadlink.api.sweeper")

ARCHIVE_MODE_TIMESTAMP = "archived_at"
ARCHIVE_MODE_CANCEL = "cancelled_fallback"


def _positive_int(value: object, default: int) -> int:
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


@dataclass(frozen=True, slots=True)
class SweepOptions:
    auto_complete_after_hours: int
    completed_retention_hours: int
    batch_size: int
    max_batches: int

    @classmethod
    def from_settings(cls) -> "SweepOptions":
        return cls.build(
            auto_complete_after_hours=settings.session_auto_complete_after_hours,
            completed_retention_hours=settings.session_completed_retention_hours,
            batch_size=settings.session_lifecycle_batch_size,
            max_batches=settings.session_lifecycle_max_batches,
        )

    @classmethod
    def build(
        cls,
        *,
        auto_complete_after_hours: object = 2,
        completed_retention_hours: object = 2,
        batch_size: object = 200,
        max_batches: object = 10,
    ) -> "SweepOptions":
        return cls(
            auto_complete_after_hours=_positive_int(auto_complete_after_hours, 2),
            completed_retention_hours=_positive_int(completed_retention_hours, 2),
            batch_size=_positive_int(batch_size, 200),
            max_batches=_positive_int(max_batches, 10),
        )


@dataclass(frozen=True, slots=True)
class SweepResult:
    auto_completed_count: int
    archived_count: int
    checked_at: datetime
    archive_mode: str


class SessionLifecycleSweeper:
    def __init__(
        self,
        store: SessionStore,
        *,
        clock: Clock = utc_now,
        options: SweepOptions | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.options = options or SweepOptions.from_settings()

    def run(self, now: datetime | None = None) -> SweepResult:
        checked_at = now or self.clock()
        completed = self._drain(
            lambda limit: self.store.complete_stale_active(
                cutoff=checked_at - timedelta(hours=self.options.auto_complete_after_hours),
                now=checked_at,
                limit=limit,
            ),
        )
        archived = self._drain(
            lambda limit: self.store.archive_stale_completed(
                cutoff=checked_at - timedelta(hours=self.options.completed_retention_hours),
                now=checked_at,
                limit=limit,
            ),
        )
        archive_mode = ARCHIVE_MODE_TIMESTAMP if self.store.archival_capability.available else ARCHIVE_MODE_CANCEL

        result = SweepResult(
            auto_completed_count=completed,
            archived_count=archived,
            checked_at=checked_at,
            archive_mode=archive_mode,
        )
        logger.info(
            "sessions.lifecycle.swept",
            extra={
                "auto_completed_count": completed,
                "archived_count": archived,
                "archive_mode": archive_mode,
            },
        )
        return result

    def _drain(self, batch: Callable[[int], tuple[int, int]]) -> int:
        total = 0
        for _ in range(self.options.max_batches):
            found, transitioned = batch(self.options.batch_size)
            total += transitioned
            if found < self.options.batch_size:
                break
        return total
