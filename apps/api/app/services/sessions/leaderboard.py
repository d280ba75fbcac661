from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.core.errors import ValidationError
from app.services.sessions.entities import Clock, RankingSnapshot, utc_now
from app.services.sessions.ranking import SkillTier, get_tier_from_rating
from app.services.sessions.store import SessionStore

MAX_LEADERBOARD_LIMIT = 100


class LeaderboardType(str, Enum):
    WEEKLY = "weekly"
    ALL_TIME = "all_time"


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    rating: int
    wins: int
    losses: int
    tier: SkillTier | None = None


@dataclass(frozen=True, slots=True)
class Leaderboard:
    board_type: LeaderboardType
    entries: list[LeaderboardEntry]
    since: datetime | None


def week_start(now: datetime, timezone_name: str) -> datetime:
    local = now.astimezone(ZoneInfo(timezone_name))
    monday = (local - timedelta(days=local.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    return monday.astimezone(UTC)


def rank_entries(rows: list[RankingSnapshot], *, include_tier: bool = False) -> list[LeaderboardEntry]:
    ordered = sorted(rows, key=lambda row: (-row.rating, row.user_id))
    return [
        LeaderboardEntry(
            rank=index + 1,
            user_id=row.user_id,
            rating=row.rating,
            wins=row.wins,
            losses=row.losses,
            tier=get_tier_from_rating(row.rating) if include_tier else None,
        )
        for index, row in enumerate(ordered)
    ]


class LeaderboardService:
    def __init__(self, store: SessionStore, *, clock: Clock = utc_now, timezone_name: str | None = None) -> None:
        self.store = store
        self.clock = clock
        self.timezone_name = timezone_name or settings.leaderboard_timezone

    def get_leaderboard(
        self,
        *,
        board_type: LeaderboardType | str = LeaderboardType.WEEKLY,
        limit: int | None = None,
        include_tier: bool = False,
    ) -> Leaderboard:
        try:
            kind = LeaderboardType(board_type)
        except ValueError as exc:
            raise ValidationError("Unknown leaderboard type", code="INVALID_LEADERBOARD_TYPE") from exc
        size = max(1, min(int(limit or settings.leaderboard_limit), MAX_LEADERBOARD_LIMIT))

        since = week_start(self.clock(), self.timezone_name) if kind == LeaderboardType.WEEKLY else None
        rows = self.store.top_rankings(limit=size, since=since)
        return Leaderboard(board_type=kind, entries=rank_entries(rows, include_tier=include_tier), since=since)
