from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from app.core.config import settings
from app.services.sessions.entities import PlayedMatch
from app.services.sessions.store import SessionStore

DEFAULT_HISTORY_LIMIT = 20
MAX_HISTORY_LIMIT = 50
FALLBACK_SESSION_TITLE = "Ranked session"


class MatchOutcome(str, Enum):
    WIN = "win"
    LOSS = "loss"


@dataclass(frozen=True, slots=True)
class MatchHistoryEntry:
    session_id: str
    session_title: str
    played_at: datetime
    result: MatchOutcome
    winner_id: str
    rating_delta: int
    opponent_ids: list[str]


@dataclass(frozen=True, slots=True)
class MatchHistory:
    timezone: str
    entries: list[MatchHistoryEntry]


def history_entry(match: PlayedMatch, user_id: str) -> MatchHistoryEntry:
    won = match.winner_id == user_id
    return MatchHistoryEntry(
        session_id=match.session_id,
        session_title=match.session_title or FALLBACK_SESSION_TITLE,
        played_at=match.played_at,
        result=MatchOutcome.WIN if won else MatchOutcome.LOSS,
        winner_id=match.winner_id,
        rating_delta=match.rating_delta if won else -abs(match.rating_delta),
        opponent_ids=[member for member in match.participant_ids if member != user_id],
    )


class MatchHistoryService:
    """Read side of ranked play: a user's recent results from their own point of view."""

    def __init__(self, store: SessionStore, *, timezone_name: str | None = None) -> None:
        self.store = store
        self.timezone_name = timezone_name or settings.leaderboard_timezone

    def get_match_history(self, *, user_id: str, limit: int | None = None) -> MatchHistory:
        size = DEFAULT_HISTORY_LIMIT if limit is None else max(1, min(int(limit), MAX_HISTORY_LIMIT))
        matches = self.store.match_history(user_id=user_id, limit=size)
        return MatchHistory(
            timezone=self.timezone_name,
            entries=[history_entry(match, user_id) for match in matches],
        )
