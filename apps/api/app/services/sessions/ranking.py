"""Ranked match results.

``RankingService.submit_match_result`` runs a fixed sequence of gates and only
then performs the single atomic store write. The in-memory
``SubmissionCooldown`` suppresses double taps within one process; it is not
shared across instances and is lost on restart, so duplicate protection
ultimately rests on the unique ``match_results.session_id`` constraint.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from itertools import combinations

from app.core.config import settings
from app.core.errors import ConflictError, ForbiddenError, NotFoundError, RateLimitError, ValidationError
from app.models import SessionStatus
from app.services.sessions.entities import Clock, RatingUpdate, utc_now
from app.services.sessions.store import SessionStore

logger = logging.getLogger("squadlink.api.ranking")


class SkillTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"
    MASTER = "master"


TIER_THRESHOLDS: tuple[tuple[int, SkillTier], ...] = (
    (1800, SkillTier.MASTER),
    (1600, SkillTier.DIAMOND),
    (1400, SkillTier.PLATINUM),
    (1200, SkillTier.GOLD),
    (1000, SkillTier.SILVER),
)

TIER_ORDER: tuple[SkillTier, ...] = tuple(SkillTier)


def get_tier_from_rating(rating: int) -> SkillTier:
    for threshold, tier in TIER_THRESHOLDS:
        if rating >= threshold:
            return tier
    return SkillTier.BRONZE


@dataclass(frozen=True, slots=True)
class TierPromotion:
    user_id: str
    from_tier: SkillTier
    to_tier: SkillTier


@dataclass(frozen=True, slots=True)
class MatchResultSubmission:
    session_id: str
    winner_id: str
    rating_delta: int
    updates: list[RatingUpdate]
    promotion: TierPromotion | None = None


class SubmissionCooldown:
    """Per (user, session) last-submission timestamps, bounded in size."""

    def __init__(self, *, window_seconds: int, max_entries: int) -> None:
        self.window = timedelta(seconds=max(0, int(window_seconds)))
        self.max_entries = max(1, int(max_entries))
        self._entries: dict[tuple[str, str], datetime] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def hit(self, user_id: str, session_id: str, now: datetime) -> bool:
        """Record an attempt; returns ``False`` when the pair is still cooling down."""
        key = (user_id, session_id)
        with self._lock:
            last = self._entries.get(key)
            if last is not None and now - last < self.window:
                return False
            self._entries[key] = now
            if len(self._entries) > self.max_entries:
                self._evict(now)
            return True

    def _evict(self, now: datetime) -> None:
        expired = [key for key, seen in self._entries.items() if now - seen >= self.window]
        for key in expired:
            del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


submission_cooldown = SubmissionCooldown(
    window_seconds=settings.ranked_submit_cooldown_seconds,
    max_entries=settings.ranked_cooldown_max_entries,
)


class RankingService:
    def __init__(
        self,
        store: SessionStore,
        *,
        clock: Clock = utc_now,
        cooldown: SubmissionCooldown | None = None,
        rating_delta: int | None = None,
        min_session_seconds: int | None = None,
        opponent_window_hours: int | None = None,
        opponent_max_matches: int | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.cooldown = cooldown if cooldown is not None else submission_cooldown
        self.rating_delta = rating_delta if rating_delta is not None else settings.ranked_rating_delta
        self.min_session_age = timedelta(
            seconds=min_session_seconds if min_session_seconds is not None else settings.ranked_min_session_seconds,
        )
        self.opponent_window = timedelta(
            hours=opponent_window_hours if opponent_window_hours is not None else settings.ranked_opponent_window_hours,
        )
        self.opponent_max_matches = (
            opponent_max_matches if opponent_max_matches is not None else settings.ranked_opponent_max_matches
        )

    def submit_match_result(self, *, session_id: str, winner_id: str, submitted_by: str) -> MatchResultSubmission:
        now = self.clock()

        if not self.cooldown.hit(submitted_by, session_id, now):
            raise RateLimitError("Please wait before submitting again", code="SUBMIT_COOLDOWN")

        session = self.store.get_session(session_id)
        if session is None:
            raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")
        if not session.is_ranked:
            raise ValidationError("This session is not ranked", code="RANKED_REQUIRED")
        if session.host_id != submitted_by:
            raise ForbiddenError("Only the host can submit the result", code="NOT_HOST")
        if session.status not in {SessionStatus.ACTIVE, SessionStatus.COMPLETED}:
            raise ConflictError("Session is not active", code="SESSION_NOT_ACTIVE")

        if now - session.created_at < self.min_session_age:
            raise ValidationError("Match submitted too early", code="RANKED_TOO_EARLY")

        participant_ids = self.store.joined_user_ids(session_id)
        if winner_id not in participant_ids:
            raise ValidationError("Winner is not a participant", code="INVALID_WINNER")
        if len(participant_ids) < 2:
            raise ValidationError("At least two participants are required", code="INSUFFICIENT_PARTICIPANTS")

        since = now - self.opponent_window
        for user_a, user_b in combinations(participant_ids, 2):
            count = self.store.count_ranked_matches_between(user_a=user_a, user_b=user_b, since=since)
            if count >= self.opponent_max_matches:
                raise RateLimitError("Too many ranked matches against the same opponent", code="OPPONENT_LIMIT")

        before = {ranking.user_id: ranking.rating for ranking in self.store.get_rankings([winner_id])}
        updates = self.store.record_match_result(
            session_id=session_id,
            winner_id=winner_id,
            submitted_by=submitted_by,
            participant_ids=participant_ids,
            rating_delta=self.rating_delta,
            occurred_at=now,
        )
        self.store.complete_session(session_id=session_id, now=now)

        promotion = self._promotion(winner_id, before, updates)
        logger.info(
            "ranking.match_result.submitted",
            extra={
                "session_id": session_id,
                "winner_id": winner_id,
                "submitted_by": submitted_by,
                "rating_delta": self.rating_delta,
                "participant_count": len(participant_ids),
            },
        )
        if promotion is not None:
            logger.info(
                "ranking.tier.promoted",
                extra={
                    "user_id": promotion.user_id,
                    "from_tier": promotion.from_tier.value,
                    "to_tier": promotion.to_tier.value,
                },
            )
        return MatchResultSubmission(
            session_id=session_id,
            winner_id=winner_id,
            rating_delta=self.rating_delta,
            updates=updates,
            promotion=promotion,
        )

    def _promotion(
        self,
        winner_id: str,
        before: dict[str, int],
        updates: list[RatingUpdate],
    ) -> TierPromotion | None:
        after = next((item for item in updates if item.user_id == winner_id), None)
        if after is None:
            return None
        previous_rating = before.get(winner_id, after.rating - after.delta)
        from_tier = get_tier_from_rating(previous_rating)
        to_tier = get_tier_from_rating(after.rating)
        if TIER_ORDER.index(to_tier) <= TIER_ORDER.index(from_tier):
            return None
        return TierPromotion(user_id=winner_id, from_tier=from_tier, to_tier=to_tier)
