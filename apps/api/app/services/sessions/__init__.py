from app.services.sessions.history import MatchHistory, MatchHistoryEntry, MatchHistoryService, MatchOutcome
from app.services.sessions.leaderboard import Leaderboard, LeaderboardEntry, LeaderboardService, LeaderboardType
from app.services.sessions.lifecycle import SessionLifecycleManager, generate_invite_code, invite_link_for
from app.services.sessions.links import GameLinkResolver, LinkFormat, NormalizedGameLink
from app.services.sessions.notifier import InviteNotifier, LoggingInviteNotifier
from app.services.sessions.ranking import (
    MatchResultSubmission,
    RankingService,
    SkillTier,
    SubmissionCooldown,
    TierPromotion,
    get_tier_from_rating,
    submission_cooldown,
)
from app.services.sessions.store import SessionStore
from app.services.sessions.sweeper import SessionLifecycleSweeper, SweepOptions, SweepResult

__all__ = [
    "GameLinkResolver",
    "InviteNotifier",
    "Leaderboard",
    "LeaderboardEntry",
    "LeaderboardService",
    "LeaderboardType",
    "LinkFormat",
    "LoggingInviteNotifier",
    "MatchHistory",
    "MatchHistoryEntry",
    "MatchHistoryService",
    "MatchOutcome",
    "MatchResultSubmission",
    "NormalizedGameLink",
    "RankingService",
    "SessionLifecycleManager",
    "SessionLifecycleSweeper",
    "SessionStore",
    "SkillTier",
    "SubmissionCooldown",
    "SweepOptions",
    "SweepResult",
    "TierPromotion",
    "generate_invite_code",
    "get_tier_from_rating",
    "invite_link_for",
    "submission_cooldown",
]
