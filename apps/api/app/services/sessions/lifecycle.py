from __future__ import annotations

import logging
import secrets
from collections.abc import Iterable, Sequence
from datetime import datetime
from uuid import uuid4

from app.core.config import settings
from app.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    SessionFullError,
    StoreError,
    ValidationError,
)
from app.models import HandoffState, ParticipantRole, ParticipantState, SessionStatus, SessionVisibility
from app.services.sessions.entities import (
    Clock,
    CreatedSession,
    InviteSummary,
    SessionDetail,
    SessionListItem,
    SessionPage,
    SessionSnapshot,
    as_utc,
    utc_now,
)
from app.services.sessions.links import GameLinkResolver
from app.services.sessions.notifier import (
    InviteNotifier,
    LoggingInviteNotifier,
    TaskScheduler,
    deliver_invites,
    run_detached,
)
from app.services.sessions.store import SessionStore

logger = logging.getLogger("squadlink.api.sessions")

INVITE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVITE_CODE_LENGTH = 9
INVITE_CODE_ATTEMPTS = 5
MIN_PARTICIPANTS = 2
MAX_PARTICIPANTS = 50
MAX_TITLE_LENGTH = 120
MAX_LIST_LIMIT = 100
MAX_BULK_DELETE = 100

HANDOFF_TARGETS = frozenset(
    {HandoffState.OPENED_ROBLOX, HandoffState.CONFIRMED_IN_GAME, HandoffState.STUCK},
)


def generate_invite_code() -> str:
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def invite_link_for(code: str) -> str:
    return f"{settings.invite_link_base}{code}"


def _is_gone(session: SessionSnapshot) -> bool:
    return session.status == SessionStatus.CANCELLED or session.is_archived


class SessionLifecycleManager:
    """Creation, joining, handoff tracking and soft deletion of play sessions."""

    def __init__(
        self,
        store: SessionStore,
        resolver: GameLinkResolver,
        notifier: InviteNotifier | None = None,
        *,
        clock: Clock = utc_now,
        schedule: TaskScheduler = run_detached,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.notifier = notifier or LoggingInviteNotifier()
        self.clock = clock
        self.schedule = schedule

    # creation

    def create_session(
        self,
        *,
        host_id: str,
        game_url: str,
        title: str,
        visibility: SessionVisibility = SessionVisibility.PUBLIC,
        max_participants: int = 10,
        scheduled_start: datetime | None = None,
        is_ranked: bool = False,
        invited_user_ids: Sequence[str] | None = None,
        description: str | None = None,
        host_name: str | None = None,
    ) -> CreatedSession:
        link = self.resolver.normalize(game_url)

        visibility = SessionVisibility(visibility)
        if is_ranked and visibility != SessionVisibility.PUBLIC:
            raise ValidationError("Ranked sessions must be public", code="RANKED_REQUIRES_PUBLIC")
        clean_title = (title or "").strip()
        if not clean_title or len(clean_title) > MAX_TITLE_LENGTH:
            raise ValidationError("Title must be between 1 and 120 characters", code="INVALID_TITLE")
        if not MIN_PARTICIPANTS <= int(max_participants) <= MAX_PARTICIPANTS:
            raise ValidationError(
                "maxParticipants must be between 2 and 50",
                code="INVALID_MAX_PARTICIPANTS",
            )

        now = self.clock()
        start = as_utc(scheduled_start)
        status = SessionStatus.ACTIVE
        if start is not None and start > now and not is_ranked:
            status = SessionStatus.SCHEDULED

        session_id = str(uuid4())
        code = self._unused_invite_code()
        session = self.store.create_session(
            session_values={
                "id": session_id,
                "host_id": host_id,
                "game_ref": link.game_ref,
                "original_input_url": link.original_input_url,
                "normalized_from": link.matched_format.value,
                "title": clean_title,
                "description": (description or "").strip() or None,
                "visibility": visibility.value,
                "status": status.value,
                "is_ranked": bool(is_ranked),
                "max_participants": int(max_participants),
                "scheduled_start": start,
                "created_at": now,
                "updated_at": now,
            },
            invite_values={
                "id": str(uuid4()),
                "session_id": session_id,
                "code": code,
                "created_by": host_id,
                "created_at": now,
            },
        )
        logger.info(
            "session.created",
            extra={
                "session_id": session.id,
                "host_id": host_id,
                "game_ref": session.game_ref,
                "matched_format": link.matched_format.value,
            },
        )

        notified = self._notify_invited(
            invited_user_ids or [],
            host_id=host_id,
            session=session,
            host_name=host_name or host_id,
        )
        return CreatedSession(
            session=session,
            invite_code=code,
            invite_link=invite_link_for(code),
            notified_user_ids=notified,
        )

    def _unused_invite_code(self) -> str:
        for _ in range(INVITE_CODE_ATTEMPTS):
            code = generate_invite_code()
            if not self.store.invite_code_exists(code):
                return code
        raise StoreError("Could not allocate an invite code", code="INVITE_CODE_EXHAUSTED")

    def _notify_invited(
        self,
        user_ids: Iterable[str],
        *,
        host_id: str,
        session: SessionSnapshot,
        host_name: str,
    ) -> list[str]:
        """Hand delivery to the scheduler; returns the users a notification was dispatched to."""
        recipients = [user_id for user_id in dict.fromkeys(user_ids) if user_id and user_id != host_id]
        if not recipients:
            return []
        try:
            self.schedule(deliver_invites, self.notifier, recipients, session.id, session.title, host_name)
        except Exception as exc:
            logger.warning(
                "session.invite.dispatch_failed",
                extra={"session_id": session.id, "error": type(exc).__name__},
            )
            return []
        return recipients

    # reads

    def list_sessions(
        self,
        *,
        status: SessionStatus = SessionStatus.ACTIVE,
        visibility: SessionVisibility | None = None,
        game_ref: int | None = None,
        host_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> SessionPage:
        limit = max(1, min(int(limit), MAX_LIST_LIMIT))
        offset = max(0, int(offset))
        rows, total = self.store.list_sessions(
            status=SessionStatus(status),
            visibility=SessionVisibility(visibility).value if visibility is not None else None,
            game_ref=game_ref,
            host_id=host_id,
            limit=limit,
            offset=offset,
        )
        return SessionPage(
            sessions=[SessionListItem(session=session, joined_count=count) for session, count in rows],
            total=total,
            limit=limit,
            offset=offset,
        )

    def get_session_by_id(self, session_id: str) -> SessionDetail:
        session = self.store.get_session(session_id)
        if session is None:
            raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")
        return self._detail(session)

    def _detail(self, session: SessionSnapshot) -> SessionDetail:
        code = self.store.first_invite_code(session.id)
        return SessionDetail(
            session=session,
            participants=self.store.list_participants(session.id),
            invite_code=code,
            invite_link=invite_link_for(code) if code else None,
        )

    def get_invite_summary(self, code: str) -> InviteSummary:
        normalized = (code or "").strip().upper()
        invite = self.store.get_invite(normalized) if normalized else None
        if invite is None:
            raise NotFoundError("Invite not found", code="INVITE_NOT_FOUND")
        session = self.store.get_session(invite.session_id)
        if session is None or _is_gone(session):
            raise NotFoundError("Invite not found", code="INVITE_NOT_FOUND")
        return InviteSummary(
            code=invite.code,
            session=session,
            joined_count=self.store.count_joined(session.id),
        )

    # membership

    def join_session(self, *, session_id: str, user_id: str, invite_code: str | None = None) -> SessionDetail:
        session = self.store.get_session(session_id)
        if session is None or _is_gone(session):
            raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")
        if session.status == SessionStatus.COMPLETED:
            raise ConflictError("Session has already finished", code="SESSION_NOT_ACTIVE")

        self._check_invite(session, invite_code)

        # The unique (session_id, user_id) insert below stays the authoritative guard.
        if self.store.get_participant(session_id=session.id, user_id=user_id) is not None:
            raise ConflictError("You have already joined this session", code="ALREADY_JOINED")
        if self.store.count_joined(session.id) >= session.max_participants:
            raise SessionFullError("Session is full")

        self.store.add_member(session_id=session.id, user_id=user_id, joined_at=self.clock())
        logger.info("session.joined", extra={"session_id": session.id, "user_id": user_id})
        return self._detail(session)

    def _check_invite(self, session: SessionSnapshot, invite_code: str | None) -> None:
        code = (invite_code or "").strip().upper()
        if not code:
            if session.visibility == SessionVisibility.INVITE_ONLY:
                raise ForbiddenError("An invite code is required", code="INVITE_REQUIRED")
            return
        invite = self.store.get_invite(code)
        if invite is None or invite.session_id != session.id:
            raise ForbiddenError("Invite code is not valid for this session", code="INVALID_INVITE")
        if invite.is_expired(self.clock()):
            raise ForbiddenError("Invite code has expired", code="INVITE_EXPIRED")

    def update_handoff_state(self, *, session_id: str, user_id: str, next_state: HandoffState | str) -> SessionDetail:
        try:
            target = HandoffState(next_state)
        except ValueError as exc:
            raise ValidationError("Unknown handoff state", code="INVALID_HANDOFF_STATE") from exc
        if target not in HANDOFF_TARGETS:
            raise ValidationError("Unknown handoff state", code="INVALID_HANDOFF_STATE")

        session = self.store.get_session(session_id)
        if session is None:
            raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")
        if not self.store.set_handoff_state(session_id=session_id, user_id=user_id, handoff_state=target):
            raise NotFoundError("Participant not found", code="PARTICIPANT_NOT_FOUND")
        logger.info(
            "session.handoff.updated",
            extra={"session_id": session_id, "user_id": user_id, "result": target.value},
        )
        return self._detail(session)

    def leave_session(self, *, session_id: str, user_id: str) -> None:
        participant = self.store.get_participant(session_id=session_id, user_id=user_id)
        if participant is None or participant.state != ParticipantState.JOINED:
            raise NotFoundError("Participant not found", code="PARTICIPANT_NOT_FOUND")
        if participant.role == ParticipantRole.HOST:
            raise ValidationError("The host cannot leave; delete the session instead", code="HOST_CANNOT_LEAVE")
        if not self.store.mark_left(session_id=session_id, user_id=user_id):
            raise NotFoundError("Participant not found", code="PARTICIPANT_NOT_FOUND")
        logger.info("session.left", extra={"session_id": session_id, "user_id": user_id})

    # deletion

    def delete_session(self, *, session_id: str, requester_id: str) -> None:
        session = self.store.get_session(session_id)
        if session is None:
            raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")
        if session.host_id != requester_id:
            raise ForbiddenError("Only the host can delete this session", code="NOT_HOST")
        if session.status == SessionStatus.CANCELLED:
            raise ConflictError("Session is already deleted", code="SESSION_ALREADY_DELETED")
        if not self.store.cancel_session(session_id=session_id, host_id=requester_id, now=self.clock()):
            raise ConflictError("Session is already deleted", code="SESSION_ALREADY_DELETED")
        logger.info("session.deleted", extra={"session_id": session_id, "host_id": requester_id})

    def bulk_delete_sessions(self, *, session_ids: Sequence[str], requester_id: str) -> int:
        unique_ids = [item for item in dict.fromkeys(session_ids) if item]
        if not unique_ids:
            raise ValidationError("At least one session id is required", code="INVALID_SESSION_IDS")
        if len(unique_ids) > MAX_BULK_DELETE:
            raise ValidationError("Too many session ids", code="INVALID_SESSION_IDS")

        deleted = self.store.cancel_sessions(session_ids=unique_ids, host_id=requester_id, now=self.clock())
        logger.info(
            "session.bulk_deleted",
            extra={"host_id": requester_id, "requested": len(unique_ids), "deleted": deleted},
        )
        return deleted
