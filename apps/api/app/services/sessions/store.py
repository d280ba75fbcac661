from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from app.core.errors import AppError, ConflictError, StoreError
from app.db.capabilities import PARTICIPANT_HANDOFF_STATE, SESSION_ARCHIVED_AT, ColumnCapability
from app.models import (
    HandoffState,
    MatchResult,
    ParticipantRole,
    ParticipantState,
    PlaySession,
    SessionInvite,
    SessionParticipant,
    SessionStatus,
    UserRanking,
)
from app.services.sessions.entities import (
    InviteSnapshot,
    ParticipantSnapshot,
    PlayedMatch,
    RankingSnapshot,
    RatingUpdate,
    SessionSnapshot,
    as_utc,
    invite_from_row,
    participant_from_row,
    ranking_from_row,
    session_from_row,
)

logger = logging.getLogger("squadlink.api.store")

INITIAL_RATING = 1000

_SESSION_COLUMNS = (
    PlaySession.id,
    PlaySession.host_id,
    PlaySession.game_ref,
    PlaySession.title,
    PlaySession.description,
    PlaySession.visibility,
    PlaySession.status,
    PlaySession.is_ranked,
    PlaySession.max_participants,
    PlaySession.scheduled_start,
    PlaySession.original_input_url,
    PlaySession.normalized_from,
    PlaySession.created_at,
    PlaySession.updated_at,
)

_PARTICIPANT_COLUMNS = (
    SessionParticipant.session_id,
    SessionParticipant.user_id,
    SessionParticipant.role,
    SessionParticipant.state,
    SessionParticipant.joined_at,
)

_RANKING_COLUMNS = (
    UserRanking.user_id,
    UserRanking.rating,
    UserRanking.wins,
    UserRanking.losses,
    UserRanking.last_ranked_match_at,
)


def _session_columns(with_archived_at: bool) -> tuple[Any, ...]:
    if with_archived_at:
        return (*_SESSION_COLUMNS, PlaySession.archived_at)
    return _SESSION_COLUMNS


def _participant_columns(with_handoff_state: bool) -> tuple[Any, ...]:
    if with_handoff_state:
        return (*_PARTICIPANT_COLUMNS, SessionParticipant.handoff_state)
    return _PARTICIPANT_COLUMNS


def _joined_count_subquery() -> Any:
    return (
        select(func.count(SessionParticipant.id))
        .where(
            SessionParticipant.session_id == PlaySession.id,
            SessionParticipant.state == ParticipantState.JOINED.value,
        )
        .scalar_subquery()
        .label("joined_count")
    )


class SessionStore:
    """Transactional facade over the session, participant, invite and ranking tables.

    Every public method is one unit of work: it either commits or rolls back
    before returning. Rows never leave this class untyped; they are mapped to
    the snapshot dataclasses in :mod:`app.services.sessions.entities`.
    """

    def __init__(
        self,
        db: Session,
        *,
        handoff_capability: ColumnCapability = PARTICIPANT_HANDOFF_STATE,
        archival_capability: ColumnCapability = SESSION_ARCHIVED_AT,
    ) -> None:
        self.db = db
        self.handoff_capability = handoff_capability
        self.archival_capability = archival_capability

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except AppError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning(
                "store.operation_failed",
                extra={"operation": operation, "error": str(getattr(exc, "orig", exc))},
            )
            raise StoreError() from exc

    # sessions

    def create_session(
        self,
        *,
        session_values: dict[str, Any],
        invite_values: dict[str, Any],
    ) -> SessionSnapshot:
        session_id = session_values["id"]
        host_id = session_values["host_id"]

        def _unit(with_handoff_state: bool) -> None:
            self.db.execute(insert(PlaySession).values(**session_values))
            self.db.execute(
                insert(SessionParticipant).values(
                    **self._participant_values(
                        session_id=session_id,
                        user_id=host_id,
                        role=ParticipantRole.HOST,
                        joined_at=session_values["created_at"],
                        with_handoff_state=with_handoff_state,
                    ),
                ),
            )
            self.db.execute(insert(SessionInvite).values(**invite_values))
            self.db.commit()

        with self._guard("create_session"):
            self.handoff_capability.run(self.db, _unit)

        created = self.get_session(session_id)
        if created is None:
            raise StoreError()
        return created

    def get_session(self, session_id: str) -> SessionSnapshot | None:
        def _unit(with_archived_at: bool) -> SessionSnapshot | None:
            row = self.db.execute(
                select(*_session_columns(with_archived_at)).where(PlaySession.id == session_id),
            ).first()
            return session_from_row(row._mapping) if row is not None else None

        with self._guard("get_session"):
            return self.archival_capability.run(self.db, _unit)

    def list_sessions(
        self,
        *,
        status: SessionStatus,
        visibility: str | None = None,
        game_ref: int | None = None,
        host_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[tuple[SessionSnapshot, int]], int]:
        def _unit(with_archived_at: bool) -> tuple[list[tuple[SessionSnapshot, int]], int]:
            conditions: list[Any] = [PlaySession.status == status.value]
            if with_archived_at:
                conditions.append(PlaySession.archived_at.is_(None))
            if visibility is not None:
                conditions.append(PlaySession.visibility == visibility)
            if game_ref is not None:
                conditions.append(PlaySession.game_ref == game_ref)
            if host_id is not None:
                conditions.append(PlaySession.host_id == host_id)

            total = self.db.scalar(select(func.count(PlaySession.id)).where(*conditions)) or 0
            rows = self.db.execute(
                select(*_session_columns(with_archived_at), _joined_count_subquery())
                .where(*conditions)
                .order_by(
                    PlaySession.scheduled_start.asc().nulls_last(),
                    PlaySession.created_at.desc(),
                    PlaySession.id,
                )
                .limit(limit)
                .offset(offset),
            ).all()
            items = [(session_from_row(row._mapping), int(row._mapping["joined_count"] or 0)) for row in rows]
            return items, int(total)

        with self._guard("list_sessions"):
            return self.archival_capability.run(self.db, _unit)

    def cancel_session(self, *, session_id: str, host_id: str, now: datetime) -> bool:
        with self._guard("cancel_session"):
            result = self.db.execute(
                update(PlaySession)
                .where(
                    PlaySession.id == session_id,
                    PlaySession.host_id == host_id,
                    PlaySession.status != SessionStatus.CANCELLED.value,
                )
                .values(status=SessionStatus.CANCELLED.value, updated_at=now)
                .execution_options(synchronize_session=False),
            )
            self.db.commit()
            return result.rowcount > 0

    def cancel_sessions(self, *, session_ids: Sequence[str], host_id: str, now: datetime) -> int:
        if not session_ids:
            return 0
        with self._guard("cancel_sessions"):
            result = self.db.execute(
                update(PlaySession)
                .where(
                    PlaySession.id.in_(list(session_ids)),
                    PlaySession.host_id == host_id,
                    PlaySession.status != SessionStatus.CANCELLED.value,
                )
                .values(status=SessionStatus.CANCELLED.value, updated_at=now)
                .execution_options(synchronize_session=False),
            )
            self.db.commit()
            return int(result.rowcount or 0)

    def complete_session(self, *, session_id: str, now: datetime) -> bool:
        with self._guard("complete_session"):
            result = self.db.execute(
                update(PlaySession)
                .where(
                    PlaySession.id == session_id,
                    PlaySession.status.in_([SessionStatus.ACTIVE.value, SessionStatus.SCHEDULED.value]),
                )
                .values(status=SessionStatus.COMPLETED.value, updated_at=now)
                .execution_options(synchronize_session=False),
            )
            self.db.commit()
            return result.rowcount > 0

    # invites

    def invite_code_exists(self, code: str) -> bool:
        with self._guard("invite_code_exists"):
            return self.db.scalar(select(SessionInvite.id).where(SessionInvite.code == code)) is not None

    def get_invite(self, code: str) -> InviteSnapshot | None:
        with self._guard("get_invite"):
            row = self.db.execute(
                select(
                    SessionInvite.session_id,
                    SessionInvite.code,
                    SessionInvite.created_by,
                    SessionInvite.created_at,
                    SessionInvite.expires_at,
                ).where(SessionInvite.code == code),
            ).first()
            return invite_from_row(row._mapping) if row is not None else None

    def first_invite_code(self, session_id: str) -> str | None:
        with self._guard("first_invite_code"):
            return self.db.scalar(
                select(SessionInvite.code)
                .where(SessionInvite.session_id == session_id)
                .order_by(SessionInvite.created_at.asc())
                .limit(1),
            )

    # participants

    def _participant_values(
        self,
        *,
        session_id: str,
        user_id: str,
        role: ParticipantRole,
        joined_at: datetime,
        with_handoff_state: bool,
    ) -> dict[str, Any]:
        values: dict[str, Any] = {
            "session_id": session_id,
            "user_id": user_id,
            "role": role.value,
            "state": ParticipantState.JOINED.value,
            "joined_at": joined_at,
        }
        if with_handoff_state:
            values["handoff_state"] = HandoffState.RSVP_JOINED.value
        return values

    def add_member(self, *, session_id: str, user_id: str, joined_at: datetime) -> None:
        def _unit(with_handoff_state: bool) -> None:
            values = self._participant_values(
                session_id=session_id,
                user_id=user_id,
                role=ParticipantRole.MEMBER,
                joined_at=joined_at,
                with_handoff_state=with_handoff_state,
            )
            try:
                self.db.execute(insert(SessionParticipant).values(**values))
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                raise ConflictError("You have already joined this session", code="ALREADY_JOINED") from exc

        with self._guard("add_member"):
            self.handoff_capability.run(self.db, _unit)

    def list_participants(self, session_id: str) -> list[ParticipantSnapshot]:
        def _unit(with_handoff_state: bool) -> list[ParticipantSnapshot]:
            rows = self.db.execute(
                select(*_participant_columns(with_handoff_state))
                .where(SessionParticipant.session_id == session_id)
                .order_by(SessionParticipant.joined_at.asc(), SessionParticipant.user_id),
            ).all()
            return [participant_from_row(row._mapping) for row in rows]

        with self._guard("list_participants"):
            return self.handoff_capability.run(self.db, _unit)

    def get_participant(self, *, session_id: str, user_id: str) -> ParticipantSnapshot | None:
        def _unit(with_handoff_state: bool) -> ParticipantSnapshot | None:
            row = self.db.execute(
                select(*_participant_columns(with_handoff_state)).where(
                    SessionParticipant.session_id == session_id,
                    SessionParticipant.user_id == user_id,
                ),
            ).first()
            return participant_from_row(row._mapping) if row is not None else None

        with self._guard("get_participant"):
            return self.handoff_capability.run(self.db, _unit)

    def count_joined(self, session_id: str) -> int:
        with self._guard("count_joined"):
            count = self.db.scalar(
                select(func.count(SessionParticipant.id)).where(
                    SessionParticipant.session_id == session_id,
                    SessionParticipant.state == ParticipantState.JOINED.value,
                ),
            )
            return int(count or 0)

    def joined_user_ids(self, session_id: str) -> list[str]:
        with self._guard("joined_user_ids"):
            return list(
                self.db.scalars(
                    select(SessionParticipant.user_id)
                    .where(
                        SessionParticipant.session_id == session_id,
                        SessionParticipant.state == ParticipantState.JOINED.value,
                    )
                    .order_by(SessionParticipant.joined_at.asc(), SessionParticipant.user_id),
                ).all(),
            )

    def set_handoff_state(self, *, session_id: str, user_id: str, handoff_state: HandoffState) -> bool:
        def _unit(with_handoff_state: bool) -> bool:
            if not with_handoff_state:
                raise StoreError(
                    "Handoff tracking is not available yet",
                    code="HANDOFF_STATE_UNSUPPORTED",
                )
            result = self.db.execute(
                update(SessionParticipant)
                .where(
                    SessionParticipant.session_id == session_id,
                    SessionParticipant.user_id == user_id,
                )
                .values(handoff_state=handoff_state.value)
                .execution_options(synchronize_session=False),
            )
            self.db.commit()
            return result.rowcount > 0

        with self._guard("set_handoff_state"):
            return self.handoff_capability.run(self.db, _unit)

    def mark_left(self, *, session_id: str, user_id: str) -> bool:
        with self._guard("mark_left"):
            result = self.db.execute(
                update(SessionParticipant)
                .where(
                    SessionParticipant.session_id == session_id,
                    SessionParticipant.user_id == user_id,
                    SessionParticipant.state == ParticipantState.JOINED.value,
                )
                .values(state=ParticipantState.LEFT.value)
                .execution_options(synchronize_session=False),
            )
            self.db.commit()
            return result.rowcount > 0

    # ranking

    def count_ranked_matches_between(self, *, user_a: str, user_b: str, since: datetime) -> int:
        first = aliased(SessionParticipant)
        second = aliased(SessionParticipant)
        with self._guard("count_ranked_matches_between"):
            count = self.db.scalar(
                select(func.count(MatchResult.id))
                .join(
                    first,
                    and_(
                        first.session_id == MatchResult.session_id,
                        first.user_id == user_a,
                        first.state == ParticipantState.JOINED.value,
                    ),
                )
                .join(
                    second,
                    and_(
                        second.session_id == MatchResult.session_id,
                        second.user_id == user_b,
                        second.state == ParticipantState.JOINED.value,
                    ),
                )
                .where(MatchResult.created_at >= since),
            )
            return int(count or 0)

    def _ensure_ranking_rows(self, user_ids: Sequence[str], now: datetime) -> None:
        rows = [
            {
                "user_id": user_id,
                "rating": INITIAL_RATING,
                "wins": 0,
                "losses": 0,
                "created_at": now,
                "updated_at": now,
            }
            for user_id in user_ids
        ]
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            self.db.execute(postgresql.insert(UserRanking).values(rows).on_conflict_do_nothing(index_elements=["user_id"]))
            return
        if dialect == "sqlite":
            self.db.execute(sqlite.insert(UserRanking).values(rows).on_conflict_do_nothing(index_elements=["user_id"]))
            return
        existing = set(self.db.scalars(select(UserRanking.user_id).where(UserRanking.user_id.in_(list(user_ids)))).all())
        missing = [row for row in rows if row["user_id"] not in existing]
        if missing:
            self.db.execute(insert(UserRanking).values(missing))

    def record_match_result(
        self,
        *,
        session_id: str,
        winner_id: str,
        submitted_by: str,
        participant_ids: Sequence[str],
        rating_delta: int,
        occurred_at: datetime,
    ) -> list[RatingUpdate]:
        """Insert the match result and move every participant's rating in one transaction."""
        loser_ids = [user_id for user_id in participant_ids if user_id != winner_id]

        with self._guard("record_match_result"):
            try:
                self.db.execute(
                    insert(MatchResult).values(
                        session_id=session_id,
                        winner_id=winner_id,
                        submitted_by=submitted_by,
                        rating_delta=rating_delta,
                        created_at=occurred_at,
                    ),
                )
            except IntegrityError as exc:
                self.db.rollback()
                raise ConflictError("Result already submitted for this session", code="MATCH_RESULT_EXISTS") from exc

            self._ensure_ranking_rows(participant_ids, occurred_at)
            self.db.execute(
                update(UserRanking)
                .where(UserRanking.user_id == winner_id)
                .values(
                    rating=UserRanking.rating + rating_delta,
                    wins=UserRanking.wins + 1,
                    last_ranked_match_at=occurred_at,
                    updated_at=occurred_at,
                )
                .execution_options(synchronize_session=False),
            )
            if loser_ids:
                self.db.execute(
                    update(UserRanking)
                    .where(UserRanking.user_id.in_(loser_ids))
                    .values(
                        rating=UserRanking.rating - rating_delta,
                        losses=UserRanking.losses + 1,
                        last_ranked_match_at=occurred_at,
                        updated_at=occurred_at,
                    )
                    .execution_options(synchronize_session=False),
                )
            rows = self.db.execute(
                select(*_RANKING_COLUMNS)
                .where(UserRanking.user_id.in_(list(participant_ids)))
                .order_by(UserRanking.rating.desc(), UserRanking.user_id),
            ).all()
            self.db.commit()

        return [
            RatingUpdate(
                user_id=str(row.user_id),
                rating=int(row.rating),
                wins=int(row.wins),
                losses=int(row.losses),
                delta=rating_delta if row.user_id == winner_id else -rating_delta,
            )
            for row in rows
        ]

    def get_rankings(self, user_ids: Sequence[str]) -> list[RankingSnapshot]:
        if not user_ids:
            return []
        with self._guard("get_rankings"):
            rows = self.db.execute(select(*_RANKING_COLUMNS).where(UserRanking.user_id.in_(list(user_ids)))).all()
            return [ranking_from_row(row._mapping) for row in rows]

    def top_rankings(self, *, limit: int, since: datetime | None = None) -> list[RankingSnapshot]:
        query = select(*_RANKING_COLUMNS)
        if since is not None:
            query = query.where(
                UserRanking.last_ranked_match_at.is_not(None),
                UserRanking.last_ranked_match_at >= since,
            )
        with self._guard("top_rankings"):
            rows = self.db.execute(
                query.order_by(UserRanking.rating.desc(), UserRanking.user_id).limit(limit),
            ).all()
            return [ranking_from_row(row._mapping) for row in rows]

    def match_history(self, *, user_id: str, limit: int) -> list[PlayedMatch]:
        """Ranked results of sessions the user is still joined to, newest first."""
        with self._guard("match_history"):
            rows = self.db.execute(
                select(
                    MatchResult.session_id,
                    MatchResult.winner_id,
                    MatchResult.rating_delta,
                    MatchResult.created_at,
                    PlaySession.title,
                )
                .join(
                    SessionParticipant,
                    and_(
                        SessionParticipant.session_id == MatchResult.session_id,
                        SessionParticipant.user_id == user_id,
                        SessionParticipant.state == ParticipantState.JOINED.value,
                    ),
                )
                .outerjoin(PlaySession, PlaySession.id == MatchResult.session_id)
                .order_by(MatchResult.created_at.desc(), MatchResult.session_id)
                .limit(limit),
            ).all()
            if not rows:
                return []

            members: dict[str, list[str]] = {}
            for session_id, member_id in self.db.execute(
                select(SessionParticipant.session_id, SessionParticipant.user_id)
                .where(
                    SessionParticipant.session_id.in_([row.session_id for row in rows]),
                    SessionParticipant.state == ParticipantState.JOINED.value,
                )
                .order_by(SessionParticipant.joined_at.asc(), SessionParticipant.user_id),
            ).all():
                members.setdefault(str(session_id), []).append(str(member_id))

        return [
            PlayedMatch(
                session_id=str(row.session_id),
                session_title=row.title,
                winner_id=str(row.winner_id),
                rating_delta=int(row.rating_delta),
                played_at=as_utc(row.created_at),
                participant_ids=members.get(str(row.session_id), []),
            )
            for row in rows
        ]

    # lifecycle sweeps

    def complete_stale_active(self, *, cutoff: datetime, now: datetime, limit: int) -> tuple[int, int]:
        """Returns ``(found, transitioned)`` for one batch."""
        with self._guard("complete_stale_active"):
            ids = list(
                self.db.scalars(
                    select(PlaySession.id)
                    .where(
                        PlaySession.status == SessionStatus.ACTIVE.value,
                        or_(
                            and_(PlaySession.scheduled_start.is_not(None), PlaySession.scheduled_start <= cutoff),
                            and_(PlaySession.scheduled_start.is_(None), PlaySession.created_at <= cutoff),
                        ),
                    )
                    .order_by(PlaySession.created_at.asc())
                    .limit(limit),
                ).all(),
            )
            if not ids:
                self.db.rollback()
                return 0, 0
            result = self.db.execute(
                update(PlaySession)
                .where(PlaySession.id.in_(ids), PlaySession.status == SessionStatus.ACTIVE.value)
                .values(status=SessionStatus.COMPLETED.value, scheduled_end=now, updated_at=now)
                .execution_options(synchronize_session=False),
            )
            self.db.commit()
            return len(ids), int(result.rowcount or 0)

    def archive_stale_completed(self, *, cutoff: datetime, now: datetime, limit: int) -> tuple[int, int]:
        """Returns ``(found, transitioned)`` for one batch.

        Without the ``archived_at`` column the archival action is a move to
        ``cancelled`` instead.
        """

        def _unit(with_archived_at: bool) -> tuple[int, int]:
            conditions: list[Any] = [
                PlaySession.status == SessionStatus.COMPLETED.value,
                PlaySession.updated_at <= cutoff,
            ]
            if with_archived_at:
                conditions.append(PlaySession.archived_at.is_(None))
            ids = list(
                self.db.scalars(
                    select(PlaySession.id).where(*conditions).order_by(PlaySession.updated_at.asc()).limit(limit),
                ).all(),
            )
            if not ids:
                self.db.rollback()
                return 0, 0

            statement = update(PlaySession).where(
                PlaySession.id.in_(ids),
                PlaySession.status == SessionStatus.COMPLETED.value,
            )
            if with_archived_at:
                statement = statement.where(PlaySession.archived_at.is_(None)).values(archived_at=now, updated_at=now)
            else:
                statement = statement.values(status=SessionStatus.CANCELLED.value, updated_at=now)
            result = self.db.execute(statement.execution_options(synchronize_session=False))
            self.db.commit()
            return len(ids), int(result.rowcount or 0)

        with self._guard("archive_stale_completed"):
            return self.archival_capability.run(self.db, _unit)
