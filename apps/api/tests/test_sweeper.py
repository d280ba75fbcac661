from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

import pytest
from sqlalchemy import insert, select
from sqlalchemy.orm import Session, sessionmaker

from app.db.capabilities import ColumnCapability
from app.models import PlaySession, SessionStatus
from app.services.sessions import SessionLifecycleSweeper, SessionStore, SweepOptions
from conftest import FrozenClock, build_legacy_engine


def _session_row(session_id: str, *, status: SessionStatus, created_at: datetime, **extra: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": session_id,
        "host_id": "host-1",
        "game_ref": 606849621,
        "original_input_url": "https://www.roblox.com/games/606849621",
        "normalized_from": "web_games",
        "title": session_id,
        "visibility": "public",
        "status": status.value,
        "is_ranked": False,
        "max_participants": 10,
        "scheduled_start": None,
        "created_at": created_at,
        "updated_at": created_at,
    }
    row.update(extra)
    return row


def _status(db: Session, session_id: str) -> str:
    return db.scalar(select(PlaySession.status).where(PlaySession.id == session_id))


def test_stale_active_sessions_are_completed(store: SessionStore, db: Session, clock: FrozenClock) -> None:
    now = clock.now
    db.execute(
        insert(PlaySession).values(
            [
                _session_row("old", status=SessionStatus.ACTIVE, created_at=now, scheduled_start=now - timedelta(hours=3)),
                _session_row("recent", status=SessionStatus.ACTIVE, created_at=now, scheduled_start=now - timedelta(hours=1)),
                _session_row("unscheduled", status=SessionStatus.ACTIVE, created_at=now - timedelta(hours=5)),
                _session_row("upcoming", status=SessionStatus.SCHEDULED, created_at=now - timedelta(hours=5)),
            ],
        ),
    )
    db.commit()

    result = SessionLifecycleSweeper(store, clock=clock).run()

    assert result.auto_completed_count == 2
    assert result.archived_count == 0
    assert result.archive_mode == "archived_at"
    assert _status(db, "old") == SessionStatus.COMPLETED.value
    assert _status(db, "unscheduled") == SessionStatus.COMPLETED.value
    assert _status(db, "recent") == SessionStatus.ACTIVE.value
    assert _status(db, "upcoming") == SessionStatus.SCHEDULED.value


def test_retention_expired_sessions_are_archived_once(store: SessionStore, db: Session, clock: FrozenClock) -> None:
    now = clock.now
    db.execute(
        insert(PlaySession).values(
            [
                _session_row("done-long-ago", status=SessionStatus.COMPLETED, created_at=now - timedelta(hours=6)),
                _session_row("done-just-now", status=SessionStatus.COMPLETED, created_at=now - timedelta(minutes=30)),
            ],
        ),
    )
    db.commit()
    sweeper = SessionLifecycleSweeper(store, clock=clock)

    first = sweeper.run()
    second = sweeper.run()

    assert first.archived_count == 1
    assert second.archived_count == 0
    archived = store.get_session("done-long-ago")
    assert archived.status == SessionStatus.COMPLETED
    assert archived.archived_at == now
    assert store.get_session("done-just-now").archived_at is None
    assert store.list_sessions(status=SessionStatus.COMPLETED)[1] == 1


def test_batches_are_bounded_and_drained(store: SessionStore, db: Session, clock: FrozenClock) -> None:
    old = clock.now - timedelta(hours=4)
    db.execute(
        insert(PlaySession).values(
            [_session_row(f"s-{index}", status=SessionStatus.ACTIVE, created_at=old) for index in range(7)],
        ),
    )
    db.commit()
    options = SweepOptions.build(batch_size=3, max_batches=2)

    first = SessionLifecycleSweeper(store, clock=clock, options=options).run()
    second = SessionLifecycleSweeper(store, clock=clock, options=options).run()

    assert first.auto_completed_count == 6
    assert second.auto_completed_count == 1


def test_options_fall_back_to_defaults_for_invalid_values() -> None:
    options = SweepOptions.build(auto_complete_after_hours=0, completed_retention_hours="x", batch_size=-5, max_batches=None)

    assert options == SweepOptions(
        auto_complete_after_hours=2,
        completed_retention_hours=2,
        batch_size=200,
        max_batches=10,
    )


def test_archival_falls_back_to_cancel_without_column(clock: FrozenClock, caplog: pytest.LogCaptureFixture) -> None:
    engine = build_legacy_engine(with_handoff_state=True, with_archived_at=False)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    capability = ColumnCapability("sessions", "archived_at")
    db = factory()
    try:
        now = clock.now
        db.execute(
            insert(PlaySession).values(
                [
                    _session_row("first", status=SessionStatus.COMPLETED, created_at=now - timedelta(hours=6)),
                    _session_row("stale-active", status=SessionStatus.ACTIVE, created_at=now - timedelta(hours=6)),
                ],
            ),
        )
        db.commit()
        store = SessionStore(
            db,
            handoff_capability=ColumnCapability("session_participants", "handoff_state"),
            archival_capability=capability,
        )
        sweeper = SessionLifecycleSweeper(store, clock=clock)

        with caplog.at_level(logging.WARNING, logger="squadlink.api.schema"):
            first = sweeper.run()
            db.execute(
                insert(PlaySession).values(
                    [_session_row("second", status=SessionStatus.COMPLETED, created_at=now - timedelta(hours=6))],
                ),
            )
            db.commit()
            second = sweeper.run()

        assert capability.available is False
        assert first.archive_mode == "cancelled_fallback"
        assert first.auto_completed_count == 1
        assert first.archived_count == 1
        assert second.archived_count == 1
        assert _status(db, "first") == SessionStatus.CANCELLED.value
        assert _status(db, "second") == SessionStatus.CANCELLED.value
        assert _status(db, "stale-active") == SessionStatus.COMPLETED.value
        assert [record.getMessage() for record in caplog.records].count("schema.column_missing") == 1
    finally:
        db.close()
        engine.dispose()
