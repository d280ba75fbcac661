from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest

os.environ.setdefault("SQUADLINK_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SQUADLINK_REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("SQUADLINK_APP_ENV", "test")

from sqlalchemy import Engine, text  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from app import models  # noqa: E402,F401
from app.db.base import Base  # noqa: E402
from app.db.capabilities import ColumnCapability  # noqa: E402
from app.db.session import build_engine  # noqa: E402
from app.services.sessions import (  # noqa: E402
    GameLinkResolver,
    SessionLifecycleManager,
    SessionStore,
    SubmissionCooldown,
)


class FrozenClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.calls: list[tuple[str, str, str, str]] = []
        self.fail_for = fail_for or set()

    def notify(self, user_id: str, session_id: str, title: str, host_name: str) -> None:
        if user_id in self.fail_for:
            raise RuntimeError("push provider unavailable")
        self.calls.append((user_id, session_id, title, host_name))


def run_inline(func: Callable[..., Any], *args: Any) -> None:
    func(*args)


def _unexpected_request(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected outbound request: {request.method} {request.url}")


LEGACY_SESSIONS_DDL = """
CREATE TABLE sessions (
    id VARCHAR(36) PRIMARY KEY,
    host_id VARCHAR(64) NOT NULL,
    game_ref BIGINT NOT NULL,
    original_input_url TEXT NOT NULL,
    normalized_from VARCHAR(32) NOT NULL,
    title VARCHAR(120) NOT NULL,
    description TEXT,
    visibility VARCHAR(16) NOT NULL DEFAULT 'public',
    status VARCHAR(16) NOT NULL DEFAULT 'active',
    is_ranked BOOLEAN NOT NULL DEFAULT 0,
    max_participants INTEGER NOT NULL DEFAULT 10,
    scheduled_start DATETIME,
    scheduled_end DATETIME,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL{archived_at}
)
"""

LEGACY_PARTICIPANTS_DDL = """
CREATE TABLE session_participants (
    id VARCHAR(36) PRIMARY KEY,
    session_id VARCHAR(36) NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    user_id VARCHAR(64) NOT NULL,
    role VARCHAR(16) NOT NULL DEFAULT 'member',
    state VARCHAR(16) NOT NULL DEFAULT 'joined',{handoff_state}
    joined_at DATETIME NOT NULL,
    CONSTRAINT uq_session_participants_session_user UNIQUE (session_id, user_id)
)
"""

LEGACY_INVITES_DDL = """
CREATE TABLE session_invites (
    id VARCHAR(36) PRIMARY KEY,
    session_id VARCHAR(36) NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    code VARCHAR(16) NOT NULL UNIQUE,
    created_by VARCHAR(64) NOT NULL,
    created_at DATETIME NOT NULL,
    expires_at DATETIME
)
"""


def build_legacy_engine(*, with_handoff_state: bool, with_archived_at: bool) -> Engine:
    """An in-memory database shaped like a deploy that is missing later migrations."""
    engine = build_engine("sqlite+pysqlite:///:memory:")
    with engine.begin() as connection:
        connection.execute(
            text(LEGACY_SESSIONS_DDL.format(archived_at=",\n    archived_at DATETIME" if with_archived_at else "")),
        )
        connection.execute(
            text(
                LEGACY_PARTICIPANTS_DDL.format(
                    handoff_state="\n    handoff_state VARCHAR(24) DEFAULT 'rsvp_joined'," if with_handoff_state else "",
                ),
            ),
        )
        connection.execute(text(LEGACY_INVITES_DDL))
    Base.metadata.create_all(
        engine,
        tables=[models.MatchResult.__table__, models.UserRanking.__table__],
    )
    return engine


@pytest.fixture
def engine() -> Iterator[Engine]:
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def file_engine(tmp_path: Path) -> Iterator[Engine]:
    # Separate connections per thread; SQLite serialises the writers.
    engine = build_engine(
        f"sqlite+pysqlite:///{tmp_path / 'squadlink.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


def build_store(db: Session) -> SessionStore:
    return SessionStore(
        db,
        handoff_capability=ColumnCapability("session_participants", "handoff_state"),
        archival_capability=ColumnCapability("sessions", "archived_at"),
    )


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 4, 18, 0, tzinfo=UTC))


@pytest.fixture
def store(db: Session) -> SessionStore:
    return build_store(db)


@pytest.fixture
def offline_resolver() -> Iterator[GameLinkResolver]:
    resolver = GameLinkResolver(httpx.Client(transport=httpx.MockTransport(_unexpected_request)), max_attempts=1)
    try:
        yield resolver
    finally:
        resolver.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def lifecycle(
    store: SessionStore,
    offline_resolver: GameLinkResolver,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> SessionLifecycleManager:
    return SessionLifecycleManager(store, offline_resolver, notifier, clock=clock, schedule=run_inline)


@pytest.fixture
def cooldown() -> SubmissionCooldown:
    return SubmissionCooldown(window_seconds=10, max_entries=2000)


@pytest.fixture
def mock_resolver() -> Iterator[Callable[[Callable[[httpx.Request], httpx.Response]], GameLinkResolver]]:
    created: list[GameLinkResolver] = []

    def _build(handler: Callable[[httpx.Request], httpx.Response]) -> GameLinkResolver:
        resolver = GameLinkResolver(httpx.Client(transport=httpx.MockTransport(handler)), max_attempts=2)
        created.append(resolver)
        return resolver

    yield _build
    for resolver in created:
        resolver.close()
