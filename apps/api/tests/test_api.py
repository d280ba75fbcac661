from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from app.api.deps import (
    get_invite_notifier,
    get_leaderboard_service,
    get_lifecycle_manager,
    get_lifecycle_sweeper,
    get_link_resolver,
    get_match_history_service,
    get_ranking_service,
    get_session_store,
)
from app.core.config import settings
from app.main import app
from app.services.sessions import (
    GameLinkResolver,
    LeaderboardService,
    MatchHistoryService,
    RankingService,
    SessionLifecycleManager,
    SessionLifecycleSweeper,
    SessionStore,
    SubmissionCooldown,
)
from conftest import FrozenClock, RecordingNotifier

HOST = {"X-User-Id": "host-1"}
PLAYER = {"X-User-Id": "player-2"}


@pytest.fixture
def client(
    lifecycle: SessionLifecycleManager,
    store: SessionStore,
    clock: FrozenClock,
    cooldown: SubmissionCooldown,
) -> Iterator[TestClient]:
    app.dependency_overrides[get_lifecycle_manager] = lambda: lifecycle
    app.dependency_overrides[get_ranking_service] = lambda: RankingService(store, clock=clock, cooldown=cooldown)
    app.dependency_overrides[get_leaderboard_service] = lambda: LeaderboardService(store, clock=clock)
    app.dependency_overrides[get_lifecycle_sweeper] = lambda: SessionLifecycleSweeper(store, clock=clock)
    app.dependency_overrides[get_match_history_service] = lambda: MatchHistoryService(store)
    # Not entered as a context manager: the lifespan would connect to Redis.
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client: TestClient, **overrides: object) -> dict:
    body = {"robloxUrl": "https://www.roblox.com/games/606849621/Jailbreak", "title": "Heist night"}
    body.update(overrides)
    response = client.post("/api/sessions", json=body, headers=HOST)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_reports_environment() -> None:
    response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["env"] == "test"


def test_mutations_require_caller_identity(client: TestClient) -> None:
    response = client.post("/api/sessions", json={"robloxUrl": "https://www.roblox.com/games/1", "title": "x"})

    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"


def test_create_returns_canonical_links_and_invite(client: TestClient) -> None:
    created = _create(client, maxParticipants=4)

    session = created["session"]
    assert session["gameRef"] == 606849621
    assert session["canonicalWebUrl"] == "https://www.roblox.com/games/606849621"
    assert session["canonicalStartUrl"] == "https://www.roblox.com/games/start?placeId=606849621"
    assert session["normalizedFrom"] == "web_games"
    assert session["status"] == "active"
    assert created["inviteLink"] == f"squadlink://invite/{created['inviteCode']}"
    assert len(created["inviteCode"]) == 9


def test_request_validation_uses_error_envelope(client: TestClient) -> None:
    response = client.post(
        "/api/sessions",
        json={"robloxUrl": "https://www.roblox.com/games/1", "title": "x", "maxParticipants": 1},
        headers=HOST,
    )

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_unresolvable_link_is_reported_with_its_code(client: TestClient) -> None:
    response = client.post("/api/sessions", json={"robloxUrl": "https://example.com", "title": "x"}, headers=HOST)

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_GAME_LINK"


def test_join_handoff_and_detail_flow(client: TestClient) -> None:
    session_id = _create(client)["session"]["id"]

    joined = client.post(f"/api/sessions/{session_id}/join", headers=PLAYER)
    handoff = client.post(f"/api/sessions/{session_id}/handoff/confirmed", headers=PLAYER)
    detail = client.get(f"/api/sessions/{session_id}")

    assert joined.status_code == 200
    assert joined.json()["participantCount"] == 2
    assert handoff.status_code == 200
    states = {item["userId"]: item["handoffState"] for item in detail.json()["participants"]}
    assert states == {"host-1": "rsvp_joined", "player-2": "confirmed_in_game"}


def test_domain_errors_carry_stable_codes(client: TestClient) -> None:
    session_id = _create(client)["session"]["id"]

    missing = client.post("/api/sessions/unknown/join", headers=PLAYER)
    host_leave = client.post(f"/api/sessions/{session_id}/leave", headers=HOST)
    not_host = client.delete(f"/api/sessions/{session_id}", headers=PLAYER)

    assert (missing.status_code, missing.json()["code"]) == (404, "SESSION_NOT_FOUND")
    assert (host_leave.status_code, host_leave.json()["code"]) == (422, "HOST_CANNOT_LEAVE")
    assert (not_host.status_code, not_host.json()["code"]) == (403, "NOT_HOST")


def test_delete_hides_session_from_listing(client: TestClient) -> None:
    keep = _create(client)["session"]["id"]
    drop = _create(client)["session"]["id"]

    deleted = client.delete(f"/api/sessions/{drop}", headers=HOST)
    listing = client.get("/api/sessions", params={"hostId": "host-1"})

    assert deleted.status_code == 204
    assert [item["session"]["id"] for item in listing.json()["sessions"]] == [keep]
    assert listing.json()["hasMore"] is False


def test_invite_summary_is_case_insensitive(client: TestClient) -> None:
    created = _create(client)

    response = client.get(f"/api/invites/{created['inviteCode'].lower()}")

    assert response.status_code == 200
    assert response.json()["sessionId"] == created["session"]["id"]
    assert response.json()["participantCount"] == 1


def test_ranked_result_updates_leaderboard(client: TestClient, clock: FrozenClock) -> None:
    session_id = _create(client, isRanked=True)["session"]["id"]
    client.post(f"/api/sessions/{session_id}/join", headers=PLAYER)
    clock.advance(minutes=5)

    result = client.post(f"/api/sessions/{session_id}/result", json={"winnerId": "player-2"}, headers=HOST)
    board = client.get("/api/leaderboard", params={"type": "weekly", "includeTier": "true"})

    assert result.status_code == 200
    assert result.json()["ratingDelta"] == 25
    assert client.get(f"/api/sessions/{session_id}").json()["session"]["status"] == "completed"
    assert [(entry["userId"], entry["rating"], entry["tier"]) for entry in board.json()["entries"]] == [
        ("player-2", 1025, "silver"),
        ("host-1", 975, "bronze"),
    ]


def test_match_history_route(client: TestClient, clock: FrozenClock) -> None:
    session_id = _create(client, isRanked=True)["session"]["id"]
    client.post(f"/api/sessions/{session_id}/join", headers=PLAYER)
    clock.advance(minutes=5)
    client.post(f"/api/sessions/{session_id}/result", json={"winnerId": "player-2"}, headers=HOST)

    response = client.get("/api/me/match-history", params={"limit": 5}, headers=HOST)

    assert response.status_code == 200
    body = response.json()
    assert body["timezone"] == "Europe/Amsterdam"
    assert body["entries"][0].pop("playedAt").startswith("2026-03-04T18:05")
    assert body["entries"] == [
        {
            "sessionId": session_id,
            "sessionTitle": "Heist night",
            "result": "loss",
            "winnerId": "player-2",
            "ratingDelta": -25,
            "opponents": [{"userId": "player-2", "displayName": None}],
        },
    ]
    assert client.get("/api/me/match-history").status_code == 401
    assert client.get("/api/me/match-history", params={"limit": 51}, headers=HOST).status_code == 422


def test_ranked_sessions_must_be_public(client: TestClient) -> None:
    response = client.post(
        "/api/sessions",
        json={
            "robloxUrl": "https://www.roblox.com/games/1",
            "title": "x",
            "isRanked": True,
            "visibility": "friends",
        },
        headers=HOST,
    )

    assert response.status_code == 422
    assert response.json()["code"] == "RANKED_REQUIRES_PUBLIC"


def test_internal_sweep_route(client: TestClient) -> None:
    response = client.post("/api/internal/sessions/lifecycle-sweep")

    assert response.status_code == 200
    assert response.json()["autoCompletedCount"] == 0
    assert response.json()["archiveMode"] == "archived_at"


def test_internal_sweep_rejects_wrong_token(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "internal_api_token", "s3cret")

    rejected = client.post("/api/internal/sessions/lifecycle-sweep", headers={"X-Internal-Token": "nope"})
    accepted = client.post("/api/internal/sessions/lifecycle-sweep", headers={"X-Internal-Token": "s3cret"})

    assert rejected.status_code == 403
    assert accepted.status_code == 200


def test_request_id_is_echoed_on_errors(client: TestClient) -> None:
    response = client.post(
        "/api/sessions",
        json={"robloxUrl": "https://www.roblox.com/games/1", "title": ""},
        headers={**HOST, "X-Request-Id": "req-12345678"},
    )

    assert response.headers["X-Request-Id"] == "req-12345678"
    assert response.json()["details"][0]["loc"] == ["body", "title"]
    assert set(response.json()["details"][0]) == {"loc", "msg", "type"}


def test_invites_are_delivered_as_background_tasks(
    store: SessionStore,
    offline_resolver: GameLinkResolver,
    notifier: RecordingNotifier,
) -> None:
    app.dependency_overrides[get_session_store] = lambda: store
    app.dependency_overrides[get_link_resolver] = lambda: offline_resolver
    app.dependency_overrides[get_invite_notifier] = lambda: notifier
    try:
        response = TestClient(app).post(
            "/api/sessions",
            json={
                "robloxUrl": "https://www.roblox.com/games/606849621/Jailbreak",
                "title": "Squad up",
                "inviteFriendIds": ["friend-1", "host-1"],
                "hostName": "Captain",
            },
            headers=HOST,
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 201
    assert response.json()["notifiedUserIds"] == ["friend-1"]
    assert notifier.calls == [("friend-1", response.json()["session"]["id"], "Squad up", "Captain")]
