"""
API tests for the study engine routes

The service is replaced through FastAPI dependency overrides; the
application lifespan (database pool, Sentry) is not started.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from deoglory.api import middleware
from deoglory.api.middleware import limiter
from deoglory.api.routes import get_study_service
from deoglory.api.server import create_api_application
from deoglory.exceptions import (
    InvalidStageTransition, InsufficientCrystals, RecordNotFoundError, StreakFreezeLimitReached,
)
from deoglory.models.content import StageKind
from deoglory.models.profile import CrystalSummary, ProfileSnapshot, StreakState, StreakStatus


API_KEY = "test-key-123"
AUTH = {"Authorization": f"Bearer {API_KEY}"}
BASE = "/api/v1/study/member-42"


@pytest.fixture
def mock_service():
    return MagicMock()


@pytest.fixture
def app(mock_service, monkeypatch):
    monkeypatch.setenv("API_KEYS", API_KEY)
    application = create_api_application()
    application.dependency_overrides[get_study_service] = lambda: mock_service
    limiter.enabled = False
    yield application
    limiter.enabled = True


@pytest.fixture
def client(app):
    return TestClient(app)


# ============================================================================
# Authentication Tests
# ============================================================================

def test_invalid_api_key_rejected(client):
    response = client.get(f"{BASE}/profile", headers={"Authorization": "Bearer wrong"})

    assert response.status_code == 401


def test_unconfigured_api_keys_unavailable(client, monkeypatch):
    monkeypatch.setenv("API_KEYS", "")

    response = client.get(f"{BASE}/profile", headers=AUTH)

    assert response.status_code == 503


def test_named_portal_key_accepted(client, mock_service, monkeypatch):
    monkeypatch.setenv("API_KEYS", f"web:{API_KEY}, mobile:other-key")
    mock_service.get_snapshot = AsyncMock(side_effect=RecordNotFoundError("gone", record_type="StudyProfile"))

    response = client.get(f"{BASE}/profile", headers=AUTH)

    assert response.status_code == 404


def test_get_api_keys_parses_portal_names(monkeypatch):
    from deoglory.api.auth import get_api_keys
    monkeypatch.setenv("API_KEYS", "web:k1, k2,,mobile:k3")

    assert get_api_keys() == {"k1": "web", "k2": "default", "k3": "mobile"}


def test_invalid_key_error_body(client):
    response = client.get(f"{BASE}/profile", headers={"Authorization": "Bearer wrong"})

    assert response.json()["error"] == "AuthenticationError"


# ============================================================================
# Route Tests
# ============================================================================

def test_get_profile(client, mock_service):
    mock_service.get_snapshot = AsyncMock(return_value=ProfileSnapshot(
        user_id="member-42", total_xp=750, current_level=2, xp_in_current_level=250,
        xp_to_next_level=250, progress_percent=50.0, current_streak=3, longest_streak=5,
        crystals=4, hearts=5, hearts_max=5,
    ))

    response = client.get(f"{BASE}/profile", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["current_level"] == 2
    mock_service.get_snapshot.assert_awaited_once_with("member-42")


def test_complete_stage(client, mock_service):
    mock_service.complete_stage = AsyncMock(return_value={
        "lesson_id": 7,
        "stage": "responda",
        "next_stage": None,
        "lesson_completed": True,
        "xp_awarded": 30,
        "leveled_up": False,
        "new_level": 1,
        "current_streak": 1,
        "streak_message": "Streak started! Day 1",
        "milestones": [],
        "achievements_unlocked": [],
    })

    response = client.post(f"{BASE}/lessons/7/stages/responda/complete", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["xp_awarded"] == 30
    mock_service.complete_stage.assert_awaited_once_with("member-42", 7, StageKind.RESPONDA, perfect=False)


def test_unknown_stage_is_unprocessable(client):
    response = client.post(f"{BASE}/lessons/7/stages/pray/complete", headers=AUTH)

    assert response.status_code == 422


def test_negative_units_unprocessable(client):
    response = client.post(
        f"{BASE}/lessons/7/stages/estude/progress", headers=AUTH, json={"completed_units": -1}
    )

    assert response.status_code == 422


def test_streak_status(client, mock_service):
    mock_service.get_streak_status = AsyncMock(return_value=StreakStatus(
        state=StreakState.RECOVERABLE, needs_recovery=True, streak_at_risk=12, days_missed=2,
        crystal_cost=6, crystals_available=10, can_recover=True, streak_lost=False, current_streak=12,
    ))

    response = client.get(f"{BASE}/streak/status", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "recoverable"
    assert body["crystal_cost"] == 6


def test_grant_crystals_validates_amount(client, mock_service):
    mock_service.grant_crystals = AsyncMock()

    response = client.post(f"{BASE}/crystals/grant", headers=AUTH, json={"amount": 0, "source": "weekly_goal"})

    assert response.status_code == 422
    mock_service.grant_crystals.assert_not_awaited()


def test_start_final_challenge(client, mock_service):
    from deoglory.models.challenge import ChallengeStart
    started_at = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
    mock_service.start_final_challenge = AsyncMock(return_value=ChallengeStart(
        attempt_id="a1", token="tok", season_id=3, title="Desafio Final", questions=[],
        time_limit_seconds=150, started_at=started_at, expires_at=started_at,
    ))

    response = client.post(f"{BASE}/seasons/3/final-challenge/start", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["token"] == "tok"
    mock_service.start_final_challenge.assert_awaited_once_with("member-42", 3)


def test_complete_stage_perfect_lesson(client, mock_service):
    mock_service.complete_stage = AsyncMock(return_value={
        "lesson_id": 7,
        "stage": "responda",
        "lesson_completed": True,
        "xp_awarded": 30,
        "crystals_awarded": 3,
        "crystal_rewards": [
            {"type": "first_lesson_of_day", "crystals": 1},
            {"type": "perfect_lesson", "crystals": 2},
        ],
        "leveled_up": False,
        "new_level": 1,
        "current_streak": 1,
        "streak_message": "Streak started! Day 1",
        "achievement_rewards": {"count": 1, "xp": 5, "crystals": 0, "codes": ["first_lesson"]},
    })

    response = client.post(
        f"{BASE}/lessons/7/stages/responda/complete", headers=AUTH, json={"perfect": True}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["crystals_awarded"] == 3
    assert body["achievement_rewards"]["codes"] == ["first_lesson"]
    mock_service.complete_stage.assert_awaited_once_with("member-42", 7, StageKind.RESPONDA, perfect=True)


def test_get_crystals(client, mock_service):
    mock_service.get_crystal_summary = AsyncMock(return_value=CrystalSummary(
        user_id="member-42", balance=15, freezes_available=1, max_freezes=2,
        next_freeze_cost=20, current_streak=9, longest_streak=12,
    ))

    response = client.get(f"{BASE}/crystals", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["balance"] == 15
    assert body["next_freeze_cost"] == 20


def test_purchase_streak_freeze(client, mock_service):
    mock_service.purchase_streak_freeze = AsyncMock(return_value={
        "crystals_spent": 10, "crystals_remaining": 5, "freezes_available": 1, "next_freeze_cost": 20,
    })

    response = client.post(f"{BASE}/streak/freezes/purchase", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["freezes_available"] == 1
    mock_service.purchase_streak_freeze.assert_awaited_once_with("member-42")


# ============================================================================
# Error Mapping Tests
# ============================================================================

def test_progression_error_maps_to_conflict(client, mock_service):
    mock_service.complete_stage = AsyncMock(side_effect=InvalidStageTransition(
        "Stage medite of lesson 7 is locked", lesson_id=7, stage="medite", reason="stage_locked"
    ))

    response = client.post(f"{BASE}/lessons/7/stages/medite/complete", headers=AUTH)

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "InvalidStageTransition"
    assert body["details"]["reason"] == "stage_locked"


def test_insufficient_crystals_details(client, mock_service):
    mock_service.recover_streak = AsyncMock(side_effect=InsufficientCrystals(required=6, available=3))

    response = client.post(f"{BASE}/streak/recover", headers=AUTH)

    assert response.status_code == 409
    assert response.json()["details"] == {"required": 6, "available": 3}


def test_not_found_maps_to_404(client, mock_service):
    mock_service.get_progress_tree = AsyncMock(side_effect=RecordNotFoundError("gone", record_type="Lesson"))

    response = client.get(f"{BASE}/progress", headers=AUTH)

    assert response.status_code == 404


def test_unexpected_error_maps_to_500(app, mock_service):
    mock_service.get_snapshot = AsyncMock(side_effect=RuntimeError("boom"))
    client = TestClient(app, raise_server_exceptions=False)

    response = client.get(f"{BASE}/profile", headers=AUTH)

    assert response.status_code == 500


def test_metrics_endpoint(client):
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "study_stage_completions_total" in response.text


def test_freeze_limit_maps_to_conflict(client, mock_service):
    mock_service.purchase_streak_freeze = AsyncMock(side_effect=StreakFreezeLimitReached(held=2))

    response = client.post(f"{BASE}/streak/freezes/purchase", headers=AUTH)

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "StreakFreezeLimitReached"
    assert body["details"] == {"held": 2}


# ============================================================================
# Middleware Tests
# ============================================================================

def test_rate_limit_key_is_member():
    request = MagicMock()
    request.path_params = {"user_id": "member-42"}

    assert middleware.member_rate_key(request) == "member:member-42"


def test_rate_limit_key_falls_back_to_address():
    request = MagicMock()
    request.path_params = {}
    request.client.host = "10.0.0.5"

    assert middleware.member_rate_key(request) == "10.0.0.5"


def test_cors_disabled_without_origins(monkeypatch):
    monkeypatch.setattr(middleware, "CORS_ORIGINS", [])
    app = MagicMock()

    middleware.setup_cors(app)

    app.add_middleware.assert_not_called()


def test_cors_configured_origins(monkeypatch):
    monkeypatch.setattr(middleware, "CORS_ORIGINS", ["https://app.deoglory.example"])
    app = MagicMock()

    middleware.setup_cors(app)

    kwargs = app.add_middleware.call_args[1]
    assert kwargs["allow_origins"] == ["https://app.deoglory.example"]
    assert kwargs["allow_credentials"] is False
