from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from push_engine.auth import verify
from push_engine.features.push_notifications.domain import DispatchResult
from push_engine.features.push_notifications.domain.errors import (
    AudienceResolutionError,
    CampaignNotFoundError,
    CampaignStateError,
    CredentialError,
)
from push_engine.main import app

ROUTES = "push_engine.routes.notifications"


@pytest.fixture
def client(apply_auth_override):
    apply_auth_override(app)
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_sweep_returns_metrics(client, monkeypatch):
    sweep = AsyncMock(
        return_value={
            "manual": True,
            "eligible_recipients": 4,
            "messages_selected": 3,
            "selected_by_source": {"journey_day": 1, "scheduled_broadcast": 2},
            "total_sent": 2,
            "total_failed": 1,
            "tokens_pruned": 1,
            "total_duration_seconds": 0.4,
            "start_time": "2024-06-15T06:00:00+00:00",
        }
    )
    monkeypatch.setattr(f"{ROUTES}.run_daily_sweep", sweep)

    response = client.post("/notifications/sweep", json={"manual": True})

    assert response.status_code == 200
    data = response.json()
    assert data["total_sent"] == 2
    assert data["selected_by_source"]["scheduled_broadcast"] == 2
    sweep.assert_awaited_once_with(manual=True)


def test_sweep_outside_window_is_reported_as_skipped(client, monkeypatch):
    monkeypatch.setattr(
        f"{ROUTES}.run_daily_sweep",
        AsyncMock(return_value={"skipped": True, "reason": "outside_send_window"}),
    )

    response = client.post("/notifications/sweep")

    assert response.status_code == 200
    assert response.json()["skipped"] is True
    assert response.json()["reason"] == "outside_send_window"


@pytest.mark.parametrize(
    "error, status_code",
    [
        (CredentialError("invalid_grant", error_code="invalid_grant"), 502),
        (AudienceResolutionError("Directory unreachable"), 503),
    ],
)
def test_sweep_run_errors(client, monkeypatch, error, status_code):
    monkeypatch.setattr(f"{ROUTES}.run_daily_sweep", AsyncMock(side_effect=error))

    response = client.post("/notifications/sweep", json={"manual": False})

    assert response.status_code == status_code


def test_send_campaign(client, monkeypatch):
    job = AsyncMock(
        return_value={
            "campaign_id": "c-1",
            "status": "sent",
            "target_audience": "all",
            "total_sent": 0,
            "total_failed": 0,
            "sent_at": datetime(2024, 6, 15, tzinfo=UTC).isoformat(),
        }
    )
    monkeypatch.setattr(f"{ROUTES}.run_campaign_job", job)

    response = client.post("/notifications/campaigns/c-1/send")

    assert response.status_code == 200
    assert response.json()["status"] == "sent"
    assert response.json()["total_sent"] == 0
    job.assert_awaited_once_with("c-1")


@pytest.mark.parametrize(
    "error, status_code",
    [
        (CampaignNotFoundError("c-1"), 404),
        (CampaignStateError("c-1", "sent"), 409),
    ],
)
def test_send_campaign_operator_errors(client, monkeypatch, error, status_code):
    monkeypatch.setattr(f"{ROUTES}.run_campaign_job", AsyncMock(side_effect=error))

    response = client.post("/notifications/campaigns/c-1/send")

    assert response.status_code == status_code


def test_direct_push(client, monkeypatch):
    send = AsyncMock(return_value=DispatchResult(total_sent=1, tokens_pruned=1))
    monkeypatch.setattr(f"{ROUTES}.campaign_orchestrator.send_direct", send)

    response = client.post(
        "/notifications/direct",
        json={"user_id": "u1", "title": "Hi", "body": "There", "data": {"screen": "home"}},
    )

    assert response.status_code == 200
    assert response.json() == {"user_id": "u1", "sent": 1, "failed": 0, "tokens_pruned": 1}
    send.assert_awaited_once_with("u1", "Hi", "There", {"screen": "home"})


def test_direct_push_validates_body(client):
    response = client.post("/notifications/direct", json={"user_id": "u1", "title": ""})
    assert response.status_code == 422


def test_routes_require_authentication():
    app.dependency_overrides.clear()
    response = TestClient(app).post("/notifications/sweep", json={"manual": True})
    assert response.status_code in (401, 403)


def test_non_admin_is_forbidden(monkeypatch):
    app.dependency_overrides[verify.auth_dependency] = lambda: {"sub": "regular-user"}
    monkeypatch.setattr(verify, "is_admin", AsyncMock(return_value=False))
    try:
        response = TestClient(app).post("/notifications/sweep", json={"manual": True})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 403
