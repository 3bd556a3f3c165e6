"""
Integration tests for subscription API endpoints.

Tests the full request/response cycle for subscription routes including:
- GET /subscriptions/plans
- GET /subscriptions/current
- GET /subscriptions/ai-usage-limit
- POST /subscriptions/increment-ai-usage
- GET /subscriptions/letter-limit
- POST /subscriptions/change-plan
- POST /subscriptions/{id}/cancel and /{id}/reactivate
"""
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from motivai.core.auth import get_current_user
from motivai.core.config import settings
from motivai.core.rate_limit import limiter
from motivai.db.base import get_db
from motivai.main import app
from motivai.models import SubscriptionEvent, SubscriptionStatus

PREFIX = f"{settings.api_v1_prefix}/subscriptions"


# Test fixtures


@pytest.fixture
def client(db: Session):
    """Unauthenticated client bound to the test database."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False

    yield TestClient(app)

    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture
def auth_client(client, user):
    """Client authenticated as ``user``."""
    app.dependency_overrides[get_current_user] = lambda: user
    return client


@pytest.fixture
def current_subscription(user, make_subscription):
    """Running basic subscription with a cycle boundary in the future."""
    now = datetime.utcnow()
    return make_subscription(
        user.id,
        plan="basic",
        start_date=now - timedelta(days=5),
        end_date=now + timedelta(days=25),
        ai_usage_reset=now + timedelta(days=25),
        created_at=now - timedelta(days=5),
    )


class TestPlansEndpoint:

    def test_plans_are_public(self, client):
        response = client.get(f"{PREFIX}/plans")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        ids = [plan["id"] for plan in body["data"]]
        assert ids == ["free", "basic", "pro", "premium"]

    def test_premium_is_unlimited(self, client):
        data = client.get(f"{PREFIX}/plans").json()["data"]
        premium = next(plan for plan in data if plan["id"] == "premium")

        assert premium["unlimited_ai"] is True
        assert premium["monthly_ai_limit"] is None


class TestCurrentSubscription:

    def test_requires_authentication(self, client):
        response = client.get(f"{PREFIX}/current")

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Not authenticated", "status": 401}

    def test_without_subscription(self, auth_client):
        response = auth_client.get(f"{PREFIX}/current")

        assert response.status_code == 200
        body = response.json()
        assert body["data"] is None
        assert body["message"] == "Aucun abonnement actif"

    def test_with_subscription(self, auth_client, current_subscription):
        response = auth_client.get(f"{PREFIX}/current")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == current_subscription.id
        assert data["plan"] == "basic"
        assert data["can_use_ai"] is True
        assert data["ai_limit_remaining"] == 5
        assert data["is_expired"] is False
        assert data["remaining_days"] in (25, 26)


class TestAIUsage:

    def test_limit_without_subscription(self, auth_client):
        data = auth_client.get(f"{PREFIX}/ai-usage-limit").json()["data"]

        assert data["can_use"] is False
        assert data["plan"] == "free"
        assert data["current_usage"] == 0

    def test_increment_records_usage(self, auth_client, db, current_subscription):
        response = auth_client.post(f"{PREFIX}/increment-ai-usage")

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Utilisation IA enregistrée"
        assert body["data"]["current_usage"] == 1
        assert body["data"]["remaining"] == 4

        db.refresh(current_subscription)
        assert current_subscription.ai_usage_count == 1
        assert current_subscription.ai_usage_total_all_time == 1

    def test_quota_exceeded_returns_403(self, auth_client, db, current_subscription):
        current_subscription.ai_usage_count = 5
        db.commit()

        response = auth_client.post(f"{PREFIX}/increment-ai-usage")

        assert response.status_code == 403
        body = response.json()
        assert body["success"] is False
        assert body["status"] == 403
        assert body["quota_type"] == "ai"
        assert body["used"] == 5
        assert body["limit"] == 5

        db.refresh(current_subscription)
        assert current_subscription.ai_usage_count == 5

    def test_increment_without_subscription_is_forbidden(self, auth_client):
        response = auth_client.post(f"{PREFIX}/increment-ai-usage")

        assert response.status_code == 403
        assert response.json()["error"] == "Aucun abonnement actif pour utiliser l'IA"


class TestLetterLimit:

    def test_free_user_capped(self, auth_client):
        data = auth_client.get(f"{PREFIX}/letter-limit", params={"current_count": 3}).json()["data"]

        assert data == {"can_create": False, "current_count": 3, "limit": 3, "plan": "free"}

    def test_paid_plan_unlimited(self, auth_client, current_subscription):
        data = auth_client.get(f"{PREFIX}/letter-limit", params={"current_count": 40}).json()["data"]

        assert data["can_create"] is True
        assert data["limit"] is None

    def test_negative_count_rejected(self, auth_client):
        response = auth_client.get(f"{PREFIX}/letter-limit", params={"current_count": -1})
        assert response.status_code == 422


class TestChangePlan:

    def test_upgrade(self, auth_client, db, current_subscription):
        response = auth_client.post(f"{PREFIX}/change-plan", json={"plan": "pro"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["plan"] == "pro"
        assert data["plan_history"][0]["plan"] == "basic"

        event = db.query(SubscriptionEvent).filter_by(event_type="updated").one()
        assert event.payload["change_type"] == "upgrade"

    def test_same_plan_rejected(self, auth_client, current_subscription):
        response = auth_client.post(f"{PREFIX}/change-plan", json={"plan": "basic"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_without_subscription(self, auth_client):
        response = auth_client.post(f"{PREFIX}/change-plan", json={"plan": "pro"})

        assert response.status_code == 404
        assert response.json()["error"] == "Aucun abonnement actif"


class TestCancelAndReactivate:

    def test_cancel_at_period_end_keeps_access(self, auth_client, db, current_subscription):
        response = auth_client.post(
            f"{PREFIX}/{current_subscription.id}/cancel",
            json={"reason": "too expensive"},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "active"
        assert data["cancel_at_period_end"] is True
        assert data["is_auto_renew"] is False
        assert data["cancel_reason"] == "too expensive"

    def test_immediate_cancel_then_reactivate(self, auth_client, db, current_subscription):
        cancelled = auth_client.post(
            f"{PREFIX}/{current_subscription.id}/cancel",
            json={"at_period_end": False},
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["data"]["status"] == SubscriptionStatus.CANCELLED

        reactivated = auth_client.post(f"{PREFIX}/{current_subscription.id}/reactivate", json={})

        assert reactivated.status_code == 200
        body = reactivated.json()
        assert body["message"] == "Abonnement réactivé"
        assert body["data"]["status"] == SubscriptionStatus.ACTIVE
        assert len(body["data"]["plan_history"]) == 1

    def test_reactivate_active_subscription_rejected(self, auth_client, current_subscription):
        response = auth_client.post(f"{PREFIX}/{current_subscription.id}/reactivate", json={})
        assert response.status_code == 400

    def test_cancel_other_users_subscription_forbidden(self, auth_client, other_user, make_subscription):
        foreign = make_subscription(other_user.id)

        response = auth_client.post(f"{PREFIX}/{foreign.id}/cancel", json={})

        assert response.status_code == 403

    def test_cancel_unknown_subscription(self, auth_client):
        response = auth_client.post(f"{PREFIX}/missing/cancel", json={})

        assert response.status_code == 404
        assert response.json()["error"] == "Abonnement non trouvé"


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
