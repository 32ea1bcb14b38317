"""
Unit Tests for the HTTP API

Tests cover:
1. Health check
2. Caller identity headers
3. Error code to HTTP status mapping
4. Scheduler endpoints and their access control
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from ledger.api import create_app
from ledger.config import Settings
from ledger.service import LedgerService
from ledger.triggers import TriggerEvent


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


def as_user(uid: str, admin: bool = False) -> dict:
    headers = {"X-User-Id": uid}
    if admin:
        headers["X-User-Admin"] = "true"
    return headers


SCHEDULER = as_user("ops", admin=True)


class TestSystemEndpoints:
    """Tests for health and scheduler routes."""

    def test_health_check(self, client):
        """Test the health endpoint."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_cleanup_task(self, client):
        """Test that the ephemeral sweep endpoint reports deletions."""
        response = client.post("/tasks/cleanupEphemeralMessages", headers=SCHEDULER)

        assert response.status_code == 200
        assert response.json() == {"deleted": 0}

    def test_redeliver_task(self, client, service, add_user):
        """Test that the redelivery endpoint credits gifts missed on create."""
        service.triggers.remove_handler(TriggerEvent.GIFT_SENT, service.gifts.on_gift_sent)
        sender = add_user("sender", coins=5)
        add_user("receiver")
        service.send_gift(sender, "receiver", "rose")

        response = client.post("/tasks/redeliverGiftCredits", headers=SCHEDULER)

        assert response.status_code == 200
        assert response.json() == {"credited": 1}

    def test_monthly_report_task(self, client, store):
        """Test that the monthly report endpoint writes the report."""
        response = client.post("/tasks/monthlyReport", json={"month": "2025-03"}, headers=SCHEDULER)

        assert response.status_code == 200
        assert response.json() == {"month": "2025-03", "generated": True}
        assert store.get("monthly_reports/2025-03").exists

    def test_monthly_report_bad_month(self, client):
        """Test that malformed months fail request validation."""
        response = client.post("/tasks/monthlyReport", json={"month": "March"}, headers=SCHEDULER)

        assert response.status_code == 422


class TestSchedulerAccess:
    """Tests for who may trigger scheduler tasks."""

    def test_anonymous_rejected(self, client, store):
        """Test that tasks without identity or token are refused."""
        response = client.post("/tasks/monthlyReport", json={"month": "2025-03"})

        assert response.status_code == 401
        assert not store.get("monthly_reports/2025-03").exists

    def test_regular_user_rejected(self, client, add_user):
        """Test that non-admin callers cannot run tasks."""
        add_user("alice")

        response = client.post("/tasks/aggregateRevenue", headers=as_user("alice"))

        assert response.status_code == 403

    def test_scheduler_token(self):
        """Test that the configured scheduler token authorizes tasks."""
        service = LedgerService(settings=Settings(_env_file=None, scheduler_token="cron-secret"))
        client = TestClient(create_app(service))

        accepted = client.post("/tasks/cleanupEphemeralMessages", headers={"X-Scheduler-Token": "cron-secret"})
        refused = client.post("/tasks/cleanupEphemeralMessages", headers={"X-Scheduler-Token": "guess"})

        assert accepted.status_code == 200
        assert refused.status_code == 401


class TestCallableEndpoints:
    """Tests for callable routes."""

    def test_send_gift(self, client, store, add_user):
        """Test a gift sent through the API."""
        add_user("sender", coins=10)
        add_user("receiver")

        response = client.post("/callable/sendGift", json={"receiver_id": "receiver", "gift_id": "rose"},
                               headers=as_user("sender"))

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert store.get("users/sender").get("coins") == 9

    def test_missing_identity(self, client):
        """Test that calls without the identity header are rejected."""
        response = client.post("/callable/sendGift", json={"receiver_id": "receiver", "gift_id": "rose"})

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "unauthenticated"

    def test_insufficient_coins_maps_to_412(self, client, add_user):
        """Test that failed preconditions use their own status code."""
        add_user("sender", coins=0)
        add_user("receiver")

        response = client.post("/callable/sendGift", json={"receiver_id": "receiver", "gift_id": "rose"},
                               headers=as_user("sender"))

        assert response.status_code == 412
        assert response.json()["detail"]["code"] == "failed-precondition"

    def test_payout_lifecycle(self, client, store, admin, add_user):
        """Test request, approval, and a rejected second processing."""
        add_user("creator", balance=Decimal("100"))

        created = client.post("/callable/requestPayout", headers=as_user("creator"), json={
            "amount": "25.00", "payout_method": "paypal", "payout_details": {"email": "c@example.com"},
        })
        request_id = created.json()["data"]["payout_request_id"]
        approved = client.post("/callable/processPayout", headers=as_user("admin"),
                               json={"payout_request_id": request_id, "action": "approve"})
        again = client.post("/callable/processPayout", headers=as_user("admin"),
                            json={"payout_request_id": request_id, "action": "reject"})

        assert created.status_code == 200
        assert approved.status_code == 200
        assert approved.json()["data"]["platform_fee"] == "2.50"
        assert again.status_code == 412
        assert store.get("users/creator").get("balance") == Decimal("75.00")

    def test_invalid_payout_method(self, client, add_user):
        """Test that unknown payout methods fail request validation."""
        add_user("creator", balance=Decimal("100"))

        response = client.post("/callable/requestPayout", headers=as_user("creator"), json={
            "amount": "5", "payout_method": "cash", "payout_details": {},
        })

        assert response.status_code == 422

    def test_check_ban_status(self, client, add_user):
        """Test ban status for the caller and access control for others."""
        add_user("alice")
        add_user("bob", is_banned=True, ban_reason="spam")

        own = client.post("/callable/checkBanStatus", json={}, headers=as_user("alice"))
        other = client.post("/callable/checkBanStatus", json={"user_id": "bob"}, headers=as_user("alice"))

        assert own.status_code == 200
        assert own.json()["is_banned"] is False
        assert other.status_code == 403

    def test_admin_claim_header(self, client, store):
        """Test that the admin claim header authorizes settings initialization."""
        response = client.post("/callable/initializePremiumSettings", headers=as_user("ops", admin=True))

        assert response.status_code == 200
        assert response.json()["message"] == "Premium settings already exist."

    def test_profile(self, client, add_user):
        """Test reading the caller's profile."""
        add_user("alice", coins=7)

        response = client.get("/me", headers=as_user("alice"))

        assert response.status_code == 200
        assert response.json()["id"] == "alice"
        assert response.json()["coins"] == 7

    def test_unknown_friend_request(self, client, add_user):
        """Test that missing documents map to 404."""
        add_user("alice")

        response = client.post("/callable/respondToFriendRequest", headers=as_user("alice"),
                               json={"request_id": "missing", "action": "accept"})

        assert response.status_code == 404


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
