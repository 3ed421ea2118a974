"""
HTTP API Tests

Tests cover:
1. Health check and settings
2. Account registration and approval
3. Transfer flow over HTTP
4. Dice round flow over HTTP
5. Error responses per failure kind
"""

import pytest
from fastapi.testclient import TestClient
from uuid import uuid4

from fbt_ledger.api import app, get_service
from fbt_ledger.service import LedgerService


@pytest.fixture
def client(service: LedgerService):
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def register(client, username, referral_code_friend=None, approve=True):
    response = client.post("/accounts", json={
        "username": username, "referral_code_friend": referral_code_friend,
    })
    assert response.status_code == 201
    account = response.json()
    if approve:
        assert client.post(f"/accounts/{account['id']}/approve").status_code == 200
    return account


def fund(client, account, field, value):
    response = client.put(f"/accounts/{account['id']}/balance", json={"field": field, "value": value})
    assert response.status_code == 200


class TestSystemEndpoints:
    """Tests for health and settings endpoints."""

    def test_health(self, client):
        """Test that the health check answers."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_toggle_direct_transfers(self, client):
        """Test reading and updating the global toggles."""
        assert client.get("/settings").json()["allow_direct_transfers"] is False
        response = client.patch("/settings", json={"allow_direct_transfers": True})
        assert response.status_code == 200
        assert response.json()["allow_direct_transfers"] is True


class TestAccountEndpoints:
    """Tests for account endpoints."""

    def test_register_and_approve_pays_referrer(self, client):
        """Test that approving over HTTP runs the referral walk."""
        alice = register(client, "alice")
        bob = register(client, "bob", referral_code_friend=alice["referral_code"], approve=False)

        response = client.post(f"/accounts/{bob['id']}/approve")

        assert response.status_code == 200
        assert response.json()["referral"]["credited"] == [alice["id"]]
        assert client.get(f"/accounts/{alice['id']}").json()["points"] == 100

    def test_approve_twice_is_conflict(self, client):
        """Test that a repeated approval returns 409."""
        alice = register(client, "alice")
        response = client.post(f"/accounts/{alice['id']}/approve")
        assert response.status_code == 409
        assert response.json()["type"] == "InvalidStateTransitionError"

    def test_unknown_account_is_404(self, client):
        """Test that a missing account returns 404."""
        assert client.get(f"/accounts/{uuid4()}").status_code == 404

    def test_reset_vip(self, client):
        """Test the VIP reset endpoint."""
        alice = register(client, "alice")
        response = client.post(f"/accounts/{alice['id']}/reset-vip")
        assert response.status_code == 200
        assert response.json()["vip_level"] == 0
        assert client.post(f"/accounts/{uuid4()}/reset-vip").status_code == 404

    def test_ledger_history(self, client):
        """Test the paginated history endpoint."""
        alice = register(client, "alice")
        fund(client, alice, "points", 10)
        response = client.get(f"/accounts/{alice['id']}/ledger", params={"limit": 5})
        assert response.status_code == 200
        body = response.json()
        assert body["total_count"] == 1
        assert body["balance"]["points"] == 10


class TestTransferEndpoints:
    """Tests for transfer endpoints."""

    def test_request_and_approve(self, client):
        """Test a transfer request followed by approval."""
        alice = register(client, "alice")
        bob = register(client, "bob")
        fund(client, alice, "points", 200)

        response = client.post("/transfers", json={
            "sender_id": alice["id"], "recipient": "bob", "amount": 50,
        })
        assert response.status_code == 201
        request_id = response.json()["request"]["id"]

        response = client.post(f"/transfers/{request_id}/approve")
        assert response.status_code == 200
        assert response.json()["request"]["status"] == "approved"
        assert client.get(f"/accounts/{bob['id']}").json()["points"] == 50

    def test_insufficient_points_is_402(self, client):
        """Test that an uncovered transfer returns 402."""
        alice = register(client, "alice")
        register(client, "bob")
        response = client.post("/transfers", json={
            "sender_id": alice["id"], "recipient": "bob", "amount": 50,
        })
        assert response.status_code == 402

    def test_self_transfer_is_400(self, client):
        """Test that a self transfer returns 400."""
        alice = register(client, "alice")
        fund(client, alice, "points", 10)
        response = client.post("/transfers", json={
            "sender_id": alice["id"], "recipient": "alice", "amount": 5,
        })
        assert response.status_code == 400

    def test_disabled_sender_is_403(self, client):
        """Test that a disabled sender gets 403."""
        alice = register(client, "alice")
        register(client, "bob")
        fund(client, alice, "points", 10)
        client.put(f"/accounts/{alice['id']}/disabled", json={"disabled": True})
        response = client.post("/transfers", json={
            "sender_id": alice["id"], "recipient": "bob", "amount": 5,
        })
        assert response.status_code == 403


class TestDiceEndpoints:
    """Tests for dice endpoints."""

    def test_round_flow(self, client):
        """Test opening a round, betting and resolving over HTTP."""
        alice = register(client, "alice")
        fund(client, alice, "points", 100)

        dice_round = client.post("/dice/rounds").json()
        assert client.get("/dice/rounds/current").json()["id"] == dice_round["id"]

        response = client.post(f"/dice/rounds/{dice_round['id']}/bets", json={
            "user_id": alice["id"], "chosen_number": 5, "amount": 40,
        })
        assert response.status_code == 201

        response = client.post(f"/dice/rounds/{dice_round['id']}/resolve", json={
            "number_colors": {"5": "white"},
        })
        assert response.status_code == 200
        assert response.json()["cash_credited"] == 20

        again = client.post(f"/dice/rounds/{dice_round['id']}/resolve", json={
            "number_colors": {"5": "white"},
        })
        assert again.status_code == 409

        account = client.get(f"/accounts/{alice['id']}").json()
        assert (account["points"], account["cash"]) == (60, 20)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
