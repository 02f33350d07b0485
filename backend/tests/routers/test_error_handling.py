# tests/routers/test_error_handling.py
"""
Tests for authentication failures and the error response format.
"""

from datetime import timedelta

from tests.conftest import auth_headers, create_position, create_user, days_ago
from tracker.security import JWTHandler
from tracker.services.ledger.recalculation import SnapshotRecalculator
from tracker.services.ledger.types import RecalculationResult


class TestAuthentication:
    """Bearer token handling in get_current_user."""

    async def test_missing_token(self, client):
        """Should answer 401 with a Bearer challenge."""
        response = await client.get("/positions")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json() == {
            "error": "UnauthorizedError",
            "message": "Not authenticated",
            "details": None,
        }

    async def test_garbage_token(self, client):
        """Should reject a token that does not decode."""
        response = await client.get("/positions", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    async def test_expired_token(self, client, user):
        """Should reject an expired token."""
        token = JWTHandler.create_access_token(user.id, user.email, expires_delta=timedelta(seconds=-1))

        response = await client.get("/positions", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["message"] == "Token has expired"

    async def test_unknown_user(self, client, db):
        """Should reject a valid token for a user that does not exist."""
        ghost = await create_user(db, email="ghost@example.com")
        headers = auth_headers(ghost)
        await db.delete(ghost)
        await db.flush()

        response = await client.get("/positions", headers=headers)

        assert response.status_code == 401
        assert response.json()["message"] == "User not found"

    async def test_inactive_user(self, client, user, db):
        """Should reject an inactive account."""
        user.is_active = False
        await db.flush()

        response = await client.get("/positions", headers=auth_headers(user))

        assert response.status_code == 401
        assert response.json()["message"] == "User account is inactive"


class TestErrorFormat:
    """Exception handlers map service errors to ErrorDetail bodies."""

    async def test_request_validation_shape(self, client, user):
        """Should list each invalid field with its message and type."""
        response = await client.post(
            "/records",
            json={"position_id": 0, "type": "gift", "date": "yesterday"},
            headers=auth_headers(user),
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "ValidationError"
        assert body["message"] == "Request validation failed"
        fields = {d["field"] for d in body["details"]}
        assert {"body.position_id", "body.type", "body.date", "body.quantity"} <= fields
        assert all({"field", "message", "type"} <= set(d) for d in body["details"])

    async def test_recalculation_failure_is_500(self, client, user, db, monkeypatch):
        """Should answer 500 with the store code and roll the record back."""
        position = await create_position(db, user)

        async def failing_recalculate(self, db, user_id, position_id, from_date, options=None):
            return RecalculationResult.failure("40001", "could not serialize access")

        monkeypatch.setattr(SnapshotRecalculator, "recalculate", failing_recalculate)

        response = await client.post(
            "/records",
            json={
                "position_id": position.id,
                "type": "buy",
                "date": days_ago(1).isoformat(),
                "quantity": "1",
                "unit_value": "10",
            },
            headers=auth_headers(user),
        )

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "40001"
        assert body["message"] == "could not serialize access"
        assert body["details"] == {"position_id": position.id}

    async def test_service_validation_error_carries_field(self, client, user):
        """Should include the offending field in details."""
        response = await client.post(
            "/positions",
            json={"name": "Apple", "currency": "USD", "symbol": "AAPL", "quantity": "1"},
            headers=auth_headers(user),
        )

        assert response.status_code == 400
        assert response.json()["details"] == {"field": "unit_value"}

    async def test_error_response_keeps_earlier_data(self, client, user, db):
        """Should roll back only the failed request, not data committed before it."""
        position = await create_position(db, user, name="Kept")

        failed = await client.post(
            "/records",
            json={
                "position_id": position.id,
                "type": "sell",
                "date": days_ago(1).isoformat(),
                "quantity": "1",
                "unit_value": "10",
            },
            headers=auth_headers(user),
        )
        response = await client.get("/positions", headers=auth_headers(user))

        assert failed.status_code == 400
        assert response.status_code == 200
        assert [p["name"] for p in response.json()["items"]] == ["Kept"]
