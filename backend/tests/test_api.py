"""
SuperClip Backend — API Integration Tests
============================================

What we test (full middleware stack, DB session mocked):
    ✅ /api/auth: register, login, me
    ✅ /api/subscription: plan, feature checks, usage read/record, 401/402/403/429
    ✅ /health
    ✅ Error body shape and correlation IDs
    ✅ Security headers, rate limiting, internal-key bypass

Subscriptions come from the placeholder resolver, so the last character of
the token's user id picks the plan ('5' → PREMIUM, '0' → expired FREE, ...).
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.models.user import User
from app.services.account_service import hash_password
from app.services.subscription_service import UNLIMITED


def _result(value):
    """Stand-in for the Result returned by AsyncSession.execute."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _user(email="ada@example.com", password="correct-horse", name="Ada"):
    return User(
        id=uuid.uuid4(),
        email=email,
        password_hash=hash_password(password, 4),
        name=name,
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


# ══════════════════════════════════════════════════════════════════════════
# Auth
# ══════════════════════════════════════════════════════════════════════════

class TestAuthRoutes:

    @pytest.mark.asyncio
    async def test_register_returns_user_and_token(self, test_client, mock_db_session, tokens):
        mock_db_session.execute.return_value = _result(None)

        response = await test_client.post(
            "/api/auth/register",
            json={"email": "Ada@Example.com", "password": "correct-horse", "name": "Ada"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["user"]["email"] == "ada@example.com"
        assert body["user"]["name"] == "Ada"
        assert body["token_type"] == "bearer"
        assert "password" not in str(body["user"])

        payload = tokens.verify(body["token"])
        assert payload.user_id == body["user"]["id"]
        assert payload.email == "ada@example.com"
        mock_db_session.add.assert_called_once()

    @pytest.mark.asyncio
    async def test_register_stores_bcrypt_hash(self, test_client, mock_db_session):
        mock_db_session.execute.return_value = _result(None)

        await test_client.post(
            "/api/auth/register",
            json={"email": "ada@example.com", "password": "correct-horse"},
        )

        stored = mock_db_session.add.call_args[0][0]
        assert stored.password_hash.startswith("$2")
        assert stored.password_hash != "correct-horse"

    @pytest.mark.asyncio
    async def test_register_duplicate_email_is_409(self, test_client, mock_db_session):
        mock_db_session.execute.return_value = _result(_user())

        response = await test_client.post(
            "/api/auth/register",
            json={"email": "ada@example.com", "password": "correct-horse"},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_register_race_on_unique_index_is_409(self, test_client, mock_db_session):
        mock_db_session.execute.return_value = _result(None)
        mock_db_session.flush.side_effect = IntegrityError("INSERT", {}, Exception("dup"))

        response = await test_client.post(
            "/api/auth/register",
            json={"email": "ada@example.com", "password": "correct-horse"},
        )

        assert response.status_code == 409

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"email": "not-an-email", "password": "correct-horse"},
            {"email": "ada@example.com", "password": "short"},
            {"email": "ada@example.com", "password": "é" * 40},
            {"password": "correct-horse"},
        ],
    )
    async def test_register_invalid_body_is_422(self, test_client, payload):
        response = await test_client.post("/api/auth/register", json=payload)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_login_success(self, test_client, mock_db_session, tokens):
        user = _user()
        mock_db_session.execute.return_value = _result(user)

        response = await test_client.post(
            "/api/auth/login",
            json={"email": "ADA@example.com", "password": "correct-horse"},
        )

        assert response.status_code == 200
        assert tokens.verify(response.json()["token"]).user_id == str(user.id)

    @pytest.mark.asyncio
    async def test_login_wrong_password_is_401(self, test_client, mock_db_session):
        mock_db_session.execute.return_value = _result(_user())

        response = await test_client.post(
            "/api/auth/login",
            json={"email": "ada@example.com", "password": "wrong-password"},
        )

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_login_unknown_email_same_message(self, test_client, mock_db_session):
        mock_db_session.execute.return_value = _result(None)

        response = await test_client.post(
            "/api/auth/login",
            json={"email": "ghost@example.com", "password": "whatever"},
        )

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_me_returns_account(self, test_client, mock_db_session, auth_headers):
        user = _user()
        mock_db_session.execute.return_value = _result(user)

        response = await test_client.get(
            "/api/auth/me", headers=auth_headers(str(user.id), user.email)
        )

        assert response.status_code == 200
        assert response.json()["id"] == str(user.id)
        assert response.json()["email"] == "ada@example.com"

    @pytest.mark.asyncio
    async def test_me_for_deleted_account_is_404(self, test_client, mock_db_session, auth_headers):
        mock_db_session.execute.return_value = _result(None)

        response = await test_client.get("/api/auth/me", headers=auth_headers(str(uuid.uuid4())))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_me_for_non_uuid_subject_is_404(self, test_client, auth_headers):
        response = await test_client.get("/api/auth/me", headers=auth_headers("user-5"))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_me_without_token_is_401(self, test_client):
        response = await test_client.get("/api/auth/me")
        assert response.status_code == 401


# ══════════════════════════════════════════════════════════════════════════
# Subscription
# ══════════════════════════════════════════════════════════════════════════

class TestSubscriptionRoutes:

    @pytest.mark.asyncio
    async def test_get_subscription_premium(self, test_client, auth_headers):
        response = await test_client.get("/api/subscription", headers=auth_headers("user-5"))

        assert response.status_code == 200
        body = response.json()
        assert body["plan"] == "PREMIUM"
        assert body["status"] == "ACTIVE"
        assert body["features"] == [
            "api-calls",
            "basic-feature",
            "premium-feature",
            "standard-feature",
            "storage",
        ]

    @pytest.mark.asyncio
    async def test_get_subscription_reports_expired(self, test_client, auth_headers):
        response = await test_client.get("/api/subscription", headers=auth_headers("user-10"))

        assert response.status_code == 200
        assert response.json()["status"] == "EXPIRED"

    @pytest.mark.asyncio
    async def test_get_subscription_requires_token(self, test_client):
        response = await test_client.get("/api/subscription")
        assert response.status_code == 401

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "user_id, feature, allowed",
        [
            ("user-2", "premium-feature", False),
            ("user-5", "premium-feature", True),
            ("user-8", "anything-at-all", True),
            ("user-a", "basic-feature", True),
            ("user-a", "storage", False),
        ],
    )
    async def test_feature_check(self, test_client, auth_headers, user_id, feature, allowed):
        response = await test_client.get(
            f"/api/subscription/features/{feature}", headers=auth_headers(user_id)
        )

        assert response.status_code == 200
        assert response.json()["allowed"] is allowed

    @pytest.mark.asyncio
    async def test_feature_check_expired_is_402(self, test_client, auth_headers):
        response = await test_client.get(
            "/api/subscription/features/basic-feature", headers=auth_headers("user-0")
        )

        assert response.status_code == 402
        assert response.json()["details"]["subscription"]["status"] == "EXPIRED"

    @pytest.mark.asyncio
    async def test_usage_starts_at_zero(self, test_client, auth_headers):
        response = await test_client.get(
            "/api/subscription/usage/api-calls", headers=auth_headers("user-a")
        )

        assert response.json() == {
            "usage_type": "api-calls",
            "current": 0,
            "limit": 100,
            "remaining": 100,
        }

    @pytest.mark.asyncio
    async def test_record_usage(self, test_client, auth_headers, usage_store):
        headers = auth_headers("user-1")

        await test_client.post("/api/subscription/usage/storage", json={"increment": 30}, headers=headers)
        response = await test_client.post(
            "/api/subscription/usage/storage", json={"increment": 20}, headers=headers
        )

        assert response.status_code == 200
        assert response.json() == {"usage_type": "storage", "current": 50, "limit": 100, "remaining": 50}
        assert await usage_store.get("user-1", "storage") == 50

    @pytest.mark.asyncio
    async def test_record_usage_default_increment(self, test_client, auth_headers):
        response = await test_client.post(
            "/api/subscription/usage/api-calls", json={}, headers=auth_headers("user-a")
        )
        assert response.json()["current"] == 1

    @pytest.mark.asyncio
    async def test_record_usage_not_in_plan_is_403(self, test_client, auth_headers):
        response = await test_client.post(
            "/api/subscription/usage/storage", json={"increment": 1}, headers=auth_headers("user-a")
        )

        assert response.status_code == 403
        body = response.json()
        assert body["message"] == "Your subscription does not include access to storage"
        assert body["details"] == {"feature": "storage", "upgrade": True}

    @pytest.mark.asyncio
    async def test_record_unknown_usage_type_is_404_for_enterprise(
        self, test_client, auth_headers, usage_store
    ):
        headers = auth_headers("user-7")

        for i in range(5):
            response = await test_client.post(
                f"/api/subscription/usage/junk-{i}", json={"increment": 1}, headers=headers
            )
            assert response.status_code == 404
            assert response.json()["details"] == {"usage_type": f"junk-{i}"}

        assert usage_store._counters == {}

    @pytest.mark.asyncio
    async def test_read_unknown_usage_type_is_404(self, test_client, auth_headers):
        response = await test_client.get(
            "/api/subscription/usage/bandwidth", headers=auth_headers("user-7")
        )

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_overlong_usage_type_is_422(self, test_client, auth_headers, usage_store):
        response = await test_client.post(
            f"/api/subscription/usage/{'x' * 90}", json={"increment": 1}, headers=auth_headers("user-7")
        )

        assert response.status_code == 422
        assert usage_store._counters == {}

    @pytest.mark.asyncio
    async def test_unknown_usage_type_still_requires_token(self, test_client):
        response = await test_client.post("/api/subscription/usage/junk", json={"increment": 1})
        assert response.status_code == 401

    @pytest.mark.asyncio
    @pytest.mark.parametrize("increment", [UNLIMITED + 1, 10 ** 30])
    async def test_oversized_increment_is_422(self, test_client, auth_headers, usage_store, increment):
        response = await test_client.post(
            "/api/subscription/usage/api-calls",
            json={"increment": increment},
            headers=auth_headers("user-7"),
        )

        assert response.status_code == 422
        assert await usage_store.get("user-7", "api-calls") == 0

    @pytest.mark.asyncio
    async def test_enterprise_may_record_up_to_unlimited(self, test_client, auth_headers):
        response = await test_client.post(
            "/api/subscription/usage/api-calls",
            json={"increment": UNLIMITED},
            headers=auth_headers("user-7"),
        )

        assert response.status_code == 200
        assert response.json()["current"] == UNLIMITED

    @pytest.mark.asyncio
    async def test_record_usage_over_quota_is_429(self, test_client, auth_headers, usage_store):
        await usage_store.increment("user-a", "api-calls", 99)
        headers = auth_headers("user-a")

        ok = await test_client.post(
            "/api/subscription/usage/api-calls", json={"increment": 1}, headers=headers
        )
        denied = await test_client.post(
            "/api/subscription/usage/api-calls", json={"increment": 1}, headers=headers
        )

        assert ok.status_code == 200
        assert denied.status_code == 429
        body = denied.json()
        assert body["error"] == "quota_exceeded"
        assert body["details"]["current_usage"] == 100
        assert body["details"]["limit"] == 100
        assert body["details"]["upgrade"] is True
        assert await usage_store.get("user-a", "api-calls") == 100

    @pytest.mark.asyncio
    async def test_record_usage_negative_is_422(self, test_client, auth_headers):
        response = await test_client.post(
            "/api/subscription/usage/api-calls", json={"increment": -3}, headers=auth_headers("user-a")
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_record_usage_expired_is_402(self, test_client, auth_headers, usage_store):
        response = await test_client.post(
            "/api/subscription/usage/api-calls", json={"increment": 1}, headers=auth_headers("user-0")
        )

        assert response.status_code == 402
        assert await usage_store.get("user-0", "api-calls") == 0


# ══════════════════════════════════════════════════════════════════════════
# Health, headers, rate limiting
# ══════════════════════════════════════════════════════════════════════════

class TestHealth:

    @pytest.mark.asyncio
    async def test_health_reports_components(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] in ("healthy", "degraded")
        assert body["token_signing"] == "configured"
        assert body["usage_store"] == "memory"
        assert body["version"] == "1.0.0"


class TestCrossCutting:

    @pytest.mark.asyncio
    async def test_security_headers_present(self, test_client):
        response = await test_client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "max-age=31536000" in response.headers["Strict-Transport-Security"]
        assert "default-src 'self'" in response.headers["Content-Security-Policy"]

    @pytest.mark.asyncio
    async def test_request_id_generated(self, test_client):
        response = await test_client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.asyncio
    async def test_request_id_echoed_into_error_body(self, test_client):
        response = await test_client.get(
            "/api/subscription", headers={"X-Request-ID": "trace-123"}
        )

        assert response.status_code == 401
        assert response.headers["X-Request-ID"] == "trace-123"
        assert response.json()["request_id"] == "trace-123"

    @pytest.mark.asyncio
    async def test_oversized_request_id_replaced(self, test_client):
        response = await test_client.get("/health", headers={"X-Request-ID": "x" * 200})
        assert response.headers["X-Request-ID"] != "x" * 200

    @pytest.mark.asyncio
    async def test_rate_limit(self, test_client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_requests", 2)
        headers = auth_headers("user-5")

        first = await test_client.get("/api/subscription", headers=headers)
        second = await test_client.get("/api/subscription", headers=headers)
        third = await test_client.get("/api/subscription", headers=headers)

        assert first.headers["RateLimit-Remaining"] == "1"
        assert second.status_code == 200
        assert third.status_code == 429
        assert third.json()["error"] == "rate_limit_exceeded"
        assert int(third.headers["Retry-After"]) > 0

        # Rejected requests still carry a correlation ID
        assert third.headers["X-Request-ID"]
        assert third.json()["request_id"] == third.headers["X-Request-ID"]

        # Health checks are never limited
        assert (await test_client.get("/health")).status_code == 200

    @pytest.mark.asyncio
    async def test_internal_key_bypasses_rate_limit(self, test_client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_requests", 1)
        monkeypatch.setattr(settings, "internal_api_key", "internal-test-key")
        headers = {**auth_headers("user-5"), "X-API-Key": "internal-test-key"}

        for _ in range(3):
            response = await test_client.get("/api/subscription", headers=headers)
            assert response.status_code == 200
