"""Tests for bearer token verification."""

from fastapi.testclient import TestClient
from jose import jwt

from health_diary.services.jwt import JWTService


class TestJWTService:
    """Token checks against the account service's claims."""

    def test_round_trip_claims(self):
        service = JWTService()
        claims = service.decode_token(service.create_token("acct-1", "a@example.com", "Ada"))
        assert claims.user_id == "acct-1"
        assert claims.email == "a@example.com"
        assert claims.display_name == "Ada"

    def test_expired_token(self):
        service = JWTService()
        service.expire_minutes = -5
        assert service.decode_token(service.create_token("acct-1")) is None

    def test_wrong_secret(self):
        token = jwt.encode({"sub": "acct-1"}, "another-secret", algorithm="HS256")
        assert JWTService().decode_token(token) is None

    def test_missing_subject(self):
        service = JWTService()
        token = jwt.encode({"email": "a@example.com"}, service.secret_key, algorithm=service.algorithm)
        assert service.decode_token(token) is None

    def test_audience_checked_when_configured(self):
        issuer = JWTService()
        issuer.audience = "health-diary"
        token = issuer.create_token("acct-1")
        assert issuer.decode_token(token).user_id == "acct-1"

        other = JWTService()
        other.audience = "billing"
        assert other.decode_token(token) is None


class TestCurrentUser:
    """Authenticated requests."""

    def test_first_request_creates_profile(self, client: TestClient, test_user: dict, pipeline):
        response = client.get(
            "/api/v1/entries/",
            headers={"Authorization": f"Bearer {test_user['token']}"},
        )
        assert response.status_code == 200
        prefs = pipeline.records.get_user_preferences(test_user["user_id"])
        assert prefs.topics == ["wellness", "mood"]

    def test_non_bearer_scheme(self, client: TestClient, test_user: dict):
        response = client.get(
            "/api/v1/entries/",
            headers={"Authorization": f"Token {test_user['token']}"},
        )
        assert response.status_code == 401
