"""
Tests for token handling and principal resolution.
"""

from datetime import datetime, timedelta

import jwt

from utils.principal import (
    ANONYMOUS, current_principal, generate_token, load_principal, principal_from_claims, verify_token,
)


class TestTokens:
    def test_round_trip(self, app):
        claims = verify_token(generate_token(7, "a@example.com"))
        assert (claims["family_id"], claims["email"]) == (7, "a@example.com")

    def test_expired_token(self, app):
        token = jwt.encode(
            {"family_id": 7, "email": "a@example.com", "exp": datetime.utcnow() - timedelta(hours=1)},
            app.config["JWT_SECRET"], algorithm=app.config["JWT_ALGORITHM"],
        )
        assert verify_token(token) is None

    def test_wrong_secret(self, app):
        token = jwt.encode({"family_id": 7}, "other-secret", algorithm=app.config["JWT_ALGORITHM"])
        assert verify_token(token) is None


class TestPrincipalFromClaims:
    def test_missing_claims_are_anonymous(self):
        assert principal_from_claims(None, set()) is ANONYMOUS
        assert principal_from_claims({"email": "a@example.com"}, set()) is ANONYMOUS

    def test_admin_allowlist_is_case_insensitive(self):
        principal = principal_from_claims({"family_id": 1, "email": "Admin@Example.com"}, {"admin@example.com"})
        assert principal.is_admin is True
        assert principal.actor == "admin@example.com"

    def test_owns(self):
        principal = principal_from_claims({"family_id": 3, "email": "x@example.com"}, set())
        assert principal.owns(3) and not principal.owns(4)
        assert not ANONYMOUS.owns(None)
        assert ANONYMOUS.actor == "anonymous"


class TestLoadPrincipal:
    def test_hook_returns_none_and_sets_principal(self, app):
        token = generate_token(5, "b@example.com")
        with app.test_request_context("/", headers={"Authorization": f"Bearer {token}"}):
            assert load_principal() is None
            assert current_principal().family_id == 5

    def test_anonymous_request_reaches_view(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.get_json()["status"] == "running"
