import time

import jwt

from sps.auth.service import TokenService
from sps.models.audit import AuditFilters
from sps.utils.config import JWTSettings

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, bearer, login


def test_login_returns_user_and_token_pair(client):
    data = login(client)
    assert data["user"] == {"id": 1, "name": "admin", "email": ADMIN_EMAIL, "type": "admin"}
    assert data["expiresIn"] == "24h"

    claims = jwt.decode(data["accessToken"], options={"verify_signature": False})
    assert claims["id"] == 1
    assert claims["type"] == "admin"
    assert {"iat", "exp", "jti"} <= set(claims)


def test_wrong_password_is_rejected_and_audited(client, container):
    res = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": "wrong-password"})
    assert res.status_code == 401
    body = res.json()
    assert body["success"] is False
    assert body["error"] == "Invalid credentials"

    failed = container.audit.query(AuditFilters(action="login_failed")).entries
    assert len(failed) == 1
    assert failed[0].success is False
    assert failed[0].user_email == ADMIN_EMAIL


def test_login_validation_error_envelope(client):
    res = client.post("/api/auth/login", json={"email": "not-an-email"})
    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "Invalid data provided"
    fields = {d["field"] for d in body["details"]}
    assert {"email", "password"} <= fields


def test_refresh_token_works_exactly_once(client):
    first = login(client)

    res = client.post("/api/auth/refresh", json={"refreshToken": first["refreshToken"]})
    assert res.status_code == 200, res.text
    second = res.json()["data"]
    assert second["refreshToken"] != first["refreshToken"]

    replay = client.post("/api/auth/refresh", json={"refreshToken": first["refreshToken"]})
    assert replay.status_code == 401

    res = client.post("/api/auth/refresh", json={"refreshToken": second["refreshToken"]})
    assert res.status_code == 200


def test_access_token_is_not_a_refresh_token(client):
    data = login(client)
    res = client.post("/api/auth/refresh", json={"refreshToken": data["accessToken"]})
    assert res.status_code == 401


def test_refresh_token_is_not_an_access_token(client):
    data = login(client)
    res = client.get("/api/users", headers=bearer(data["refreshToken"]))
    assert res.status_code == 403


def test_logout_revokes_refresh_token(client):
    data = login(client)
    res = client.post("/api/auth/logout", headers=bearer(data["accessToken"]))
    assert res.status_code == 200

    res = client.post("/api/auth/refresh", json={"refreshToken": data["refreshToken"]})
    assert res.status_code == 401


def test_missing_or_malformed_header_is_401(client):
    res = client.get("/api/users")
    assert res.status_code == 401
    body = res.json()
    assert "success" not in body
    assert body["error"] == "Access token required"
    assert body["path"] == "/api/users"

    res = client.get("/api/users", headers={"Authorization": "Basic abc"})
    assert res.status_code == 401


def test_bad_signature_is_403(client):
    forged = jwt.encode({"id": 1, "email": ADMIN_EMAIL, "type": "admin"}, "not-the-secret", algorithm="HS256")
    res = client.get("/api/users", headers=bearer(forged))
    assert res.status_code == 403
    assert res.json()["error"] == "Invalid or expired token"


def test_expired_token_is_403(client, container):
    past = TokenService(
        container.store,
        container.backend,
        container.audit,
        container.settings.jwt,
        clock=lambda: time.time() - 2 * 24 * 3600,
    )
    user = container.store.get(1)
    res = client.get("/api/users", headers=bearer(past.issue_access_token(user)))
    assert res.status_code == 403


def test_auth_stats_counts_active_refresh_tokens(client):
    data = login(client)
    res = client.get("/api/auth/stats", headers=bearer(data["accessToken"]))
    assert res.status_code == 200
    stats = res.json()["data"]
    assert stats["activeRefreshTokens"] == 1
    assert stats["loginsToday"] == 1


def test_token_cleanup_drops_unverifiable_tokens(container):
    container.backend.set("refresh_token:99", "garbage", 3600)
    result = container.tokens.cleanup()
    assert result["removed"] == 1
    assert container.backend.get("refresh_token:99") is None


def test_duration_settings_drive_token_lifetime():
    settings = JWTSettings(expires_in="15m", refresh_expires_in="30s")
    assert settings.access_ttl == 900
    assert settings.refresh_ttl == 30
