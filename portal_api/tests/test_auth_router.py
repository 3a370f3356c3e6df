"""Tests for session authentication and GET /api/v1/auth/whoami

Covers:
- AuthenticationMiddleware: public paths, missing / malformed / forged tokens
- TokenManager: issue/validate, expiry, issuer, dev secret generation
- whoami: user fields and the operator flag
"""

from __future__ import annotations

import time

import jwt
import pytest
from conftest import OPERATOR_EMAIL, _TEST_SESSION_SECRET, auth_headers, make_settings, operator_headers
from portal_api import __version__
from portal_api.security import TokenManager
from pydantic import SecretStr

WHOAMI_URL = "/api/v1/auth/whoami"


class TestWhoami:
    @pytest.mark.asyncio
    async def test_describes_caller(self, client) -> None:
        resp = await client.get(WHOAMI_URL, headers=auth_headers())

        assert resp.status_code == 200
        assert resp.json() == {
            "authenticated": True,
            "user": {"email": "doctor@clinic.example", "name": "Dr. Test", "id": "user-1"},
            "tenantId": "clinic-1",
            "isOperator": False,
        }

    @pytest.mark.asyncio
    async def test_operator_flag_from_allow_list(self, client) -> None:
        resp = await client.get(WHOAMI_URL, headers=operator_headers())

        body = resp.json()
        assert body["isOperator"] is True
        assert body["user"]["email"] == OPERATOR_EMAIL

    @pytest.mark.asyncio
    async def test_operator_allow_list_is_case_insensitive(self, client) -> None:
        resp = await client.get(WHOAMI_URL, headers=auth_headers(email=OPERATOR_EMAIL.upper()))

        assert resp.json()["isOperator"] is True


class TestAuthenticationMiddleware:
    @pytest.mark.asyncio
    async def test_health_is_public(self, client) -> None:
        resp = await client.get("/api/v1/health")

        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy", "version": __version__}

    @pytest.mark.asyncio
    async def test_missing_header(self, client) -> None:
        resp = await client.get(WHOAMI_URL)

        assert resp.status_code == 401
        assert resp.json()["authenticated"] is False

    @pytest.mark.asyncio
    async def test_non_bearer_scheme(self, client) -> None:
        resp = await client.get(WHOAMI_URL, headers={"Authorization": "Basic dXNlcjpwYXNz"})

        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_token_signed_with_other_secret(self, client) -> None:
        forged = TokenManager(SecretStr("another-secret"), issuer="clinic-portal").issue(sub="user-1")

        resp = await client.get(WHOAMI_URL, headers={"Authorization": f"Bearer {forged}"})

        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token(self, client) -> None:
        now = int(time.time())
        expired = jwt.encode(
            {"sub": "user-1", "iss": "clinic-portal", "iat": now - 7200, "exp": now - 3600},
            _TEST_SESSION_SECRET,
            algorithm="HS256",
        )

        resp = await client.get(WHOAMI_URL, headers={"Authorization": f"Bearer {expired}"})

        assert resp.status_code == 401
        assert "expired" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_correlation_id_is_echoed(self, client) -> None:
        resp = await client.get("/api/v1/health", headers={"X-Correlation-ID": "corr-123"})

        assert resp.headers["X-Correlation-ID"] == "corr-123"


class TestTokenManager:
    def test_round_trip(self) -> None:
        manager = TokenManager(SecretStr("s3cret"), issuer="clinic-portal")
        token = manager.issue(sub="user-1", email="a@b.example", tenant_id="clinic-1", role="operator")

        principal = manager.validate(token)

        assert principal.sub == "user-1"
        assert principal.email == "a@b.example"
        assert principal.tenant_id == "clinic-1"
        assert principal.role == "operator"

    def test_wrong_issuer_is_rejected(self) -> None:
        token = TokenManager(SecretStr("s3cret"), issuer="someone-else").issue(sub="user-1")

        with pytest.raises(PermissionError):
            TokenManager(SecretStr("s3cret"), issuer="clinic-portal").validate(token)

    def test_garbage_is_rejected(self) -> None:
        with pytest.raises(PermissionError):
            TokenManager(SecretStr("s3cret"), issuer="clinic-portal").validate("not-a-jwt")

    def test_empty_secret_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            TokenManager(SecretStr(""), issuer="clinic-portal")

    def test_dev_generates_secret(self) -> None:
        manager = TokenManager.from_settings(make_settings(session_secret=""))

        assert manager.validate(manager.issue(sub="user-1")).sub == "user-1"

    def test_production_requires_secret(self) -> None:
        with pytest.raises(RuntimeError):
            TokenManager.from_settings(make_settings(session_secret="", platform_env="production"))


class TestUnauthorizedResponse:
    @pytest.mark.asyncio
    async def test_carries_bearer_challenge(self, client) -> None:
        resp = await client.get(WHOAMI_URL)

        assert resp.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_empty_bearer_token(self, client) -> None:
        resp = await client.get(WHOAMI_URL, headers={"Authorization": "Bearer "})

        assert resp.status_code == 401
