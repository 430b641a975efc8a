"""Tests for auth module: models, keycloak verifier, dependencies."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import jwt
import pytest
from fastapi import HTTPException
from grc_core.auth import dependencies
from grc_core.auth.dependencies import get_current_user, require_authenticated, require_role
from grc_core.auth.keycloak import KeycloakVerifier, collect_roles
from grc_core.auth.models import TokenPayload, UserContext
from grc_core.settings import KeycloakSettings
from pydantic import ValidationError


def _request(headers: dict[str, str] | None = None) -> MagicMock:
    request = MagicMock()
    request.headers = headers or {}
    return request


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
class TestTokenPayload:
    def test_roles_from_realm_access(self) -> None:
        payload = TokenPayload(sub="u1", realm_access={"roles": ["approvals.admin"]})
        assert payload.roles == ["approvals.admin"]

    def test_flat_roles_win(self) -> None:
        payload = TokenPayload(sub="u1", roles=["manager"], realm_access={"roles": ["other"]})
        assert payload.roles == ["manager"]

    def test_sub_required(self) -> None:
        with pytest.raises(ValidationError):
            TokenPayload(sub="")


class TestUserContext:
    def test_identity_prefers_email(self) -> None:
        assert UserContext(user_id="u1", email="ann@example.com").identity == "ann@example.com"
        assert UserContext(user_id="u1").identity == "u1"

    def test_has_role(self) -> None:
        ctx = UserContext(user_id="u1", roles=["approvals.admin"])
        assert ctx.has_role("approvals.admin") is True
        assert ctx.has_role("manager") is False


# ---------------------------------------------------------------------------
# KeycloakVerifier
# ---------------------------------------------------------------------------
class TestKeycloakVerifier:
    def test_disabled_returns_none(self) -> None:
        verifier = KeycloakVerifier(KeycloakSettings(enabled=False))
        assert verifier.is_configured is False
        assert verifier.verify_token("anything") is None

    def test_valid_token(self) -> None:
        with patch("grc_core.auth.keycloak.PyJWKClient") as jwk_client:
            jwk_client.return_value.get_signing_key_from_jwt.return_value = MagicMock(key="k")
            verifier = KeycloakVerifier(KeycloakSettings(enabled=True))

        decoded = {
            "sub": "u1",
            "email": "ann@example.com",
            "preferred_username": "ann",
            "realm_access": {"roles": ["manager"]},
            "resource_access": {"grc-api": {"roles": ["approvals.admin"]}},
            "tenant_id": "acme",
            "exp": 2_000_000_000,
            "iat": 1_700_000_000,
        }
        with patch("grc_core.auth.keycloak.jwt.decode", return_value=decoded):
            payload = verifier.verify_token("token")

        assert payload is not None
        assert payload.email == "ann@example.com"
        assert payload.tenant_id == "acme"
        assert payload.roles == ["manager", "approvals.admin"]

    def test_expired_token(self) -> None:
        with patch("grc_core.auth.keycloak.PyJWKClient"):
            verifier = KeycloakVerifier(KeycloakSettings(enabled=True))

        with patch("grc_core.auth.keycloak.jwt.decode", side_effect=jwt.ExpiredSignatureError("expired")):
            assert verifier.verify_token("token") is None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
class TestDependencies:
    def test_anonymous_without_keycloak(self) -> None:
        with patch.object(dependencies, "_keycloak", KeycloakVerifier(KeycloakSettings(enabled=False))):
            user = get_current_user(_request({"Authorization": "Bearer x"}))
        assert user.is_authenticated is False

    def test_invalid_token_is_401(self) -> None:
        verifier = MagicMock(is_configured=True)
        verifier.verify_token.return_value = None
        with patch.object(dependencies, "_keycloak", verifier), pytest.raises(HTTPException) as exc_info:
            get_current_user(_request({"Authorization": "Bearer bad"}))
        assert exc_info.value.status_code == 401

    def test_valid_token_builds_context(self) -> None:
        verifier = MagicMock(is_configured=True)
        verifier.verify_token.return_value = TokenPayload(
            sub="u1", email="ann@example.com", roles=["manager"], tenant_id="acme"
        )
        with patch.object(dependencies, "_keycloak", verifier):
            user = get_current_user(_request({"Authorization": "Bearer good"}))

        assert user.identity == "ann@example.com"
        assert user.tenant_id == "acme"
        assert user.is_authenticated is True

    def test_require_authenticated(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            require_authenticated(UserContext(user_id="anonymous", is_authenticated=False))
        assert exc_info.value.status_code == 401

    async def test_require_role(self) -> None:
        check = require_role("approvals.admin")

        admin = UserContext(user_id="u1", roles=["approvals.admin"])
        assert await check(admin) is admin

        with pytest.raises(HTTPException) as exc_info:
            await check(UserContext(user_id="u2", roles=["manager"]))
        assert exc_info.value.status_code == 403


class TestCollectRoles:
    def test_realm_and_client_roles_merged(self) -> None:
        claims = {
            "realm_access": {"roles": ["manager", "offline_access"]},
            "resource_access": {"grc-api": {"roles": ["manager", "approvals.admin"]}, "other": {"roles": ["x"]}},
        }
        assert collect_roles(claims, "grc-api") == ["manager", "offline_access", "approvals.admin"]

    def test_no_role_claims(self) -> None:
        assert collect_roles({}, "grc-api") == []

    def test_custom_tenant_claim(self) -> None:
        with patch("grc_core.auth.keycloak.PyJWKClient"):
            verifier = KeycloakVerifier(KeycloakSettings(enabled=True, tenant_claim="org"))

        claims = {"sub": "u1", "org": "globex", "exp": 2_000_000_000, "iat": 1_700_000_000}
        with patch("grc_core.auth.keycloak.jwt.decode", return_value=claims):
            payload = verifier.verify_token("token")

        assert payload is not None
        assert payload.tenant_id == "globex"
