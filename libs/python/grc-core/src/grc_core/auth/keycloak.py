"""Keycloak access-token verification against the realm's JWKS.

When ``KEYCLOAK_ENABLED`` is false nothing is verified and every caller is
treated as anonymous by the auth dependencies.
"""

from __future__ import annotations

import logging
from typing import Any

import jwt
from jwt import PyJWKClient

from grc_core.auth.models import TokenPayload
from grc_core.settings import KeycloakSettings

logger = logging.getLogger(__name__)


def collect_roles(claims: dict[str, Any], client_id: str) -> list[str]:
    """Realm roles followed by roles granted on ``client_id``, without duplicates."""
    roles: list[str] = list(claims.get("realm_access", {}).get("roles", []))
    client_access = claims.get("resource_access", {}).get(client_id, {})
    roles.extend(r for r in client_access.get("roles", []) if r not in roles)
    return roles


class KeycloakVerifier:
    """Turns a bearer token into a ``TokenPayload`` or None."""

    def __init__(self, settings: KeycloakSettings | None = None) -> None:
        self._settings = settings or KeycloakSettings()
        self._jwks_client: PyJWKClient | None = None

        if self._settings.enabled:
            realm_url = f"{self._settings.server_url.rstrip('/')}/realms/{self._settings.realm}"
            self._jwks_client = PyJWKClient(f"{realm_url}/protocol/openid-connect/certs", cache_keys=True)
            logger.info("Verifying tokens for realm %s (client %s)", self._settings.realm, self._settings.client_id)

    @property
    def is_configured(self) -> bool:
        return self._jwks_client is not None

    def verify_token(self, token: str) -> TokenPayload | None:
        if self._jwks_client is None:
            return None

        try:
            signing_key = self._jwks_client.get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self._settings.client_id,
                leeway=self._settings.leeway_seconds,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired token")
            return None
        except jwt.PyJWTError:
            logger.warning("Rejected invalid token", exc_info=True)
            return None

        return TokenPayload(
            sub=claims["sub"],
            preferred_username=claims.get("preferred_username", ""),
            email=claims.get("email", ""),
            roles=collect_roles(claims, self._settings.client_id),
            tenant_id=str(claims.get(self._settings.tenant_claim, "")),
            exp=claims["exp"],
            iat=claims["iat"],
        )
