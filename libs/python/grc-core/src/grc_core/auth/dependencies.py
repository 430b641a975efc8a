"""FastAPI dependencies that turn the bearer token into a ``UserContext``.

Routes that only read use ``get_current_user``; anything that mutates an
approval depends on ``require_authenticated`` or ``require_role``. With
Keycloak disabled every caller is anonymous, so mutating routes answer 401.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import Depends, HTTPException, Request

from grc_core.auth.keycloak import KeycloakVerifier
from grc_core.auth.models import UserContext

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

logger = logging.getLogger(__name__)

_BEARER_PREFIX = "Bearer "

_keycloak: KeycloakVerifier | None = None


def get_keycloak() -> KeycloakVerifier:
    global _keycloak
    if _keycloak is None:
        _keycloak = KeycloakVerifier()
    return _keycloak


def _anonymous() -> UserContext:
    return UserContext(user_id="anonymous", username="anonymous", is_authenticated=False)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if not header.startswith(_BEARER_PREFIX):
        return None
    return header.removeprefix(_BEARER_PREFIX).strip() or None


def get_current_user(request: Request) -> UserContext:
    """Resolve the caller. A present but invalid token is a 401, a missing one is anonymous."""
    verifier = get_keycloak()
    token = _bearer_token(request)
    if not verifier.is_configured or token is None:
        return _anonymous()

    payload = verifier.verify_token(token)
    if payload is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return UserContext(
        user_id=payload.sub,
        username=payload.preferred_username,
        email=payload.email,
        roles=payload.roles,
        tenant_id=payload.tenant_id,
    )


def require_authenticated(user: Annotated[UserContext, Depends(get_current_user)]) -> UserContext:
    if not user.is_authenticated:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def require_role(role: str) -> Callable[..., Coroutine[Any, Any, UserContext]]:
    """Dependency factory: the caller must be authenticated and hold ``role``."""

    async def _check_role(user: Annotated[UserContext, Depends(require_authenticated)]) -> UserContext:
        if not user.has_role(role):
            logger.info("Denied %s: missing role %s", user.identity, role)
            raise HTTPException(status_code=403, detail=f"Role {role} required")
        return user

    return _check_role
