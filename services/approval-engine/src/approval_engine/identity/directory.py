"""Identity/role directory clients used to expand roles into approvers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import quote

import httpx
from grc_core.exceptions import IdentityServiceError

if TYPE_CHECKING:
    from grc_core.settings import IdentitySettings

logger = logging.getLogger(__name__)


class IdentityDirectory(Protocol):
    async def members(self, role: str, tenant_id: str) -> set[str]: ...


class StaticIdentityDirectory:
    """In-memory role map, for development and tests."""

    def __init__(self, role_members: dict[str, list[str]] | None = None) -> None:
        self._role_members = {role: set(members) for role, members in (role_members or {}).items()}

    def assign(self, role: str, *emails: str) -> None:
        self._role_members.setdefault(role, set()).update(emails)

    async def members(self, role: str, tenant_id: str) -> set[str]:
        return set(self._role_members.get(role, set()))


class HttpIdentityDirectory:
    """Client for the external identity/role service.

    Calls ``GET /api/v1/roles/{role}/members?tenant_id=...`` and expects
    ``{"members": [{"email": "..."}, ...]}``. A 404 means the role has no
    members. Any other failure raises ``IdentityServiceError``.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str | None = None,
        timeout: float = 10.0,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> HttpIdentityDirectory:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def members(self, role: str, tenant_id: str) -> set[str]:
        try:
            response = await self._client.get(
                f"/api/v1/roles/{quote(role, safe='')}/members", params={"tenant_id": tenant_id}
            )
        except httpx.HTTPError as e:
            raise IdentityServiceError(f"Identity service unreachable: {e}") from e

        if response.status_code == 404:
            logger.info("Role %s unknown to identity service (tenant %s)", role, tenant_id)
            return set()
        if response.status_code >= 400:
            raise IdentityServiceError(f"Identity service returned {response.status_code} for role {role}")

        try:
            data = response.json()
            members = data.get("members", [])
            return {m["email"] for m in members if m.get("email")}
        except (ValueError, AttributeError, KeyError, TypeError) as e:
            raise IdentityServiceError(f"Malformed member list for role {role}") from e


def build_directory(settings: IdentitySettings) -> IdentityDirectory:
    """Pick the HTTP client when a service URL is configured, else the static map."""
    if settings.service_url:
        logger.info("Using identity service at %s", settings.service_url)
        return HttpIdentityDirectory(
            settings.service_url,
            api_token=settings.api_token or None,
            timeout=settings.timeout_seconds,
        )
    logger.info("Using static role map (%d roles)", len(settings.role_members))
    return StaticIdentityDirectory(settings.role_members)
