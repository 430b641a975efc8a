"""Auth token and user context models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator


class TokenPayload(BaseModel):
    """Decoded JWT token payload."""

    sub: str = Field(min_length=1)
    email: str = Field(default="")
    preferred_username: str = Field(default="")
    realm_access: dict[str, list[str]] = Field(default_factory=dict)
    roles: list[str] = Field(default_factory=list)
    tenant_id: str = Field(default="")
    exp: int | None = None
    iat: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _sync_roles(cls, data: Any) -> Any:
        """Fall back to realm_access roles when no flat roles are given."""
        if isinstance(data, dict) and not data.get("roles"):
            ra = data.get("realm_access", {})
            if isinstance(ra, dict):
                data["roles"] = ra.get("roles", [])
        return data


class UserContext(BaseModel):
    """Authenticated user context for request processing."""

    user_id: str
    username: str = ""
    email: str = ""
    roles: list[str] = Field(default_factory=list)
    tenant_id: str = ""
    is_authenticated: bool = True

    @property
    def identity(self) -> str:
        """Identity used for approver matching: email when known, else user id."""
        return self.email or self.user_id

    def has_role(self, role: str) -> bool:
        return role in self.roles
