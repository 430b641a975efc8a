"""Authentication: Keycloak JWT verification and FastAPI dependencies."""

from grc_core.auth.dependencies import get_current_user, require_authenticated, require_role
from grc_core.auth.models import UserContext

__all__ = ["UserContext", "get_current_user", "require_authenticated", "require_role"]
