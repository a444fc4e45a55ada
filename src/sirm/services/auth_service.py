from __future__ import annotations

from sirm.domain.errors import AuthorizationError
from sirm.domain.models import SessionContext, User

ROLES = ("owner", "admin", "seller", "viewer")

PERMISSIONS: dict[str, set[str]] = {
    "create_product": {"owner", "admin"},
    "restock_product": {"owner", "admin", "seller"},
    "edit_serials": {"owner"},
    "delete_product": {"owner", "admin"},
    "import_products": {"owner", "admin"},
    "create_return": {"owner", "admin", "seller"},
    "edit_return": {"owner", "admin", "seller"},
    "delete_return": {"owner", "admin"},
    "view_returns": {"owner", "admin", "seller", "viewer"},
}


class AuthService:
    """Role -> action policy. Login and user storage live outside this package."""

    def __init__(self, permissions: dict[str, set[str]] | None = None):
        self.permissions = permissions or PERMISSIONS

    def can(self, user: User, action: str) -> bool:
        allowed_roles = self.permissions.get(action)
        if not allowed_roles:
            return False
        return user.role in allowed_roles

    def require_action(self, ctx: SessionContext, action: str) -> None:
        if not self.can(ctx.user, action):
            raise AuthorizationError(f"Role '{ctx.user.role}' is not allowed to perform '{action}'.")
