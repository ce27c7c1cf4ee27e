"""Permission oracle consulted by the integrator and the API."""

import logging
from typing import Protocol, runtime_checkable

from context_engine.models.integration import AccessContext

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous"
VISITOR_ROLE = "visitor"
PRIVILEGED_ROLES = frozenset({"admin", "system"})

ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    "admin": (
        "read:all_data",
        "read:shopify_data",
        "read:kajabi_data",
        "read:marketing_data",
        "read:financial_data",
    ),
    "executive": ("read:all_data", "read:financial_data", "read:analytics"),
    "manager": ("read:shopify_data", "read:kajabi_data", "read:marketing_data"),
    "user": ("read:basic_data", "read:own_data"),
    "visitor": ("read:public_data",),
}


def permissions_for_role(role: str) -> list[str]:
    """Permissions granted to *role*; unknown roles get visitor permissions."""
    return list(ROLE_PERMISSIONS.get(role, ROLE_PERMISSIONS[VISITOR_ROLE]))


@runtime_checkable
class PermissionOracle(Protocol):
    """Access-control collaborator.

    A ``False`` from ``has_feature_access`` means "omit this data", never
    a hard failure.
    """

    async def get_user_role(self, user_id: str) -> str:
        ...

    async def has_feature_access(self, user_id: str, feature_key: str) -> bool:
        ...

    async def access_context(self, user_id: str, role: str | None = None) -> AccessContext:
        ...


class RolePermissionOracle:
    """Static role-to-permission mapping.

    Args:
        default_role: Role of authenticated users with no explicit assignment.
    """

    def __init__(self, default_role: str = "user") -> None:
        self._default_role = default_role
        self._roles: dict[str, str] = {}

    def assign_role(self, user_id: str, role: str) -> None:
        self._roles[user_id] = role

    async def get_user_role(self, user_id: str) -> str:
        if not user_id or user_id == ANONYMOUS_USER:
            return VISITOR_ROLE
        return self._roles.get(user_id, self._default_role)

    async def has_feature_access(self, user_id: str, feature_key: str) -> bool:
        role = await self.get_user_role(user_id)
        if role in PRIVILEGED_ROLES:
            return True
        permissions = permissions_for_role(role)
        return feature_key in permissions or "read:all_data" in permissions

    async def access_context(self, user_id: str, role: str | None = None) -> AccessContext:
        """Build the caller's access context; an explicit *role* wins over the lookup."""
        resolved = role or await self.get_user_role(user_id)
        if resolved not in ROLE_PERMISSIONS and resolved not in PRIVILEGED_ROLES:
            logger.warning("Unknown role, treating as visitor", extra={"user_id": user_id, "role": resolved})
            resolved = VISITOR_ROLE
        return AccessContext(
            user_id=user_id,
            role=resolved,
            permissions=permissions_for_role(resolved),
        )
