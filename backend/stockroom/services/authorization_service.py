# Overview: Authorization guard; decides role/permission requirements for a user.

"""
Authorization Guard

A check names at most one role and/or one permission:
- neither  -> authorized (only a synced user is required)
- role     -> authorized iff the user's role has exactly that name; a
              permission named alongside it is ignored
- permission only -> authorized iff the role catalog grants it to the
              user's role

Every decision comes with a debug payload that the API returns verbatim in
403 responses and from /api/auth/check-permissions.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import UnauthenticatedError
from ..models import User
from .identity_service import Principal, get_user_by_external_id
from .permission_service import RoleCatalog, get_role_catalog


@dataclass(frozen=True)
class AuthorizationResult:
    authorized: bool
    debug_info: dict = field(default_factory=dict)
    user: User | None = field(default=None, compare=False, repr=False)

    def to_dict(self) -> dict:
        return {"authorized": self.authorized, "debug_info": self.debug_info}


def evaluate(
    user: User,
    *,
    role: str | None = None,
    permission: str | None = None,
    catalog: RoleCatalog | None = None,
) -> AuthorizationResult:
    """Pure decision for an already-resolved user."""
    catalog = catalog or get_role_catalog()
    role_name = user.role.name if user.role else None

    if role:
        authorized = role_name == role
        reason = (
            f"role '{role}' matched"
            if authorized
            else f"role '{role}' required, user has '{role_name}'"
        )
    elif permission:
        authorized = catalog.has_permission(role_name, permission)
        reason = (
            f"permission '{permission}' granted by role '{role_name}'"
            if authorized
            else f"permission '{permission}' not granted to role '{role_name}'"
        )
    else:
        authorized = True
        reason = "no requirement"

    return AuthorizationResult(
        authorized=authorized,
        debug_info={
            "user_id": user.id,
            "email": user.email,
            "role": role_name,
            "required_role": role,
            "required_permission": permission,
            "reason": reason,
        },
        user=user,
    )


def authorize(
    principal: Principal | None,
    *,
    role: str | None = None,
    permission: str | None = None,
    catalog: RoleCatalog | None = None,
) -> AuthorizationResult:
    """Resolve ``principal`` to its local user and evaluate the requirement."""
    if principal is None:
        raise UnauthenticatedError("Authentication required")

    user = get_user_by_external_id(principal.external_id)
    if user is None:
        raise UnauthenticatedError(
            "User has not been synced; call /api/auth/sync-user first",
            details={"reason": "USER_NOT_SYNCED"},
        )

    return evaluate(user, role=role, permission=permission, catalog=catalog)


def permissions_for(user: User, catalog: RoleCatalog | None = None) -> list[str]:
    catalog = catalog or get_role_catalog()
    return sorted(catalog.permissions_for(user.role.name if user.role else None))
