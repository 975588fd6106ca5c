# Overview: Default role descriptions and the permission set each role is granted.

from .helpers import get_all_permission_codes


ROLE_DESCRIPTIONS = {
    "admin": "Full access, including user and role management",
    "manager": "Manages inventory, categories, sales and reports",
    "operator": "Day-to-day stock handling and sales entry",
    "viewer": "Read-only access",
}

_ALL = get_all_permission_codes()

DEFAULT_ROLE_PERMISSIONS = {
    "admin": _ALL,
    "manager": [code for code in _ALL if not code.startswith("user:")],
    "operator": [
        "inventory:create",
        "inventory:read",
        "inventory:update",
        "inventory:adjust",
        "category:read",
        "sale:create",
        "sale:read",
        "report:low-stock",
    ],
    "viewer": [
        "inventory:read",
        "category:read",
        "sale:read",
    ],
}
