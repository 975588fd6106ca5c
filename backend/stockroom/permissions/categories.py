# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    INVENTORY = "INVENTORY"
    CATEGORIES = "CATEGORIES"
    SALES = "SALES"
    REPORTS = "REPORTS"
    USERS = "USERS"
