# Overview: All permission definitions organized by category.
# Each permission is defined as: (name, label, description, category)

from .categories import PermissionCategory


# -- INVENTORY --

INVENTORY_PERMISSIONS = [
    (
        "inventory:create",
        "Create Items",
        "Create inventory items (with their INITIAL stock movement)",
        PermissionCategory.INVENTORY,
    ),
    (
        "inventory:read",
        "View Inventory",
        "View items, stock movements and price history",
        PermissionCategory.INVENTORY,
    ),
    (
        "inventory:update",
        "Edit Items",
        "Edit item details, prices, location and minimum stock level",
        PermissionCategory.INVENTORY,
    ),
    (
        "inventory:adjust",
        "Adjust Stock",
        "Add, remove and set on-hand quantities",
        PermissionCategory.INVENTORY,
    ),
]


# -- CATEGORIES --

CATEGORY_PERMISSIONS = [
    (
        "category:read",
        "View Categories",
        "View item categories",
        PermissionCategory.CATEGORIES,
    ),
]


# -- SALES --

SALES_PERMISSIONS = [
    (
        "sale:create",
        "Create Sale",
        "Record sales (decrements stock)",
        PermissionCategory.SALES,
    ),
    (
        "sale:read",
        "View Sales",
        "View sales and their line items",
        PermissionCategory.SALES,
    ),
    (
        "sale:cancel",
        "Cancel Sale",
        "Cancel a completed sale and restock its items",
        PermissionCategory.SALES,
    ),
    (
        "sale:refund",
        "Refund Sale",
        "Refund items from a completed sale",
        PermissionCategory.SALES,
    ),
]


# -- REPORTS --

REPORT_PERMISSIONS = [
    (
        "report:sales",
        "Sales Report",
        "View revenue and top-selling items",
        PermissionCategory.REPORTS,
    ),
    (
        "report:margins",
        "Margins Report",
        "View item margins grouped by band",
        PermissionCategory.REPORTS,
    ),
    (
        "report:low-stock",
        "Low Stock Report",
        "View items at or below their minimum stock level",
        PermissionCategory.REPORTS,
    ),
]


# -- USERS --

USER_PERMISSIONS = [
    (
        "user:read",
        "View Users",
        "View users and the role catalog",
        PermissionCategory.USERS,
    ),
]


PERMISSION_DEFINITIONS = (
    INVENTORY_PERMISSIONS
    + CATEGORY_PERMISSIONS
    + SALES_PERMISSIONS
    + REPORT_PERMISSIONS
    + USER_PERMISSIONS
)
