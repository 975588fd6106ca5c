from .auth import Role, Permission, RolePermission, User
from .security import SecurityEvent
from .inventory import Category, InventoryItem, StockMovement, PriceHistory
from .sales import Sale, SaleTransaction, SaleRefund, SaleRefundLine

__all__ = [
    'Role',
    'Permission',
    'RolePermission',
    'User',
    'SecurityEvent',
    'Category',
    'InventoryItem',
    'StockMovement',
    'PriceHistory',
    'Sale',
    'SaleTransaction',
    'SaleRefund',
    'SaleRefundLine',
]
