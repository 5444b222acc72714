from .auth import User
from .catalog import Category, Supplier, Customer, Product
from .inventory import InventoryMovement, Replenishment
from .promotions import PromoCode
from .cash import CashSession
from .sales import Sale, SaleItem, SaleReturn, SaleReturnItem
from .activity import ActivityLog, Notification

__all__ = [
    'User',
    'Category', 'Supplier', 'Customer', 'Product',
    'InventoryMovement', 'Replenishment',
    'PromoCode',
    'CashSession',
    'Sale', 'SaleItem', 'SaleReturn', 'SaleReturnItem',
    'ActivityLog', 'Notification',
]
