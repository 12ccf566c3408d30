from .tenancy import Company, Branch, Warehouse, User
from .catalog import Product, Supplier
from .inventory import StockRecord, InventoryMovement, StockAdjustment
from .documents import Sale, SaleLine, Purchase, PurchaseLine, DocumentSequence
from .expenses import ExpenseCategory, Expense
from .storage import StorageEntry

__all__ = [
    'Company', 'Branch', 'Warehouse', 'User',
    'Product', 'Supplier',
    'StockRecord', 'InventoryMovement', 'StockAdjustment',
    'Sale', 'SaleLine', 'Purchase', 'PurchaseLine', 'DocumentSequence',
    'ExpenseCategory', 'Expense',
    'StorageEntry',
]
