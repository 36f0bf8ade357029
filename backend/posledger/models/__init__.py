from .tenancy import Tenant, DocumentSequence
from .inventory import Product, StockLedgerEntry
from .documents import (
    Bill,
    BillItem,
    Purchase,
    PurchaseItem,
    SalesReturn,
    SalesReturnItem,
    PurchaseReturn,
    PurchaseReturnItem,
    DOCUMENT_STATUS_COMPLETED,
    DOCUMENT_STATUS_DRAFT,
    DOCUMENT_STATUS_CANCELLED,
)
from .history import TransactionEditHistory

__all__ = [
    'Tenant', 'DocumentSequence',
    'Product', 'StockLedgerEntry',
    'Bill', 'BillItem', 'Purchase', 'PurchaseItem',
    'SalesReturn', 'SalesReturnItem', 'PurchaseReturn', 'PurchaseReturnItem',
    'DOCUMENT_STATUS_COMPLETED', 'DOCUMENT_STATUS_DRAFT', 'DOCUMENT_STATUS_CANCELLED',
    'TransactionEditHistory',
]
