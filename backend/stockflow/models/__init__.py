from .catalog import Product, ProductVariant
from .ledger import StockLedgerEntry
from .documents import DocumentSequence, Purchase, PurchaseLine, StockAdjustment, StockAdjustmentLine
from .orders import Order, OrderItem, OrderStatusEvent

__all__ = [
    'Product', 'ProductVariant',
    'StockLedgerEntry',
    'DocumentSequence', 'Purchase', 'PurchaseLine', 'StockAdjustment', 'StockAdjustmentLine',
    'Order', 'OrderItem', 'OrderStatusEvent',
]
