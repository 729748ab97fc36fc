from .catalog import Product, StockMovement, cents_to_units
from .bills import Bill, BillLine, PAYMENT_METHODS

__all__ = [
    'Product', 'StockMovement', 'cents_to_units',
    'Bill', 'BillLine', 'PAYMENT_METHODS',
]
