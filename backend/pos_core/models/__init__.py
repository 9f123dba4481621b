from .catalog import Warehouse, Client, Product, ProductVariant
from .inventory import StockLevel, StockMovement
from .sales import Invoice, InvoiceLine, Payment
from .registers import CashSession, CashSessionReport
from .promotions import Promotion

__all__ = [
    'Warehouse', 'Client', 'Product', 'ProductVariant',
    'StockLevel', 'StockMovement',
    'Invoice', 'InvoiceLine', 'Payment',
    'CashSession', 'CashSessionReport',
    'Promotion',
]
