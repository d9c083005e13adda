from .catalog import AgeGroup, Texture, Product, PortionSize, ProductPrice
from .customers import Customer, Address
from .inventory import StockEntry
from .orders import Order, OrderItem, OrderSequence, ORDER_STATUSES, PAYMENT_STATUSES, STOCK_STATES
from .security import SecurityEvent

__all__ = [
    'AgeGroup', 'Texture', 'Product', 'PortionSize', 'ProductPrice',
    'Customer', 'Address',
    'StockEntry',
    'Order', 'OrderItem', 'OrderSequence',
    'ORDER_STATUSES', 'PAYMENT_STATUSES', 'STOCK_STATES',
    'SecurityEvent',
]
