from .auth import User, SessionToken
from .customers import Customer, CustomerLedgerEntry
from .inventory import Product
from .orders import Order, OrderItem, OrderPromotion
from .promotions import Promotion
from .documents import DocumentSequence

__all__ = [
    'User', 'SessionToken',
    'Customer', 'CustomerLedgerEntry',
    'Product',
    'Order', 'OrderItem', 'OrderPromotion',
    'Promotion',
    'DocumentSequence',
]
