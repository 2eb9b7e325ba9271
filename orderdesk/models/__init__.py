from .customers import Customer, Address, CUSTOMER_STATUSES, ADDRESS_PURPOSES
from .catalog import Product
from .orders import Order, OrderItem, OrderStatusEvent, ORDER_STATUSES, PAYMENT_METHODS, PAYMENT_STATUSES
from .audit import AuditEntry, AUDIT_ACTIONS

__all__ = [
    'Customer', 'Address', 'CUSTOMER_STATUSES', 'ADDRESS_PURPOSES',
    'Product',
    'Order', 'OrderItem', 'OrderStatusEvent', 'ORDER_STATUSES', 'PAYMENT_METHODS', 'PAYMENT_STATUSES',
    'AuditEntry', 'AUDIT_ACTIONS',
]
