from .auth import User, SessionToken
from .catalog import Bundle
from .orders import Order, OrderItem, OrderSequence
from .payments import Payment
from .audit import AuditLog
from .notifications import Notification

__all__ = [
    'User', 'SessionToken',
    'Bundle',
    'Order', 'OrderItem', 'OrderSequence',
    'Payment',
    'AuditLog',
    'Notification',
]
