from .auth import User, SessionToken
from .order_sessions import OrderSession

__all__ = [
    'User', 'SessionToken',
    'OrderSession',
]
