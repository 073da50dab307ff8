from .stores import Store, DocumentSequence
from .inventory import Product
from .sales import Sale, SaleLine
from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken

__all__ = [
    'Store', 'DocumentSequence',
    'Product',
    'Sale', 'SaleLine',
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken',
]
