from .auth import Admin, AdminSession
from .catalog import Category, Product, ProductImage, ProductCategory
from .customers import Customer
from .sales import Purchase
from .audit import AuditLog, AUDIT_ACTIONS
from .jobs import Job, JOB_STATUSES

__all__ = [
    'Admin', 'AdminSession',
    'Category', 'Product', 'ProductImage', 'ProductCategory',
    'Customer',
    'Purchase',
    'AuditLog', 'AUDIT_ACTIONS',
    'Job', 'JOB_STATUSES',
]
