"""Models package - exports all SQLAlchemy models."""
# Identity
from storefront.models.customer import Customer
from storefront.models.admin_user import AdminUser

# Cart and checkout
from storefront.models.cart_line import CartLine
from storefront.models.discount_code import DiscountCode, DiscountType
from storefront.models.loyalty import LoyaltyAccount, PointsTransaction
from storefront.models.points_application import PendingPointsApplication
from storefront.models.order import Order, OrderLine, OrderStatusEvent, OrderStatus
from storefront.models.reconciliation_entry import ReconciliationEntry

# Back office
from storefront.models.audit_log import AuditLog, AuditAction

__all__ = [
    'Customer', 'AdminUser',
    'CartLine', 'DiscountCode', 'DiscountType',
    'LoyaltyAccount', 'PointsTransaction', 'PendingPointsApplication',
    'Order', 'OrderLine', 'OrderStatusEvent', 'OrderStatus',
    'ReconciliationEntry',
    'AuditLog', 'AuditAction',
]
