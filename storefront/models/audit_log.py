"""
Audit Log model for tracking privileged admin actions.
"""
from sqlalchemy import Column, BigInteger, String, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum


class AuditAction(enum.Enum):
    """Enumeration of auditable actions."""
    # Discounts
    DISCOUNT_CREATED = "DISCOUNT_CREATED"
    DISCOUNT_UPDATED = "DISCOUNT_UPDATED"
    DISCOUNT_RETIRED = "DISCOUNT_RETIRED"
    DISCOUNTS_GENERATED = "DISCOUNTS_GENERATED"

    # Orders
    ORDER_STATUS_CHANGED = "ORDER_STATUS_CHANGED"
    ORDER_CANCELLED = "ORDER_CANCELLED"

    # Loyalty
    LOYALTY_POINTS_CREDITED = "LOYALTY_POINTS_CREDITED"
    LOYALTY_REWARD_REDEEMED = "LOYALTY_REWARD_REDEEMED"
    RECONCILIATION_RESOLVED = "RECONCILIATION_RESOLVED"


from storefront.database import Base, BigIntPK


class AuditLog(Base):
    """Audit log for tracking admin actions."""
    __tablename__ = 'audit_log'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    admin_user_id = Column(BigInteger, ForeignKey('admin_users.id'), nullable=False, index=True)
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    resource_type = Column(String(50))  # e.g., 'discount', 'order'
    resource_id = Column(BigInteger)  # ID of the affected resource
    details = Column(Text)  # JSON with additional details
    ip_address = Column(String(45))  # IPv4 or IPv6
    user_agent = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Relationships
    admin_user = relationship('AdminUser', backref='audit_logs')

    def __repr__(self):
        return f"<AuditLog {self.action.value} by admin {self.admin_user_id} at {self.created_at}>"
