"""Discount code model."""
from sqlalchemy import (
    Column, String, Text, Numeric, Integer, Boolean, DateTime, Enum, JSON,
    CheckConstraint
)
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK
import enum


class DiscountType(enum.Enum):
    """Discount type enum."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class DiscountCode(Base):
    """
    Promotional discount code.

    Codes are stored uppercase. usage_limit NULL means unlimited. Codes are
    never deleted: retiring one sets retired_at and keeps the row for the
    orders that reference it.
    """

    __tablename__ = 'discount_code'
    __table_args__ = (
        CheckConstraint(
            'usage_limit IS NULL OR usage_count <= usage_limit',
            name='ck_discount_code_usage_within_limit'
        ),
        CheckConstraint('discount_value >= 0', name='ck_discount_code_value_non_negative'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    code = Column(String(32), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    discount_type = Column(
        Enum(DiscountType, name='discount_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=DiscountType.PERCENTAGE
    )
    discount_value = Column(Numeric(12, 2), nullable=False)
    min_purchase_amount = Column(Numeric(12, 2), nullable=False, default=0)
    max_discount_amount = Column(Numeric(12, 2), nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)

    # Restrictions (empty list = no restriction)
    specific_products = Column(JSON, nullable=False, default=list)
    specific_customers = Column(JSON, nullable=False, default=list)

    retired_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_retired(self):
        return self.retired_at is not None

    @property
    def remaining_uses(self):
        if self.usage_limit is None:
            return None
        return max(self.usage_limit - (self.usage_count or 0), 0)

    def __repr__(self):
        return f"<DiscountCode(code='{self.code}', used={self.usage_count}/{self.usage_limit})>"
