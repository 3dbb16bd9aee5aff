"""Cart line model for the persistent cart."""
from sqlalchemy import (
    Column, BigInteger, String, Integer, Numeric, DateTime, ForeignKey,
    CheckConstraint, Index
)
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class CartLine(Base):
    """
    Cart line - one product variant in a cart.

    The cart is owned either by an authenticated customer (customer_id) or by
    a guest session (session_id), never both. The unit price is a snapshot
    taken when the product was added.
    """

    __tablename__ = 'cart_line'
    __table_args__ = (
        CheckConstraint(
            '(customer_id IS NULL) <> (session_id IS NULL)',
            name='ck_cart_line_single_owner'
        ),
        CheckConstraint('quantity >= 1', name='ck_cart_line_quantity_positive'),
        Index('ix_cart_line_customer_product', 'customer_id', 'product_id', 'variant_name'),
        Index('ix_cart_line_session_product', 'session_id', 'product_id', 'variant_name'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    customer_id = Column(BigInteger, ForeignKey('customer.id'), nullable=True)
    session_id = Column(String(64), nullable=True)
    product_id = Column(String(64), nullable=False)
    variant_name = Column(String(120), nullable=False, default='default')
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def line_total(self):
        return self.unit_price * self.quantity

    def __repr__(self):
        return f"<CartLine(id={self.id}, product_id='{self.product_id}', qty={self.quantity})>"
