"""Order, order line and status history models."""
from sqlalchemy import (
    Column, BigInteger, String, Text, Integer, Numeric, DateTime, Enum, ForeignKey
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK
import enum


class OrderStatus(enum.Enum):
    """Order status enum."""
    ORDERED = "ordered"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


def _status_enum():
    return Enum(OrderStatus, name='order_status', values_callable=lambda e: [m.value for m in e])


class Order(Base):
    """
    Order placed at checkout.

    Amounts, lines and loyalty figures are fixed at creation; only status
    changes afterwards, and every change is recorded in status_events.
    """

    __tablename__ = 'customer_order'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_number = Column(String(32), nullable=False, unique=True, index=True)
    customer_id = Column(BigInteger, ForeignKey('customer.id'), nullable=False, index=True)

    # Idempotency key to prevent duplicate orders on retried checkout
    idempotency_key = Column(String(64), unique=True, nullable=True, index=True)

    subtotal = Column(Numeric(12, 2), nullable=False)
    discount_code = Column(String(32), nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    points_used = Column(Integer, nullable=False, default=0)
    points_discount = Column(Numeric(12, 2), nullable=False, default=0)
    points_earned = Column(Integer, nullable=False, default=0)
    taxes = Column(Numeric(12, 2), nullable=False)
    shipping_fee = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)

    shipping_address = Column(Text, nullable=True)
    payment_reference = Column(String(64), nullable=False)  # masked
    status = Column(_status_enum(), nullable=False, default=OrderStatus.ORDERED)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    customer = relationship('Customer', back_populates='orders')
    lines = relationship('OrderLine', back_populates='order', cascade='all, delete-orphan')
    status_events = relationship(
        'OrderStatusEvent',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderStatusEvent.id'
    )

    def __repr__(self):
        return f"<Order(number='{self.order_number}', total={self.total_price}, status={self.status.value})>"


class OrderLine(Base):
    """Order line (snapshot of a cart line)."""

    __tablename__ = 'order_line'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('customer_order.id'), nullable=False, index=True)
    product_id = Column(String(64), nullable=False)
    variant_name = Column(String(120), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)

    # Relationships
    order = relationship('Order', back_populates='lines')

    def __repr__(self):
        return f"<OrderLine(order_id={self.order_id}, product_id='{self.product_id}', qty={self.quantity})>"


class OrderStatusEvent(Base):
    """Timestamped entry in an order's status history."""

    __tablename__ = 'order_status_event'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('customer_order.id'), nullable=False, index=True)
    status = Column(_status_enum(), nullable=False)
    changed_at = Column(DateTime, nullable=False)
    changed_by_admin_id = Column(BigInteger, ForeignKey('admin_users.id'), nullable=True)
    note = Column(Text, nullable=True)

    # Relationships
    order = relationship('Order', back_populates='status_events')

    def __repr__(self):
        return f"<OrderStatusEvent(order_id={self.order_id}, status={self.status.value})>"
