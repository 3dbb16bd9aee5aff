"""Reconciliation log for loyalty compensation steps that did not complete."""
from sqlalchemy import Column, BigInteger, String, Text, Integer, DateTime, ForeignKey
from storefront.database import Base, BigIntPK


class ReconciliationEntry(Base):
    """
    A points adjustment that must be applied by hand.

    Written when an order state change has committed but the matching points
    refund/claw-back failed. resolved_at is set once an administrator has
    fixed the account.
    """

    __tablename__ = 'reconciliation_entry'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    customer_id = Column(BigInteger, ForeignKey('customer.id'), nullable=False, index=True)
    order_number = Column(String(32), nullable=False, index=True)
    step = Column(String(50), nullable=False)  # e.g. 'cancel_compensation'
    points_delta = Column(Integer, nullable=False)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by_admin_id = Column(BigInteger, ForeignKey('admin_users.id'), nullable=True)

    @property
    def is_resolved(self):
        return self.resolved_at is not None

    def __repr__(self):
        return f"<ReconciliationEntry(order='{self.order_number}', delta={self.points_delta}, resolved={self.is_resolved})>"
