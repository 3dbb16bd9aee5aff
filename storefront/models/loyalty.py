"""Loyalty account and points transaction models."""
from sqlalchemy import (
    Column, BigInteger, String, Integer, Numeric, DateTime, ForeignKey,
    CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class LoyaltyAccount(Base):
    """
    Loyalty account - one per customer.

    points always equals the sum of the account's transactions and never
    goes negative.
    """

    __tablename__ = 'loyalty_account'
    __table_args__ = (
        CheckConstraint('points >= 0', name='ck_loyalty_account_points_non_negative'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    customer_id = Column(BigInteger, ForeignKey('customer.id'), nullable=False, unique=True)
    points = Column(Integer, nullable=False, default=0)
    total_spent = Column(Numeric(12, 2), nullable=False, default=0)
    current_tier = Column(String(50), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    customer = relationship('Customer', back_populates='loyalty_account')
    transactions = relationship(
        'PointsTransaction',
        back_populates='account',
        order_by='PointsTransaction.id'
    )

    def __repr__(self):
        return f"<LoyaltyAccount(customer_id={self.customer_id}, points={self.points}, tier='{self.current_tier}')>"


class PointsTransaction(Base):
    """Append-only points history entry (positive = earned, negative = spent)."""

    __tablename__ = 'points_transaction'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    account_id = Column(BigInteger, ForeignKey('loyalty_account.id'), nullable=False, index=True)
    customer_id = Column(BigInteger, ForeignKey('customer.id'), nullable=False, index=True)
    points = Column(Integer, nullable=False)
    reason = Column(String(120), nullable=False)
    order_number = Column(String(32), nullable=True, index=True)
    balance_after = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    account = relationship('LoyaltyAccount', back_populates='transactions')

    def __repr__(self):
        return f"<PointsTransaction(customer_id={self.customer_id}, points={self.points}, reason='{self.reason}')>"
