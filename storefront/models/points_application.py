"""Pending points application model."""
from sqlalchemy import Column, BigInteger, Integer, Numeric, DateTime, ForeignKey
from storefront.database import Base, BigIntPK


class PendingPointsApplication(Base):
    """
    Points a customer chose to apply during cart review.

    Advisory only: the amount is re-validated against the live balance at
    checkout. Expired rows are ignored and removed on the next read.
    """

    __tablename__ = 'pending_points_application'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    customer_id = Column(BigInteger, ForeignKey('customer.id'), nullable=False, unique=True)
    points = Column(Integer, nullable=False)
    dollar_value = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    def is_expired(self, now):
        return self.expires_at <= now

    def __repr__(self):
        return f"<PendingPointsApplication(customer_id={self.customer_id}, points={self.points})>"
