"""Customer model - shoppers whose identity is established by the accounts service."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class Customer(Base):
    """Customer (authenticated shopper)."""

    __tablename__ = 'customer'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(200), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    loyalty_account = relationship('LoyaltyAccount', back_populates='customer', uselist=False)
    orders = relationship('Order', back_populates='customer')

    def __repr__(self):
        return f"<Customer(id={self.id}, email='{self.email}')>"
