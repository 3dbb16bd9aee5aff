"""AdminUser model - store administrators."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class AdminUser(Base):
    """AdminUser model - back-office administrators.

    Admin sessions are keyed by session['admin_user_id'] and are independent
    from customer sessions.
    """

    __tablename__ = 'admin_users'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(200), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<AdminUser(id={self.id}, email='{self.email}')>"
