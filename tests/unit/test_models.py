"""
Unit tests for SQLAlchemy models.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy.exc import IntegrityError

from storefront.models import (
    CartLine, DiscountCode, DiscountType, LoyaltyAccount, PendingPointsApplication,
    Order, OrderStatus
)


class TestCartLineModel:
    """Tests for CartLine model."""

    def test_customer_line(self, session, add_cart_line, customer):
        """A cart line owned by a customer."""
        line = add_cart_line(customer.id, quantity=3, price='19.99')

        assert line.id is not None
        assert line.session_id is None
        assert line.line_total == Decimal('59.97')

    def test_guest_line(self, session):
        line = CartLine(session_id='guest-abc', product_id='P-1', quantity=1, unit_price=Decimal('5'))
        session.add(line)
        session.commit()

        assert line.customer_id is None
        assert line.variant_name == 'default'

    def test_line_needs_exactly_one_owner(self, session, customer):
        """Both owners (or none) violate the single-owner constraint."""
        session.add(CartLine(
            customer_id=customer.id, session_id='guest-abc',
            product_id='P-1', quantity=1, unit_price=Decimal('5')
        ))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

        session.add(CartLine(product_id='P-1', quantity=1, unit_price=Decimal('5')))
        with pytest.raises(IntegrityError):
            session.commit()

    def test_quantity_must_be_positive(self, session, customer):
        session.add(CartLine(customer_id=customer.id, product_id='P-1', quantity=0, unit_price=Decimal('5')))
        with pytest.raises(IntegrityError):
            session.commit()


class TestDiscountCodeModel:
    """Tests for DiscountCode model."""

    def test_code_unique(self, session, discount):
        session.add(DiscountCode(
            code='SAVE10',
            discount_type=DiscountType.FIXED,
            discount_value=Decimal('1'),
            start_date=datetime.now(),
        ))
        with pytest.raises(IntegrityError):
            session.commit()

    def test_remaining_uses(self, make_discount):
        assert make_discount(code='LIMITED', usage_limit=5, usage_count=2).remaining_uses == 3
        assert make_discount(code='OPEN').remaining_uses is None

    def test_usage_count_cannot_exceed_limit(self, session, make_discount):
        with pytest.raises(IntegrityError):
            make_discount(code='OVER', usage_limit=1, usage_count=2)

    def test_type_is_stored_by_value(self, session, fixed_discount):
        session.expire_all()
        row = session.query(DiscountCode).filter_by(code='TENOFF').one()
        assert row.discount_type is DiscountType.FIXED


class TestLoyaltyAccountModel:
    """Tests for LoyaltyAccount model."""

    def test_one_account_per_customer(self, session, customer):
        session.add(LoyaltyAccount(customer_id=customer.id, points=0, current_tier='Bronze'))
        session.commit()

        session.add(LoyaltyAccount(customer_id=customer.id, points=0, current_tier='Bronze'))
        with pytest.raises(IntegrityError):
            session.commit()

    def test_points_cannot_go_negative(self, session, customer):
        session.add(LoyaltyAccount(customer_id=customer.id, points=-1, current_tier='Bronze'))
        with pytest.raises(IntegrityError):
            session.commit()


class TestPendingPointsApplicationModel:
    """Tests for PendingPointsApplication model."""

    def test_is_expired(self):
        now = datetime.now()
        application = PendingPointsApplication(points=100, expires_at=now + timedelta(minutes=30))

        assert application.is_expired(now) is False
        assert application.is_expired(now + timedelta(minutes=30)) is True


class TestOrderModel:
    """Tests for Order model."""

    def _order(self, customer, number, key=None):
        return Order(
            order_number=number,
            customer_id=customer.id,
            idempotency_key=key,
            subtotal=Decimal('10'),
            taxes=Decimal('1'),
            shipping_fee=Decimal('5'),
            total_price=Decimal('16'),
            payment_reference='************1234',
        )

    def test_defaults(self, session, customer):
        order = self._order(customer, 'ORD-1')
        session.add(order)
        session.commit()

        assert order.status is OrderStatus.ORDERED
        assert order.points_used == 0
        assert order.discount_amount == Decimal('0')

    def test_idempotency_key_unique(self, session, customer):
        session.add(self._order(customer, 'ORD-1', key='abc'))
        session.commit()

        session.add(self._order(customer, 'ORD-2', key='abc'))
        with pytest.raises(IntegrityError):
            session.commit()
