"""
Unit tests for checkout and the order lifecycle.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from storefront import database
from storefront.exceptions import (
    UnauthorizedError, InvalidInputError, EmptyCartError, DuplicateCheckoutError,
    InsufficientPointsError, DiscountLimitReachedError, InvalidTransitionError,
    LoyaltyInactiveError
)
from storefront.models import (
    CartLine, DiscountCode, Order, OrderStatus, PendingPointsApplication, PointsTransaction,
    ReconciliationEntry
)
from storefront.services import checkout_service, loyalty_service, points_application_service
from storefront.services.cart_service import CartIdentity
from storefront.services.points_application_service import load_checkout_context

TAX = Decimal('0.10')
SHIPPING = Decimal('5.00')
CARD = {'cardNumber': '4111 1111 1111 1234'}


def give_points(session, customer_id, points, settings):
    loyalty_service.earn_points(session, customer_id, Decimal(points), settings=settings)
    session.commit()


def place_order(session, customer_id, settings, discount_code=None, key=None, now=None):
    context = load_checkout_context(
        session, CartIdentity(customer_id=customer_id),
        discount_code=discount_code, idempotency_key=key, now=now
    )
    return checkout_service.checkout(
        session, context, CARD, {'city': 'Springfield'},
        settings=settings, tax_rate=TAX, shipping_fee=SHIPPING, now=now
    )


class TestCheckout:
    """Tests for checkout()."""

    def test_reference_order(self, session, customer, settings, fixed_discount, add_cart_line):
        """$100 cart, $10 code, 500 points ($5), 10% tax, $5 shipping."""
        give_points(session, customer.id, 1000, settings)
        add_cart_line(customer.id, quantity=2, price='50.00')
        points_application_service.apply_points(session, customer.id, 500, settings)

        result = place_order(session, customer.id, settings, discount_code='TENOFF')

        assert result['totals']['subtotal'] == 100.0
        assert result['totals']['discountApplied'] == 10.0
        assert result['totals']['pointsDiscount'] == 5.0
        assert result['totals']['taxes'] == 8.5
        assert result['totalPrice'] == 98.5
        assert result['pointsUsed'] == 500
        assert result['pointsEarned'] == 90
        assert result['previousPoints'] == 1000
        assert result['currentPoints'] == 590

        session.expire_all()
        order = session.query(Order).one()
        assert order.total_price == Decimal('98.50')
        assert order.payment_reference.endswith('1234')
        assert '4111' not in order.payment_reference
        assert [e.status for e in order.status_events] == [OrderStatus.ORDERED]
        assert session.query(CartLine).count() == 0
        assert session.query(PendingPointsApplication).count() == 0
        assert session.query(DiscountCode).filter_by(code='TENOFF').one().usage_count == 1

    def test_guest_cannot_check_out(self, session, settings):
        context = load_checkout_context(session, CartIdentity(session_id='guest-1'))
        with pytest.raises(UnauthorizedError):
            checkout_service.checkout(session, context, CARD, settings=settings)

    def test_payment_details_required(self, session, customer, settings, add_cart_line):
        add_cart_line(customer.id)
        context = load_checkout_context(session, CartIdentity(customer_id=customer.id))
        with pytest.raises(InvalidInputError):
            checkout_service.checkout(session, context, {}, settings=settings)

    def test_empty_cart(self, session, customer, settings):
        with pytest.raises(EmptyCartError):
            place_order(session, customer.id, settings)

    def test_same_idempotency_key_places_one_order(self, session, customer, settings, add_cart_line):
        add_cart_line(customer.id)
        first = place_order(session, customer.id, settings, key='attempt-1')

        add_cart_line(customer.id)
        with pytest.raises(DuplicateCheckoutError) as exc:
            place_order(session, customer.id, settings, key='attempt-1')

        assert exc.value.to_dict()['orderNumber'] == first['orderNumber']
        assert session.query(Order).count() == 1

    def test_exhausted_discount_rolls_everything_back(self, session, customer, settings, make_discount, add_cart_line):
        give_points(session, customer.id, 300, settings)
        make_discount(code='GONE', usage_limit=1, usage_count=1)
        add_cart_line(customer.id)
        points_application_service.apply_points(session, customer.id, 100, settings)

        with pytest.raises(DiscountLimitReachedError):
            place_order(session, customer.id, settings, discount_code='GONE')

        session.expire_all()
        assert session.query(Order).count() == 0
        assert session.query(CartLine).count() == 1
        assert loyalty_service.get_account(session, customer.id).points == 300

    def test_balance_dropped_below_pending_points(self, session, customer, settings, add_cart_line):
        give_points(session, customer.id, 200, settings)
        add_cart_line(customer.id)
        points_application_service.apply_points(session, customer.id, 150, settings)
        loyalty_service.redeem_points(session, customer.id, 100, settings=settings)
        session.commit()

        with pytest.raises(InsufficientPointsError):
            place_order(session, customer.id, settings)

        session.expire_all()
        assert loyalty_service.get_account(session, customer.id).points == 100
        assert session.query(Order).count() == 0

    def test_expired_pending_points_are_ignored(self, session, customer, settings, add_cart_line):
        give_points(session, customer.id, 200, settings)
        add_cart_line(customer.id, price='20.00')
        points_application_service.apply_points(session, customer.id, 100, settings)

        later = datetime.now() + timedelta(minutes=31)
        result = place_order(session, customer.id, settings, now=later)

        assert result['pointsUsed'] == 0
        assert result['totals']['pointsDiscount'] == 0.0
        assert result['currentPoints'] == 220

    def test_points_applied_while_program_inactive(self, session, customer, settings, add_cart_line):
        give_points(session, customer.id, 200, settings)
        add_cart_line(customer.id)
        points_application_service.apply_points(session, customer.id, 100, settings)

        inactive = loyalty_service.load_settings({'LOYALTY_ACTIVE': False})
        with pytest.raises(LoyaltyInactiveError):
            place_order(session, customer.id, inactive)

    def test_points_earned_on_basis_not_on_points_discount(self, session, customer, settings, add_cart_line):
        give_points(session, customer.id, 3000, settings)
        add_cart_line(customer.id, price='40.00')
        points_application_service.apply_points(session, customer.id, 3000, settings)

        result = place_order(session, customer.id, settings)

        assert result['totals']['afterDiscounts'] == 10.0
        assert result['pointsEarned'] == 40


class TestQuoteCart:
    """Tests for quote_cart()."""

    def test_invalid_discount_reported_not_raised(self, session, customer, settings, add_cart_line):
        add_cart_line(customer.id)
        context = load_checkout_context(session, CartIdentity(customer_id=customer.id), discount_code='NOPE')

        quote = checkout_service.quote_cart(session, context, settings, TAX, SHIPPING)

        assert quote.discount is None
        assert quote.discount_error['error'] == 'NOT_FOUND'
        assert quote.breakdown.total == Decimal('60.00')


class TestOrderLifecycle:
    """Tests for update_order_status() and cancellation compensation."""

    def _delivered_order(self, session, customer, settings, add_cart_line, points_to_apply=0):
        add_cart_line(customer.id, quantity=2, price='50.00')
        if points_to_apply:
            points_application_service.apply_points(session, customer.id, points_to_apply, settings)
        result = place_order(session, customer.id, settings)
        for status in ('processing', 'shipped', 'delivered'):
            checkout_service.update_order_status(session, result['orderId'], status, settings=settings)
        return result['orderId']

    def test_transitions_follow_the_chain(self, session, customer, settings, add_cart_line):
        add_cart_line(customer.id)
        order_id = place_order(session, customer.id, settings)['orderId']

        with pytest.raises(InvalidTransitionError):
            checkout_service.update_order_status(session, order_id, 'shipped', settings=settings)

        order, compensation = checkout_service.update_order_status(
            session, order_id, 'processing', note='picked', settings=settings
        )
        assert order.status is OrderStatus.PROCESSING
        assert compensation is None
        assert [e.status for e in order.status_events] == [OrderStatus.ORDERED, OrderStatus.PROCESSING]

    def test_unknown_status(self, session, customer, settings, add_cart_line):
        add_cart_line(customer.id)
        order_id = place_order(session, customer.id, settings)['orderId']
        with pytest.raises(InvalidInputError):
            checkout_service.update_order_status(session, order_id, 'lost', settings=settings)

    def test_cancelled_is_terminal(self, session, customer, settings, add_cart_line):
        add_cart_line(customer.id)
        order_id = place_order(session, customer.id, settings)['orderId']
        checkout_service.update_order_status(session, order_id, 'cancelled', settings=settings)

        with pytest.raises(InvalidTransitionError):
            checkout_service.update_order_status(session, order_id, 'processing', settings=settings)

    def test_cancelling_delivered_order_compensates(self, session, customer, settings, add_cart_line):
        give_points(session, customer.id, 1000, settings)
        order_id = self._delivered_order(session, customer, settings, add_cart_line, points_to_apply=500)
        session.expire_all()
        assert loyalty_service.get_account(session, customer.id).points == 600

        order, compensation = checkout_service.update_order_status(session, order_id, 'cancelled', settings=settings)

        assert order.status is OrderStatus.CANCELLED
        assert compensation == {'status': 'completed', 'pointsRefunded': 500, 'pointsClawedBack': 100}
        session.expire_all()
        account = loyalty_service.get_account(session, customer.id)
        assert account.points == 1000
        assert account.total_spent == Decimal('1000')

    def test_concurrent_cancellations_compensate_once(self, session, customer, settings, add_cart_line):
        give_points(session, customer.id, 1000, settings)
        order_id = self._delivered_order(session, customer, settings, add_cart_line, points_to_apply=500)

        first, second = Session(bind=database.engine), Session(bind=database.engine)
        try:
            # both admins have the delivered order loaded before either saves
            assert checkout_service.get_order(first, order_id).status is OrderStatus.DELIVERED
            assert checkout_service.get_order(second, order_id).status is OrderStatus.DELIVERED

            _, compensation = checkout_service.update_order_status(first, order_id, 'cancelled', settings=settings)
            with pytest.raises(InvalidTransitionError):
                checkout_service.update_order_status(second, order_id, 'cancelled', settings=settings)
        finally:
            first.close()
            second.close()

        assert compensation == {'status': 'completed', 'pointsRefunded': 500, 'pointsClawedBack': 100}
        session.expire_all()
        assert loyalty_service.get_account(session, customer.id).points == 1000
        order = session.get(Order, order_id)
        assert [e.status for e in order.status_events].count(OrderStatus.CANCELLED) == 1
        refunds = session.query(PointsTransaction).filter(
            PointsTransaction.customer_id == customer.id,
            PointsTransaction.points == 500
        ).count()
        assert refunds == 1

    def test_claw_back_floored_after_refund(self, session, customer, settings, add_cart_line):
        order_id = self._delivered_order(session, customer, settings, add_cart_line)
        loyalty_service.redeem_points(session, customer.id, 80, settings=settings)
        session.commit()

        _, compensation = checkout_service.update_order_status(session, order_id, 'cancelled', settings=settings)

        assert compensation['pointsClawedBack'] == 20
        session.expire_all()
        assert loyalty_service.get_account(session, customer.id).points == 0

    def test_failed_compensation_is_recorded(self, session, customer, settings, add_cart_line, monkeypatch):
        give_points(session, customer.id, 1000, settings)
        order_id = self._delivered_order(session, customer, settings, add_cart_line, points_to_apply=500)

        def broken_claw_back(*args, **kwargs):
            raise RuntimeError('ledger unavailable')
        monkeypatch.setattr(loyalty_service, 'claw_back_points', broken_claw_back)

        order, compensation = checkout_service.update_order_status(session, order_id, 'cancelled', settings=settings)

        assert compensation['status'] == 'failed'
        assert compensation['pointsDelta'] == 400
        session.expire_all()
        assert session.query(Order).one().status is OrderStatus.CANCELLED
        entry = session.query(ReconciliationEntry).one()
        assert entry.step == 'cancel_compensation'
        assert entry.points_delta == 400
        assert 'ledger unavailable' in entry.error
        # the refund was rolled back together with the failed claw-back
        assert loyalty_service.get_account(session, customer.id).points == 600

    def test_resolve_reconciliation_applies_delta(self, session, customer, settings, admin):
        give_points(session, customer.id, 100, settings)
        entry = ReconciliationEntry(
            customer_id=customer.id, order_number='ORD-1', step='cancel_compensation',
            points_delta=-40, created_at=datetime.now()
        )
        session.add(entry)
        session.commit()

        resolved = checkout_service.resolve_reconciliation_entry(
            session, entry.id, admin_user_id=admin.id, apply_adjustment=True, settings=settings
        )

        assert resolved.is_resolved
        assert loyalty_service.get_account(session, customer.id).points == 60
        assert checkout_service.list_reconciliation_entries(session) == []
        with pytest.raises(InvalidInputError):
            checkout_service.resolve_reconciliation_entry(session, entry.id, settings=settings)
