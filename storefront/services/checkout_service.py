"""
Checkout service - turns a cart into an order and drives the order lifecycle.

checkout() performs every write (discount redemption, points debit and
credit, order, pending application, cart) in one database transaction, so
a failure at any step leaves nothing behind. Cancellation compensation runs
after the status change has committed; when it fails it is recorded in the
reconciliation log for manual follow-up.
"""
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.models import (
    Order, OrderLine, OrderStatusEvent, OrderStatus,
    PendingPointsApplication, ReconciliationEntry
)
from storefront.exceptions import (
    StorefrontError, NotFoundError, InvalidInputError, UnauthorizedError,
    EmptyCartError, InvalidTransitionError, DuplicateCheckoutError,
    LoyaltyInactiveError, InsufficientPointsError, DiscountError
)
from storefront.services import loyalty_service, discount_service
from storefront.services.cart_service import clear_cart
from storefront.services.points_application_service import CheckoutContext
from storefront.services.pricing_service import (
    PriceBreakdown, compose, calculate_subtotal, points_earning_basis
)
from storefront.blueprints.metrics import (
    checkouts_total, discount_redemptions_total, loyalty_points_total,
    compensation_failures_total
)
from storefront.utils.money import quantize_money, money_float, mask_payment_reference

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

# Next status in the fulfilment chain, plus cancellation from any live state
ALLOWED_TRANSITIONS = {
    OrderStatus.ORDERED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: {OrderStatus.CANCELLED},
    OrderStatus.CANCELLED: set(),
}

_PAYMENT_REFERENCE_FIELDS = ('cardNumber', 'card_number', 'reference', 'transactionId', 'transaction_id')


@dataclass(frozen=True)
class CartQuote:
    """Price of the current cart with its pending discount and points."""
    breakdown: PriceBreakdown
    discount: Optional[discount_service.DiscountQuote]
    discount_error: Optional[Dict[str, Any]]
    points_applied: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totals': self.breakdown.to_dict(),
            'discount': self.discount.to_dict() if self.discount else None,
            'discountError': self.discount_error,
            'pointsApplied': self.points_applied,
        }


def generate_order_number() -> str:
    return f"ORD{datetime.now():%Y%m%d}{secrets.token_hex(4).upper()}"


def quote_cart(
    session: Session,
    context: CheckoutContext,
    settings: Optional[loyalty_service.LoyaltySettings] = None,
    tax_rate: Decimal = ZERO,
    shipping_fee: Decimal = ZERO,
    strict_discount: bool = False,
    now: Optional[datetime] = None
) -> CartQuote:
    """
    Price the cart for review. Nothing is written.

    With strict_discount the discount validation error is raised; otherwise
    it is reported in discount_error and the cart is priced without it.
    """
    settings = settings or loyalty_service.get_settings()
    subtotal = calculate_subtotal(context.lines)

    quote, discount_error = None, None
    if context.discount_code and context.lines:
        try:
            quote = discount_service.validate_discount(
                session, context.discount_code, subtotal,
                products=context.lines, customer_id=context.customer_id, now=now
            )
        except (DiscountError, NotFoundError) as e:
            if strict_discount:
                raise
            discount_error = e.to_dict()

    points_applied, points_discount = 0, ZERO
    if context.pending is not None and settings.is_active:
        points_applied = context.pending.points
        points_discount = Decimal(context.pending.dollar_value)

    breakdown = compose(
        context.lines,
        discount_amount=quote.amount if quote else ZERO,
        points_discount_value=points_discount,
        tax_rate=tax_rate,
        shipping_fee=shipping_fee,
    )
    return CartQuote(breakdown, quote, discount_error, points_applied)


def _payment_reference(payment_details) -> str:
    """Extract and mask the payment reference; presence is all that is checked."""
    reference = None
    if isinstance(payment_details, dict):
        for key in _PAYMENT_REFERENCE_FIELDS:
            value = payment_details.get(key)
            if value is not None and str(value).strip():
                reference = str(value)
                break
    elif isinstance(payment_details, str) and payment_details.strip():
        reference = payment_details

    if not reference:
        raise InvalidInputError(
            'Payment details are required',
            errors={'paymentDetails': ['A card number or payment reference is required']}
        )
    return mask_payment_reference(reference)


def checkout(
    session: Session,
    context: CheckoutContext,
    payment_details,
    shipping_address=None,
    settings: Optional[loyalty_service.LoyaltySettings] = None,
    tax_rate: Decimal = ZERO,
    shipping_fee: Decimal = ZERO,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Place an order for the customer's cart.

    Raises:
        UnauthorizedError: guest cart
        InvalidInputError: missing payment details
        EmptyCartError: no cart lines
        DuplicateCheckoutError: idempotency key already used
        LoyaltyInactiveError: points applied while the program is off
        InsufficientPointsError: balance dropped below the applied points
        Discount errors from validate_discount/redeem_discount
    """
    settings = settings or loyalty_service.get_settings()
    now = now or datetime.now()

    if context.is_guest:
        raise UnauthorizedError('Guest checkout is not permitted. Please sign in to place an order.')
    payment_reference = _payment_reference(payment_details)
    if not context.lines:
        raise EmptyCartError()

    customer_id = context.customer_id
    if context.idempotency_key:
        existing = session.query(Order).filter(Order.idempotency_key == context.idempotency_key).first()
        if existing:
            raise DuplicateCheckoutError(existing.id, existing.order_number)

    pending = context.pending
    if pending is not None and not settings.is_active:
        raise LoyaltyInactiveError('Loyalty program is inactive; remove the applied points to continue')

    order_number = generate_order_number()

    try:
        account = loyalty_service.get_or_create_account(session, customer_id, settings)
        session.refresh(account)
        previous_points = account.points

        # 1. Pending points against the live balance
        points_used = pending.points if pending is not None else 0
        if points_used > account.points:
            raise InsufficientPointsError(points_used, account.points)

        # 2. Discount: validate against the subtotal, redeem exactly once
        quote = None
        if context.discount_code:
            quote = discount_service.validate_discount(
                session, context.discount_code, calculate_subtotal(context.lines),
                products=context.lines, customer_id=customer_id, now=now
            )
            discount_service.redeem_discount(session, quote.code)

        # 3. Price breakdown
        breakdown = compose(
            context.lines,
            discount_amount=quote.amount if quote else ZERO,
            points_discount_value=Decimal(pending.dollar_value) if pending is not None else ZERO,
            tax_rate=tax_rate,
            shipping_fee=shipping_fee,
        )

        # 4. Points: debit redeemed, credit earned
        if points_used:
            loyalty_service.redeem_points(
                session, customer_id, points_used,
                reason=f'Redeemed on order {order_number}',
                order_number=order_number, settings=settings
            )
        earned = loyalty_service.earn_points(
            session, customer_id,
            points_earning_basis(breakdown.subtotal, breakdown.discount_amount),
            order_number=order_number, settings=settings,
            reason=f'Earned on order {order_number}'
        )
        points_earned = earned.points if earned else 0

        # 5. Order record
        rounded = breakdown.rounded()
        order = Order(
            order_number=order_number,
            customer_id=customer_id,
            idempotency_key=context.idempotency_key,
            subtotal=rounded.subtotal,
            discount_code=quote.code if quote else None,
            discount_amount=rounded.discount_amount,
            points_used=points_used,
            points_discount=rounded.points_discount,
            points_earned=points_earned,
            taxes=rounded.taxes,
            shipping_fee=rounded.shipping_fee,
            total_price=rounded.total,
            shipping_address=json.dumps(shipping_address) if isinstance(shipping_address, dict) else shipping_address,
            payment_reference=payment_reference,
            status=OrderStatus.ORDERED,
        )
        for line in context.lines:
            order.lines.append(OrderLine(
                product_id=line.product_id,
                variant_name=line.variant_name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=quantize_money(Decimal(line.unit_price) * line.quantity),
            ))
        order.status_events.append(OrderStatusEvent(status=OrderStatus.ORDERED, changed_at=now))
        session.add(order)

        # 6. Consume the pending application and the cart
        session.query(PendingPointsApplication).filter(
            PendingPointsApplication.customer_id == customer_id
        ).delete(synchronize_session=False)
        clear_cart(session, context.identity)

        session.commit()

    except IntegrityError:
        session.rollback()
        if context.idempotency_key:
            existing = session.query(Order).filter(Order.idempotency_key == context.idempotency_key).first()
            if existing:
                raise DuplicateCheckoutError(existing.id, existing.order_number)
        logger.exception(f"[CHECKOUT] Integrity error for customer {customer_id}")
        raise
    except StorefrontError as e:
        session.rollback()
        logger.info(f"[CHECKOUT] Rejected for customer {customer_id}: {e.message}")
        raise
    except Exception:
        session.rollback()
        logger.exception(f"[CHECKOUT] Failed for customer {customer_id}, nothing was written")
        raise

    session.refresh(account)
    current_points = account.points

    checkouts_total.inc()
    if quote:
        discount_redemptions_total.inc()
    if points_used:
        loyalty_points_total.labels(direction='redeemed').inc(points_used)
    if points_earned:
        loyalty_points_total.labels(direction='earned').inc(points_earned)

    loyalty_service.invalidate_loyalty_cache(customer_id)
    logger.info(
        f"[CHECKOUT] Order {order_number} placed by customer {customer_id}: "
        f"total {rounded.total}, points -{points_used}/+{points_earned}"
    )

    return {
        'orderId': order.id,
        'orderNumber': order.order_number,
        'pointsUsed': points_used,
        'pointsEarned': points_earned,
        'previousPoints': previous_points,
        'currentPoints': current_points,
        'totalPrice': money_float(breakdown.total),
        'totals': breakdown.to_dict(),
    }


# =====================================================
# ORDER LIFECYCLE
# =====================================================

def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidInputError(
            f'Unknown order status: {value}',
            errors={'status': [f"Must be one of: {', '.join(s.value for s in OrderStatus)}"]}
        )


def get_order(session: Session, order_id: int, customer_id: Optional[int] = None) -> Order:
    """Order by id; when customer_id is given the order must belong to it."""
    query = session.query(Order).filter(Order.id == order_id)
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)
    order = query.first()
    if not order:
        raise NotFoundError('Order not found')
    return order


def list_orders(
    session: Session,
    status: Optional[OrderStatus] = None,
    limit: int = 100,
    offset: int = 0
) -> List[Order]:
    query = session.query(Order)
    if status is not None:
        query = query.filter(Order.status == status)
    return query.order_by(Order.id.desc()).limit(limit).offset(offset).all()


def list_customer_orders(session: Session, customer_id: int) -> List[Order]:
    return session.query(Order).filter(Order.customer_id == customer_id).order_by(Order.id.desc()).all()


def _compensate_cancellation(
    session: Session,
    order: Order,
    settings: loyalty_service.LoyaltySettings
) -> Dict[str, Any]:
    """
    Reverse the order's points: refund what was spent, then claw back
    what was earned, floored at the balance left after the refund.
    """
    refunded, clawed_back = 0, 0
    try:
        if order.points_used:
            tx = loyalty_service.refund_points(
                session, order.customer_id, order.points_used,
                reason=f'Refund for cancelled order {order.order_number}',
                order_number=order.order_number, settings=settings
            )
            refunded = tx.points if tx else 0
        if order.points_earned:
            tx = loyalty_service.claw_back_points(
                session, order.customer_id, order.points_earned,
                reason=f'Clawback for cancelled order {order.order_number}',
                order_number=order.order_number, settings=settings,
                spent=points_earning_basis(order.subtotal, order.discount_amount)
            )
            clawed_back = -tx.points if tx else 0
        session.commit()
    except Exception as e:
        session.rollback()
        delta = order.points_used - order.points_earned
        logger.error(
            f"[RECONCILE] Compensation failed for order {order.id} ({order.order_number}), "
            f"customer {order.customer_id}, attempted point delta {delta:+d}: {e}"
        )
        entry = ReconciliationEntry(
            customer_id=order.customer_id,
            order_number=order.order_number,
            step='cancel_compensation',
            points_delta=delta,
            error=str(e)[:1000],
            created_at=datetime.now(),
        )
        session.add(entry)
        session.commit()
        compensation_failures_total.inc()
        return {'status': 'failed', 'reconciliationId': entry.id, 'pointsDelta': delta}

    if refunded:
        loyalty_points_total.labels(direction='refunded').inc(refunded)
    if clawed_back:
        loyalty_points_total.labels(direction='clawed_back').inc(clawed_back)
    loyalty_service.invalidate_loyalty_cache(order.customer_id)
    return {'status': 'completed', 'pointsRefunded': refunded, 'pointsClawedBack': clawed_back}


def update_order_status(
    session: Session,
    order_id: int,
    status,
    admin_user_id: Optional[int] = None,
    note: Optional[str] = None,
    settings: Optional[loyalty_service.LoyaltySettings] = None,
    now: Optional[datetime] = None
) -> Tuple[Order, Optional[Dict[str, Any]]]:
    """
    Move an order to its next status (or cancel it).

    Returns (order, compensation) where compensation is None unless the
    order was cancelled.

    Raises:
        InvalidInputError: unknown status
        NotFoundError: no such order
        InvalidTransitionError: status change not allowed
    """
    settings = settings or loyalty_service.get_settings()
    new_status = parse_status(status)
    order = get_order(session, order_id)

    observed_status = order.status
    if new_status not in ALLOWED_TRANSITIONS[observed_status]:
        raise InvalidTransitionError(observed_status.value, new_status.value)

    try:
        # Only the request that still sees observed_status may move the order
        moved = session.query(Order).filter(
            Order.id == order.id,
            Order.status == observed_status
        ).update({Order.status: new_status}, synchronize_session=False)
        if moved == 0:
            session.rollback()
            raise InvalidTransitionError(order.status.value, new_status.value)

        session.add(OrderStatusEvent(
            order_id=order.id,
            status=new_status,
            changed_at=now or datetime.now(),
            changed_by_admin_id=admin_user_id,
            note=note,
        ))
        session.commit()
    except InvalidTransitionError:
        raise
    except Exception:
        session.rollback()
        raise

    logger.info(f"[CHECKOUT] Order {order.order_number} moved to {new_status.value}")

    compensation = None
    if new_status == OrderStatus.CANCELLED:
        compensation = _compensate_cancellation(session, order, settings)
    return order, compensation


# =====================================================
# RECONCILIATION
# =====================================================

def list_reconciliation_entries(session: Session, include_resolved: bool = False) -> List[ReconciliationEntry]:
    query = session.query(ReconciliationEntry)
    if not include_resolved:
        query = query.filter(ReconciliationEntry.resolved_at.is_(None))
    return query.order_by(ReconciliationEntry.id).all()


def resolve_reconciliation_entry(
    session: Session,
    entry_id: int,
    admin_user_id: Optional[int] = None,
    apply_adjustment: bool = False,
    settings: Optional[loyalty_service.LoyaltySettings] = None
) -> ReconciliationEntry:
    """
    Mark an entry resolved. With apply_adjustment the recorded point delta
    is applied to the account in the same transaction.
    """
    settings = settings or loyalty_service.get_settings()
    entry = session.query(ReconciliationEntry).filter(ReconciliationEntry.id == entry_id).first()
    if not entry:
        raise NotFoundError('Reconciliation entry not found')
    if entry.is_resolved:
        raise InvalidInputError('Reconciliation entry is already resolved')

    try:
        if apply_adjustment and entry.points_delta > 0:
            loyalty_service.refund_points(
                session, entry.customer_id, entry.points_delta,
                reason=f'Reconciliation for order {entry.order_number}',
                order_number=entry.order_number, settings=settings
            )
        elif apply_adjustment and entry.points_delta < 0:
            loyalty_service.claw_back_points(
                session, entry.customer_id, -entry.points_delta,
                reason=f'Reconciliation for order {entry.order_number}',
                order_number=entry.order_number, settings=settings
            )
        entry.resolved_at = datetime.now()
        entry.resolved_by_admin_id = admin_user_id
        session.commit()
    except Exception:
        session.rollback()
        raise

    loyalty_service.invalidate_loyalty_cache(entry.customer_id)
    logger.info(f"[RECONCILE] Entry {entry.id} for order {entry.order_number} resolved by admin {admin_user_id}")
    return entry


# =====================================================
# SERIALIZATION
# =====================================================

def _decode_address(raw):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        'id': order.id,
        'orderNumber': order.order_number,
        'customerId': order.customer_id,
        'status': order.status.value,
        'lines': [
            {
                'productId': line.product_id,
                'variantName': line.variant_name,
                'quantity': line.quantity,
                'unitPrice': money_float(line.unit_price),
                'lineTotal': money_float(line.line_total),
            }
            for line in order.lines
        ],
        'totals': {
            'subtotal': money_float(order.subtotal),
            'discountApplied': money_float(order.discount_amount),
            'pointsDiscount': money_float(order.points_discount),
            'taxes': money_float(order.taxes),
            'shippingFee': money_float(order.shipping_fee),
            'total': money_float(order.total_price),
        },
        'discountCode': order.discount_code,
        'pointsUsed': order.points_used,
        'pointsEarned': order.points_earned,
        'shippingAddress': _decode_address(order.shipping_address),
        'paymentReference': order.payment_reference,
        'statusHistory': [
            {
                'status': event.status.value,
                'changedAt': event.changed_at.isoformat() if event.changed_at else None,
                'changedByAdminId': event.changed_by_admin_id,
                'note': event.note,
            }
            for event in order.status_events
        ],
        'createdAt': order.created_at.isoformat() if order.created_at else None,
    }


def serialize_reconciliation_entry(entry: ReconciliationEntry) -> Dict[str, Any]:
    return {
        'id': entry.id,
        'customerId': entry.customer_id,
        'orderNumber': entry.order_number,
        'step': entry.step,
        'pointsDelta': entry.points_delta,
        'error': entry.error,
        'createdAt': entry.created_at.isoformat() if entry.created_at else None,
        'resolvedAt': entry.resolved_at.isoformat() if entry.resolved_at else None,
        'resolvedByAdminId': entry.resolved_by_admin_id,
    }
