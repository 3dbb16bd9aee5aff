"""
Pending points application and the per-request checkout context.

A pending application only drives the cart-review total. It expires after
PENDING_POINTS_TTL_MINUTES and is re-validated against the live balance at
checkout, so it never decides on its own how many points can be spent.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List

from sqlalchemy.orm import Session

from storefront.models import PendingPointsApplication, CartLine
from storefront.exceptions import (
    InvalidInputError, InsufficientPointsError, LoyaltyInactiveError, EmptyCartError
)
from storefront.services import loyalty_service
from storefront.services.cart_service import CartIdentity, get_lines
from storefront.utils.money import quantize_money

logger = logging.getLogger(__name__)


def get_active_application(
    session: Session,
    customer_id: int,
    now: Optional[datetime] = None
) -> Optional[PendingPointsApplication]:
    """The customer's unexpired application; expired ones are deleted."""
    application = session.query(PendingPointsApplication).filter(
        PendingPointsApplication.customer_id == customer_id
    ).first()
    if application is None:
        return None

    if application.is_expired(now or datetime.now()):
        session.delete(application)
        session.commit()
        logger.info(f"[LOYALTY] Expired points application discarded for customer {customer_id}")
        return None
    return application


def apply_points(
    session: Session,
    customer_id: int,
    points,
    settings: Optional[loyalty_service.LoyaltySettings] = None,
    ttl_minutes: int = 30,
    now: Optional[datetime] = None
) -> PendingPointsApplication:
    """
    Record the points the customer wants to spend on the current cart.

    Raises:
        LoyaltyInactiveError: program disabled
        InvalidInputError: points is not a positive integer
        InsufficientPointsError: points exceed the balance
        EmptyCartError: nothing in the cart
    """
    settings = settings or loyalty_service.get_settings()
    if not settings.is_active:
        raise LoyaltyInactiveError()

    if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
        raise InvalidInputError('pointsToApply must be a positive integer', errors={'pointsToApply': ['Invalid points']})

    account = loyalty_service.get_or_create_account(session, customer_id, settings)
    if points > account.points:
        session.rollback()
        raise InsufficientPointsError(points, account.points)

    if not get_lines(session, CartIdentity(customer_id=customer_id)):
        session.rollback()
        raise EmptyCartError()

    now = now or datetime.now()
    dollar_value = quantize_money(loyalty_service.points_value(points, settings))
    try:
        application = session.query(PendingPointsApplication).filter(
            PendingPointsApplication.customer_id == customer_id
        ).first()
        if application is None:
            application = PendingPointsApplication(customer_id=customer_id)
            session.add(application)
        application.points = points
        application.dollar_value = dollar_value
        application.created_at = now
        application.expires_at = now + timedelta(minutes=ttl_minutes)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[LOYALTY] Customer {customer_id} applied {points} points (${dollar_value}) to cart")
    return application


def cancel_application(session: Session, customer_id: int) -> bool:
    deleted = session.query(PendingPointsApplication).filter(
        PendingPointsApplication.customer_id == customer_id
    ).delete(synchronize_session=False)
    session.commit()
    return deleted > 0


@dataclass
class CheckoutContext:
    """Everything a checkout needs about the caller, gathered once per request."""
    identity: CartIdentity
    lines: List[CartLine] = field(default_factory=list)
    pending: Optional[PendingPointsApplication] = None
    discount_code: Optional[str] = None
    idempotency_key: Optional[str] = None

    @property
    def customer_id(self) -> Optional[int]:
        return self.identity.customer_id

    @property
    def is_guest(self) -> bool:
        return self.identity.is_guest


def load_checkout_context(
    session: Session,
    identity: CartIdentity,
    discount_code: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    now: Optional[datetime] = None
) -> CheckoutContext:
    pending = None
    if not identity.is_guest:
        pending = get_active_application(session, identity.customer_id, now)
    return CheckoutContext(
        identity=identity,
        lines=get_lines(session, identity),
        pending=pending,
        discount_code=discount_code or None,
        idempotency_key=idempotency_key or None,
    )
