"""
Cart service - persistent cart lines for customers and guests.

A cart belongs to exactly one identity: an authenticated customer id or a
guest session id. Each identity has at most one line per product variant;
adding the same variant again grows the existing line.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session

from storefront.models import CartLine
from storefront.exceptions import InvalidInputError, NotFoundError
from storefront.utils.money import to_decimal, money_float

logger = logging.getLogger(__name__)

DEFAULT_VARIANT = 'default'


@dataclass(frozen=True)
class CartIdentity:
    customer_id: Optional[int] = None
    session_id: Optional[str] = None

    @property
    def is_guest(self) -> bool:
        return self.customer_id is None

    def owner_filter(self):
        if self.customer_id is not None:
            return CartLine.customer_id == self.customer_id
        return CartLine.session_id == self.session_id


def resolve_identity(flask_session) -> CartIdentity:
    """
    Customer id from the signed session, else the guest session id
    (generated on first use).
    """
    customer_id = flask_session.get('user_id')
    if customer_id is not None:
        return CartIdentity(customer_id=int(customer_id))

    guest_id = flask_session.get('guest_session_id')
    if not guest_id:
        guest_id = uuid.uuid4().hex
        flask_session['guest_session_id'] = guest_id
    return CartIdentity(session_id=guest_id)


def _parse_quantity(value) -> int:
    if isinstance(value, bool):
        raise InvalidInputError('Quantity must be a positive integer', errors={'quantity': ['Invalid quantity']})
    if isinstance(value, int):
        quantity = value
    elif isinstance(value, str) and value.strip().isdigit():
        quantity = int(value.strip())
    else:
        raise InvalidInputError('Quantity must be a positive integer', errors={'quantity': ['Invalid quantity']})
    if quantity < 1:
        raise InvalidInputError('Quantity must be at least 1', errors={'quantity': ['Must be >= 1']})
    return quantity


def _parse_price(value) -> Decimal:
    try:
        price = to_decimal(value, 'price')
    except ValueError as e:
        raise InvalidInputError(str(e), errors={'price': [str(e)]})
    if price <= 0:
        raise InvalidInputError('Price must be greater than zero', errors={'price': ['Must be > 0']})
    return price


def get_lines(session: Session, identity: CartIdentity) -> List[CartLine]:
    return session.query(CartLine).filter(identity.owner_filter()).order_by(CartLine.id).all()


def _get_line(session: Session, identity: CartIdentity, line_id: int) -> CartLine:
    line = session.query(CartLine).filter(CartLine.id == line_id, identity.owner_filter()).first()
    if not line:
        raise NotFoundError('Cart item not found')
    return line


def add_item(
    session: Session,
    identity: CartIdentity,
    product_id: str,
    quantity,
    price,
    variant_name: Optional[str] = None
) -> CartLine:
    """
    Add a product variant to the cart, merging with an existing line.

    Raises:
        InvalidInputError: missing product id, bad quantity or price
    """
    if product_id is None or not str(product_id).strip():
        raise InvalidInputError('Product id is required', errors={'product_id': ['This field is required.']})
    product_id = str(product_id).strip()
    variant_name = (variant_name or DEFAULT_VARIANT).strip() or DEFAULT_VARIANT
    quantity = _parse_quantity(quantity)
    price = _parse_price(price)

    try:
        line = session.query(CartLine).filter(
            identity.owner_filter(),
            CartLine.product_id == product_id,
            CartLine.variant_name == variant_name
        ).first()

        if line:
            line.quantity = line.quantity + quantity
        else:
            line = CartLine(
                customer_id=identity.customer_id,
                session_id=identity.session_id if identity.is_guest else None,
                product_id=product_id,
                variant_name=variant_name,
                quantity=quantity,
                unit_price=price,
            )
            session.add(line)
        session.commit()
    except Exception:
        session.rollback()
        raise

    return line


def update_quantity(session: Session, identity: CartIdentity, line_id: int, quantity) -> CartLine:
    quantity = _parse_quantity(quantity)
    line = _get_line(session, identity, line_id)
    line.quantity = quantity
    session.commit()
    return line


def remove_item(session: Session, identity: CartIdentity, line_id: int) -> None:
    line = _get_line(session, identity, line_id)
    session.delete(line)
    session.commit()


def clear_cart(session: Session, identity: CartIdentity) -> int:
    """Delete every line of the cart. Caller commits."""
    return session.query(CartLine).filter(identity.owner_filter()).delete(synchronize_session=False)


def merge_guest_cart(session: Session, guest_session_id: str, customer_id: int) -> int:
    """
    Move a guest cart into the customer's cart after sign-in.

    Lines for a variant the customer already has are folded into the
    customer's line. Returns the number of guest lines merged.
    """
    if not guest_session_id:
        return 0

    guest = CartIdentity(session_id=guest_session_id)
    customer = CartIdentity(customer_id=customer_id)
    guest_lines = get_lines(session, guest)
    if not guest_lines:
        return 0

    existing = {(l.product_id, l.variant_name): l for l in get_lines(session, customer)}
    try:
        for line in guest_lines:
            target = existing.get((line.product_id, line.variant_name))
            if target:
                target.quantity = target.quantity + line.quantity
                session.delete(line)
            else:
                line.session_id = None
                line.customer_id = customer_id
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[CART] Merged {len(guest_lines)} guest lines into customer {customer_id}")
    return len(guest_lines)


def serialize_line(line: CartLine) -> Dict[str, Any]:
    return {
        'id': line.id,
        'productId': line.product_id,
        'variantName': line.variant_name,
        'quantity': line.quantity,
        'price': money_float(line.unit_price),
        'lineTotal': money_float(line.line_total),
    }
