"""Cart blueprint - cart lines, discount and points selection, checkout."""
import logging

from flask import Blueprint, jsonify, request, session, current_app, g

from storefront.database import db_session
from storefront.decorators.auth import customer_required
from storefront.exceptions import InvalidInputError
from storefront.models import Customer
from storefront.services import cart_service, checkout_service, loyalty_service, email_service
from storefront.services.points_application_service import (
    apply_points, cancel_application, load_checkout_context
)
from storefront.utils.money import to_decimal

logger = logging.getLogger(__name__)

cart_bp = Blueprint('cart', __name__, url_prefix='/cart')


def _json() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _pricing():
    """(tax_rate, shipping_fee) from config."""
    cfg = current_app.config
    return to_decimal(cfg.get('TAX_RATE', '0'), 'TAX_RATE'), to_decimal(cfg.get('SHIPPING_FEE', '0'), 'SHIPPING_FEE')


def _summary(identity, discount_code=None, strict_discount=False) -> dict:
    tax_rate, shipping_fee = _pricing()
    context = load_checkout_context(db_session, identity, discount_code=discount_code)
    quote = checkout_service.quote_cart(
        db_session, context, loyalty_service.get_settings(),
        tax_rate=tax_rate, shipping_fee=shipping_fee, strict_discount=strict_discount
    )
    result = {
        'items': [cart_service.serialize_line(line) for line in context.lines],
        'itemCount': sum(line.quantity for line in context.lines),
        'discountCode': quote.discount.code if quote.discount else None,
    }
    result.update(quote.to_dict())
    return result


@cart_bp.route('/add', methods=['POST'])
def add():
    payload = _json()
    identity = cart_service.resolve_identity(session)
    line = cart_service.add_item(
        db_session, identity,
        product_id=payload.get('product_id', payload.get('productId')),
        quantity=payload.get('quantity', 1),
        price=payload.get('price'),
        variant_name=payload.get('variant_name', payload.get('variantName')),
    )
    return jsonify({
        'status': 'success',
        'item': cart_service.serialize_line(line),
        'cart': _summary(identity, session.get('discount_code')),
    }), 201


@cart_bp.route('/update/<int:line_id>', methods=['PUT'])
def update(line_id):
    payload = _json()
    identity = cart_service.resolve_identity(session)
    line = cart_service.update_quantity(db_session, identity, line_id, payload.get('quantity'))
    return jsonify({
        'status': 'success',
        'item': cart_service.serialize_line(line),
        'cart': _summary(identity, session.get('discount_code')),
    })


@cart_bp.route('/remove/<int:line_id>', methods=['DELETE'])
def remove(line_id):
    identity = cart_service.resolve_identity(session)
    cart_service.remove_item(db_session, identity, line_id)
    return jsonify({'status': 'success', 'cart': _summary(identity, session.get('discount_code'))})


@cart_bp.route('/summary', methods=['GET'])
def summary():
    identity = cart_service.resolve_identity(session)
    return jsonify(_summary(identity, session.get('discount_code')))


@cart_bp.route('/apply-discount', methods=['POST'])
def apply_discount():
    code = (_json().get('code') or '').strip()
    if not code:
        raise InvalidInputError('Discount code is required', errors={'code': ['This field is required.']})

    identity = cart_service.resolve_identity(session)
    result = _summary(identity, code, strict_discount=True)
    session['discount_code'] = result['discountCode']
    return jsonify(dict(result, status='success'))


@cart_bp.route('/apply-discount', methods=['DELETE'])
def remove_discount():
    session.pop('discount_code', None)
    identity = cart_service.resolve_identity(session)
    return jsonify(dict(_summary(identity), status='success'))


@cart_bp.route('/apply-points', methods=['POST'])
@customer_required
def apply_points_route():
    payload = _json()
    apply_points(
        db_session, g.customer_id,
        payload.get('pointsToApply'),
        settings=loyalty_service.get_settings(),
        ttl_minutes=current_app.config.get('PENDING_POINTS_TTL_MINUTES', 30),
    )
    loyalty_service.invalidate_loyalty_cache(g.customer_id)
    identity = cart_service.resolve_identity(session)
    return jsonify(dict(_summary(identity, session.get('discount_code')), status='success'))


@cart_bp.route('/apply-points', methods=['DELETE'])
@customer_required
def remove_points():
    cancel_application(db_session, g.customer_id)
    identity = cart_service.resolve_identity(session)
    return jsonify(dict(_summary(identity, session.get('discount_code')), status='success'))


@cart_bp.route('/points', methods=['GET'])
@customer_required
def points():
    summary_data = loyalty_service.account_summary(db_session, g.customer_id)
    return jsonify({
        'points': summary_data['points'],
        'pointsValue': summary_data['pointsValue'],
        'tier': summary_data['tier']['name'],
    })


@cart_bp.route('/checkout', methods=['POST'])
def checkout():
    payload = _json()
    identity = cart_service.resolve_identity(session)
    tax_rate, shipping_fee = _pricing()

    context = load_checkout_context(
        db_session, identity,
        discount_code=payload.get('discountCode') or session.get('discount_code'),
        idempotency_key=request.headers.get('Idempotency-Key'),
    )
    result = checkout_service.checkout(
        db_session, context,
        payment_details=payload.get('paymentDetails'),
        shipping_address=payload.get('shippingAddress'),
        settings=loyalty_service.get_settings(),
        tax_rate=tax_rate,
        shipping_fee=shipping_fee,
    )
    session.pop('discount_code', None)

    # Best effort: the order is already committed
    try:
        customer = db_session.query(Customer).filter_by(id=identity.customer_id).first()
        if customer:
            order = checkout_service.get_order(db_session, result['orderId'])
            email_service.notify_order_placed(customer.email, checkout_service.serialize_order(order))
    except Exception as e:
        logger.error(f"[EMAIL] Could not queue confirmation for order {result['orderNumber']}: {e}")

    return jsonify(dict(result, status='success')), 201


@cart_bp.route('/merge', methods=['POST'])
@customer_required
def merge():
    guest_session_id = session.pop('guest_session_id', None)
    merged = cart_service.merge_guest_cart(db_session, guest_session_id, g.customer_id)
    identity = cart_service.resolve_identity(session)
    return jsonify(dict(_summary(identity, session.get('discount_code')), status='success', merged=merged))
