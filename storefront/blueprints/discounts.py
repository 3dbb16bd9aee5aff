"""Discounts blueprint - public code validation."""
from flask import Blueprint, jsonify, request, g

from storefront.database import db_session
from storefront.services import discount_service

discounts_bp = Blueprint('discounts', __name__, url_prefix='/discounts')


@discounts_bp.route('/validate', methods=['POST'])
def validate():
    """
    Check a code against an order amount without using it.

    Body: {code, orderAmount, products?, userId?}
    """
    payload = request.get_json(silent=True) or {}
    customer_id = payload.get('userId', g.get('customer_id'))

    quote = discount_service.validate_discount(
        db_session,
        payload.get('code'),
        payload.get('orderAmount'),
        products=payload.get('products') or None,
        customer_id=customer_id,
    )
    return jsonify(dict(quote.to_dict(), status='success'))
