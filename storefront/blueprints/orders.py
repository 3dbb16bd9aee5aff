"""Orders blueprint - the customer's order history."""
from flask import Blueprint, jsonify, g

from storefront.database import db_session
from storefront.decorators.auth import customer_required
from storefront.services import checkout_service

orders_bp = Blueprint('orders', __name__, url_prefix='/orders')


@orders_bp.route('', methods=['GET'])
@customer_required
def list_orders():
    orders = checkout_service.list_customer_orders(db_session, g.customer_id)
    return jsonify({'orders': [checkout_service.serialize_order(o) for o in orders]})


@orders_bp.route('/<int:order_id>', methods=['GET'])
@customer_required
def order_detail(order_id):
    order = checkout_service.get_order(db_session, order_id, customer_id=g.customer_id)
    return jsonify(checkout_service.serialize_order(order))
