"""Loyalty blueprint - the customer's account, history and program settings."""
from flask import Blueprint, jsonify, request, g

from storefront.database import db_session
from storefront.decorators.auth import customer_required
from storefront.services import loyalty_service

loyalty_bp = Blueprint('loyalty', __name__, url_prefix='/loyalty')


@loyalty_bp.route('/me', methods=['GET'])
@customer_required
def my_account():
    return jsonify(loyalty_service.account_summary(db_session, g.customer_id))


@loyalty_bp.route('/me/transactions', methods=['GET'])
@customer_required
def my_transactions():
    limit = min(request.args.get('limit', 50, type=int), 200)
    offset = request.args.get('offset', 0, type=int)
    transactions = loyalty_service.list_transactions(db_session, g.customer_id, limit=limit, offset=offset)
    return jsonify({'transactions': [loyalty_service.serialize_transaction(t) for t in transactions]})


@loyalty_bp.route('/settings', methods=['GET'])
def program_settings():
    return jsonify(loyalty_service.get_settings().to_dict())
