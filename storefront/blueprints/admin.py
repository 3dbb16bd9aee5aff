"""
Admin blueprint - discount codes, orders, loyalty accounts, reconciliation.

Every route requires an administrator session (admin_required). Changes
are recorded in the audit log.
"""
import logging

from flask import Blueprint, jsonify, request, current_app, g

from storefront.database import db_session
from storefront.decorators.auth import admin_required
from storefront.forms.admin_forms import (
    LegacyDiscountForm, DiscountForm, DiscountUpdateForm, BulkDiscountForm, OrderStatusForm,
    LoyaltyCreditForm, LoyaltyRedeemForm
)
from storefront.models import AuditAction, Customer, OrderStatus
from storefront.services import (
    audit_service, checkout_service, discount_service, email_service, loyalty_service
)

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/admin')

_DISCOUNT_FIELDS = (
    'code', 'description', 'discount_type', 'discount_value', 'min_purchase_amount',
    'max_discount_amount', 'start_date', 'end_date', 'usage_limit', 'is_active',
    'specific_products', 'specific_customers',
)


def _json() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _discount_data(payload: dict) -> dict:
    """Only the fields the client actually sent."""
    return {key: payload[key] for key in _DISCOUNT_FIELDS if key in payload}


def _pagination(default_limit=100):
    limit = min(request.args.get('limit', default_limit, type=int), 500)
    offset = request.args.get('offset', 0, type=int)
    return limit, offset


# =====================================================
# DISCOUNTS
# =====================================================

@admin_bp.route('/discount', methods=['POST'])
@admin_required
def create_storefront_discount():
    """Short-form creation: {code, discount_percentage, usageLimit}."""
    payload = _json()
    form = LegacyDiscountForm.from_json(payload).validate_or_raise()
    usage_limit = form.usageLimit.data
    if usage_limit is None:
        usage_limit = current_app.config.get('DISCOUNT_DEFAULT_USAGE_LIMIT', 10)

    discount = discount_service.create_legacy_discount(
        db_session,
        code=form.code.data,
        percentage=payload.get('discount_percentage'),
        usage_limit=usage_limit,
        code_length=current_app.config.get('DISCOUNT_CODE_LENGTH', 5),
        max_usage_limit=current_app.config.get('DISCOUNT_MAX_USAGE_LIMIT', 10),
    )
    audit_service.log_action(db_session, AuditAction.DISCOUNT_CREATED, 'discount', discount.id, {'code': discount.code})
    db_session.commit()

    return jsonify({
        'status': 'success',
        'message': 'Discount code created successfully',
        'discount': discount_service.serialize_discount(discount),
    }), 201


@admin_bp.route('/discounts', methods=['GET'])
@admin_required
def list_discounts():
    include_retired = request.args.get('include_retired', 'false').lower() == 'true'
    discounts = discount_service.list_discounts(db_session, include_retired=include_retired)
    return jsonify({'discounts': [discount_service.serialize_discount(d) for d in discounts]})


@admin_bp.route('/discounts', methods=['POST'])
@admin_required
def create_discount():
    payload = _json()
    DiscountForm.from_json(payload).validate_or_raise()

    discount = discount_service.create_discount(db_session, _discount_data(payload))
    audit_service.log_action(db_session, AuditAction.DISCOUNT_CREATED, 'discount', discount.id, {'code': discount.code})
    db_session.commit()

    return jsonify({'status': 'success', 'discount': discount_service.serialize_discount(discount)}), 201


@admin_bp.route('/discounts/<int:discount_id>', methods=['GET'])
@admin_required
def get_discount(discount_id):
    discount = discount_service.get_discount(db_session, discount_id)
    return jsonify(discount_service.serialize_discount(discount))


@admin_bp.route('/discounts/<int:discount_id>', methods=['PUT'])
@admin_required
def update_discount(discount_id):
    payload = _json()
    DiscountUpdateForm.from_json(payload).validate_or_raise()

    data = _discount_data(payload)
    discount = discount_service.update_discount(db_session, discount_id, data)
    audit_service.log_action(db_session, AuditAction.DISCOUNT_UPDATED, 'discount', discount.id, {'fields': sorted(data)})
    db_session.commit()

    return jsonify({'status': 'success', 'discount': discount_service.serialize_discount(discount)})


@admin_bp.route('/discounts/<int:discount_id>', methods=['DELETE'])
@admin_required
def retire_discount(discount_id):
    discount = discount_service.retire_discount(db_session, discount_id)
    audit_service.log_action(db_session, AuditAction.DISCOUNT_RETIRED, 'discount', discount.id, {'code': discount.code})
    db_session.commit()
    return jsonify({'status': 'success', 'message': 'Discount code retired'})


@admin_bp.route('/discounts/generate-bulk', methods=['POST'])
@admin_required
def generate_bulk():
    payload = _json()
    form = BulkDiscountForm.from_json(payload).validate_or_raise()

    result = discount_service.generate_bulk_discounts(
        db_session,
        prefix=form.prefix.data,
        count=form.count.data,
        discount_type=form.discount_type.data,
        discount_value=payload.get('discount_value'),
        min_purchase_amount=payload.get('min_purchase_amount'),
        max_discount_amount=payload.get('max_discount_amount'),
        start_date=payload.get('start_date'),
        end_date=payload.get('end_date'),
        usage_limit=form.usage_limit.data or 1,
        description=form.description.data,
        max_count=current_app.config.get('BULK_DISCOUNT_MAX_COUNT', 100),
        default_days=current_app.config.get('BULK_DISCOUNT_DEFAULT_DAYS', 30),
    )
    generated = result['generated']
    audit_service.log_action(
        db_session, AuditAction.DISCOUNTS_GENERATED, 'discount', None,
        {'prefix': form.prefix.data, 'count': len(generated)}
    )
    db_session.commit()

    return jsonify({
        'status': 'success',
        'generated': len(generated),
        'codes': [d.code for d in generated],
        'errors': result['errors'],
    }), 201


# =====================================================
# ORDERS
# =====================================================

@admin_bp.route('/orders', methods=['GET'])
@admin_required
def list_orders():
    status = request.args.get('status')
    limit, offset = _pagination()
    orders = checkout_service.list_orders(
        db_session,
        status=checkout_service.parse_status(status) if status else None,
        limit=limit,
        offset=offset,
    )
    return jsonify({'orders': [checkout_service.serialize_order(o) for o in orders]})


@admin_bp.route('/orders/<int:order_id>', methods=['GET'])
@admin_required
def order_detail(order_id):
    return jsonify(checkout_service.serialize_order(checkout_service.get_order(db_session, order_id)))


@admin_bp.route('/orders/<int:order_id>/status', methods=['PUT'])
@admin_required
def update_order_status(order_id):
    form = OrderStatusForm.from_json(_json()).validate_or_raise()

    order, compensation = checkout_service.update_order_status(
        db_session, order_id, form.status.data,
        admin_user_id=g.admin_user.id,
        note=form.note.data or None,
        settings=loyalty_service.get_settings(),
    )
    action = AuditAction.ORDER_CANCELLED if order.status == OrderStatus.CANCELLED else AuditAction.ORDER_STATUS_CHANGED
    audit_service.log_action(
        db_session, action, 'order', order.id,
        {'status': order.status.value, 'compensation': compensation}
    )
    db_session.commit()

    try:
        customer = db_session.query(Customer).filter_by(id=order.customer_id).first()
        if customer:
            email_service.notify_order_status(customer.email, order.order_number, order.status.value)
    except Exception as e:
        logger.error(f"[EMAIL] Could not queue status email for order {order.order_number}: {e}")

    response = {'status': 'success', 'order': checkout_service.serialize_order(order)}
    if compensation is not None:
        response['compensation'] = compensation
    return jsonify(response)


# =====================================================
# LOYALTY
# =====================================================

@admin_bp.route('/loyalty/accounts', methods=['GET'])
@admin_required
def loyalty_accounts():
    limit, offset = _pagination()
    settings = loyalty_service.get_settings()
    accounts = loyalty_service.list_accounts(db_session, limit=limit, offset=offset)
    return jsonify({'accounts': [loyalty_service.serialize_account(a, settings) for a in accounts]})


@admin_bp.route('/loyalty/settings', methods=['GET'])
@admin_required
def loyalty_settings():
    return jsonify(loyalty_service.get_settings().to_dict())


@admin_bp.route('/loyalty/accounts/<int:customer_id>/credit', methods=['POST'])
@admin_required
def credit_loyalty_points(customer_id):
    """Points for an in-store or phone purchase: {amount, orderNumber, reason}."""
    form = LoyaltyCreditForm.from_json(_json()).validate_or_raise()
    settings = loyalty_service.get_settings()

    transaction = loyalty_service.credit_purchase(
        db_session, customer_id, form.amount.data,
        order_number=form.orderNumber.data or None,
        reason=form.reason.data or None,
        settings=settings,
    )
    audit_service.log_action(
        db_session, AuditAction.LOYALTY_POINTS_CREDITED, 'loyalty_account', customer_id,
        {'amount': str(form.amount.data), 'points': transaction.points if transaction else 0}
    )
    db_session.commit()
    loyalty_service.invalidate_loyalty_cache(customer_id)

    account = loyalty_service.get_or_create_account(db_session, customer_id, settings)
    return jsonify({
        'status': 'success',
        'transaction': loyalty_service.serialize_transaction(transaction) if transaction else None,
        'account': loyalty_service.serialize_account(account, settings),
    })


@admin_bp.route('/loyalty/accounts/<int:customer_id>/redeem', methods=['POST'])
@admin_required
def redeem_loyalty_reward(customer_id):
    """Spend points on a reward: {points, rewardId, rewardName}."""
    form = LoyaltyRedeemForm.from_json(_json()).validate_or_raise()
    settings = loyalty_service.get_settings()

    transaction = loyalty_service.redeem_reward(
        db_session, customer_id, form.points.data, form.rewardId.data,
        reward_name=form.rewardName.data or None,
        settings=settings,
    )
    audit_service.log_action(
        db_session, AuditAction.LOYALTY_REWARD_REDEEMED, 'loyalty_account', customer_id,
        {'points': form.points.data, 'rewardId': form.rewardId.data}
    )
    db_session.commit()
    loyalty_service.invalidate_loyalty_cache(customer_id)

    account = loyalty_service.get_account(db_session, customer_id)
    return jsonify({
        'status': 'success',
        'transaction': loyalty_service.serialize_transaction(transaction),
        'account': loyalty_service.serialize_account(account, settings),
    })


@admin_bp.route('/reconciliation', methods=['GET'])
@admin_required
def reconciliation():
    include_resolved = request.args.get('include_resolved', 'false').lower() == 'true'
    entries = checkout_service.list_reconciliation_entries(db_session, include_resolved=include_resolved)
    return jsonify({'entries': [checkout_service.serialize_reconciliation_entry(e) for e in entries]})


@admin_bp.route('/reconciliation/<int:entry_id>/resolve', methods=['POST'])
@admin_required
def resolve_reconciliation(entry_id):
    payload = _json()
    entry = checkout_service.resolve_reconciliation_entry(
        db_session, entry_id,
        admin_user_id=g.admin_user.id,
        apply_adjustment=bool(payload.get('applyAdjustment', False)),
        settings=loyalty_service.get_settings(),
    )
    audit_service.log_action(
        db_session, AuditAction.RECONCILIATION_RESOLVED, 'reconciliation', entry.id,
        {'orderNumber': entry.order_number, 'applied': bool(payload.get('applyAdjustment', False))}
    )
    db_session.commit()
    return jsonify({'status': 'success', 'entry': checkout_service.serialize_reconciliation_entry(entry)})


@admin_bp.route('/audit', methods=['GET'])
@admin_required
def audit_log():
    limit, offset = _pagination()
    entries = audit_service.get_audit_logs(
        db_session,
        limit=limit,
        offset=offset,
        resource_type_filter=request.args.get('resource_type') or None,
    )
    return jsonify({'entries': [audit_service.serialize_audit_log(e) for e in entries]})
