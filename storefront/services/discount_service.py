"""
Discount service - validation, redemption and administration of codes.

validate_discount() never writes. redeem_discount() is the only place the
usage counter moves: a single conditional UPDATE, so concurrent checkouts
cannot push usage_count past usage_limit. Neither commits; the checkout
transaction owns the commit. Administrative helpers commit their own work.
"""
import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, List, Dict, Any, Iterable

from sqlalchemy import or_
from sqlalchemy.orm import Session

from storefront.models import DiscountCode, DiscountType
from storefront.exceptions import (
    NotFoundError, InvalidInputError,
    DiscountExpiredError, DiscountNotYetActiveError, DiscountInactiveError,
    DiscountLimitReachedError, DiscountNotApplicableError, BelowMinimumError
)
from storefront.utils.money import to_decimal, money_float

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
_ALPHANUMERIC = re.compile(r'^[A-Za-z0-9]+$')
_BULK_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class DiscountQuote:
    """Outcome of a successful validation."""
    valid: bool
    code: str
    amount: Decimal
    discount_type: str
    discount_value: Decimal
    min_purchase_amount: Decimal
    max_discount_amount: Optional[Decimal]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'isValid': self.valid,
            'discountCode': self.code,
            'discountType': self.discount_type,
            'discountValue': float(self.discount_value),
            'discountAmount': money_float(self.amount),
            'minPurchaseAmount': float(self.min_purchase_amount),
            'maxDiscountAmount': float(self.max_discount_amount) if self.max_discount_amount is not None else None,
        }


def normalize_code(code: str) -> str:
    """Codes are compared case-insensitively and stored uppercase."""
    if code is None:
        return ''
    return str(code).strip().upper()


def find_discount(session: Session, code: str, include_retired: bool = False) -> Optional[DiscountCode]:
    query = session.query(DiscountCode).filter(DiscountCode.code == normalize_code(code))
    if not include_retired:
        query = query.filter(DiscountCode.retired_at.is_(None))
    return query.first()


def calculate_discount_amount(discount: DiscountCode, order_amount: Decimal) -> Decimal:
    """
    Raw discount for an order amount.

    Percentage: order_amount * value / 100. Fixed: value. Clamped to
    max_discount_amount when set, and always to [0, order_amount].
    """
    order_amount = Decimal(order_amount)
    value = Decimal(discount.discount_value)

    if discount.discount_type == DiscountType.PERCENTAGE:
        amount = order_amount * value / Decimal('100')
    else:
        amount = value

    if discount.max_discount_amount is not None and amount > discount.max_discount_amount:
        amount = Decimal(discount.max_discount_amount)

    return min(max(amount, ZERO), max(order_amount, ZERO))


def _product_ids(products: Optional[Iterable]) -> List[str]:
    ids = []
    for product in products or []:
        if isinstance(product, dict):
            pid = product.get('id', product.get('product_id'))
        else:
            pid = getattr(product, 'product_id', product)
        if pid is not None:
            ids.append(str(pid))
    return ids


def check_validity(discount: DiscountCode, now: datetime) -> None:
    """Raise the matching error if the code cannot be used right now."""
    if discount.start_date and now < discount.start_date:
        raise DiscountNotYetActiveError(discount.code)
    if discount.end_date and now > discount.end_date:
        raise DiscountExpiredError(discount.code)
    if not discount.is_active:
        raise DiscountInactiveError(discount.code)
    if discount.usage_limit is not None and discount.usage_count >= discount.usage_limit:
        raise DiscountLimitReachedError(discount.code)


def validate_discount(
    session: Session,
    code: str,
    order_amount,
    products: Optional[Iterable] = None,
    customer_id: Optional[int] = None,
    now: Optional[datetime] = None
) -> DiscountQuote:
    """
    Validate a code against an order amount and compute the discount.

    Raises:
        InvalidInputError: missing code or malformed amount
        NotFoundError: no such code (or retired)
        DiscountNotYetActiveError / DiscountExpiredError / DiscountInactiveError
        DiscountLimitReachedError: usage_count >= usage_limit
        BelowMinimumError: order_amount < min_purchase_amount
        DiscountNotApplicableError: customer/product restrictions not met
    """
    if not normalize_code(code):
        raise InvalidInputError('Discount code is required')
    try:
        order_amount = to_decimal(order_amount, 'orderAmount')
    except ValueError as e:
        raise InvalidInputError(str(e))
    if order_amount < 0:
        raise InvalidInputError('orderAmount cannot be negative')

    discount = find_discount(session, code)
    if not discount:
        raise NotFoundError('Discount code not found')

    check_validity(discount, now or datetime.now())

    min_purchase = Decimal(discount.min_purchase_amount or 0)
    if order_amount < min_purchase:
        raise BelowMinimumError(min_purchase)

    if customer_id is not None and discount.specific_customers:
        if str(customer_id) not in {str(c) for c in discount.specific_customers}:
            raise DiscountNotApplicableError('Discount code is not valid for this customer')

    product_ids = _product_ids(products)
    if product_ids and discount.specific_products:
        allowed = {str(p) for p in discount.specific_products}
        if not any(pid in allowed for pid in product_ids):
            raise DiscountNotApplicableError('Discount code is not valid for these products')

    return DiscountQuote(
        valid=True,
        code=discount.code,
        amount=calculate_discount_amount(discount, order_amount),
        discount_type=discount.discount_type.value,
        discount_value=Decimal(discount.discount_value),
        min_purchase_amount=min_purchase,
        max_discount_amount=discount.max_discount_amount,
    )


def redeem_discount(session: Session, code: str) -> DiscountCode:
    """
    Increment usage_count by one, only while it is below usage_limit.

    The guard lives in the UPDATE's WHERE clause, so two concurrent
    redemptions of the last use cannot both succeed. Caller commits.

    Raises:
        NotFoundError: no such code
        DiscountLimitReachedError: the limit was already reached
    """
    normalized = normalize_code(code)
    updated = session.query(DiscountCode).filter(
        DiscountCode.code == normalized,
        DiscountCode.retired_at.is_(None),
        or_(
            DiscountCode.usage_limit.is_(None),
            DiscountCode.usage_count < DiscountCode.usage_limit
        )
    ).update(
        {DiscountCode.usage_count: DiscountCode.usage_count + 1},
        synchronize_session=False
    )

    discount = session.query(DiscountCode).populate_existing().filter(
        DiscountCode.code == normalized
    ).first()

    if updated == 0:
        if not discount or discount.is_retired:
            raise NotFoundError('Discount code not found')
        logger.info(f"[DISCOUNT] Redemption refused for {normalized}: limit {discount.usage_limit} reached")
        raise DiscountLimitReachedError(normalized)

    logger.info(f"[DISCOUNT] Redeemed {normalized} ({discount.usage_count}/{discount.usage_limit or '∞'})")
    return discount


# =====================================================
# ADMINISTRATION
# =====================================================

def _parse_datetime(value, field: str) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00')).replace(tzinfo=None)
    except ValueError:
        raise InvalidInputError(f'{field} must be an ISO date', errors={field: ['Invalid date']})


def _parse_amount(value, field: str, allow_none: bool = False) -> Optional[Decimal]:
    if value is None or value == '':
        if allow_none:
            return None
        raise InvalidInputError(f'{field} is required', errors={field: ['This field is required.']})
    try:
        amount = to_decimal(value, field)
    except ValueError as e:
        raise InvalidInputError(str(e), errors={field: [str(e)]})
    if amount < 0:
        raise InvalidInputError(f'{field} cannot be negative', errors={field: ['Must be >= 0']})
    return amount


_TRUE_STRINGS = {'true', '1', 'yes', 'on'}
_FALSE_STRINGS = {'false', '0', 'no', 'off'}


def _parse_bool(value, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise InvalidInputError(f'{field} must be true or false', errors={field: ['Not a boolean']})


def _apply_fields(discount: DiscountCode, data: Dict[str, Any]) -> None:
    """Copy validated fields from data onto the model (partial updates allowed)."""
    if 'code' in data and data['code'] is not None:
        code = normalize_code(data['code'])
        if not code or not _ALPHANUMERIC.match(code):
            raise InvalidInputError('Code must be alphanumeric', errors={'code': ['Must be alphanumeric']})
        discount.code = code
    if 'description' in data:
        discount.description = data['description']
    if 'discount_type' in data and data['discount_type'] is not None:
        raw_type = data['discount_type']
        try:
            discount.discount_type = raw_type if isinstance(raw_type, DiscountType) else DiscountType(str(raw_type).lower())
        except ValueError:
            raise InvalidInputError(
                "discount_type must be 'percentage' or 'fixed'",
                errors={'discount_type': ['Invalid choice']}
            )
    if 'discount_value' in data and data['discount_value'] is not None:
        discount.discount_value = _parse_amount(data['discount_value'], 'discount_value')
    if 'min_purchase_amount' in data:
        discount.min_purchase_amount = _parse_amount(data['min_purchase_amount'], 'min_purchase_amount', True) or ZERO
    if 'max_discount_amount' in data:
        discount.max_discount_amount = _parse_amount(data['max_discount_amount'], 'max_discount_amount', True)
    if 'start_date' in data and data['start_date']:
        discount.start_date = _parse_datetime(data['start_date'], 'start_date')
    if 'end_date' in data:
        discount.end_date = _parse_datetime(data['end_date'], 'end_date')
    if 'is_active' in data and data['is_active'] is not None:
        discount.is_active = _parse_bool(data['is_active'], 'is_active')
    if 'usage_limit' in data:
        limit = data['usage_limit']
        if limit is not None and limit != '':
            limit = int(limit)
            if limit < 1:
                raise InvalidInputError('usage_limit must be at least 1', errors={'usage_limit': ['Must be >= 1']})
            if limit < (discount.usage_count or 0):
                raise InvalidInputError(
                    'usage_limit cannot be lower than the current usage count',
                    errors={'usage_limit': [f'Already used {discount.usage_count} times']}
                )
            discount.usage_limit = limit
        else:
            discount.usage_limit = None
    if 'specific_products' in data and data['specific_products'] is not None:
        discount.specific_products = [str(p) for p in data['specific_products']]
    if 'specific_customers' in data and data['specific_customers'] is not None:
        discount.specific_customers = [str(c) for c in data['specific_customers']]

    # Cross-field rules
    if discount.discount_type == DiscountType.PERCENTAGE and discount.discount_value > 100:
        raise InvalidInputError('Percentage cannot exceed 100', errors={'discount_value': ['Must be <= 100']})
    if discount.start_date and discount.end_date and discount.end_date <= discount.start_date:
        raise InvalidInputError('end_date must be after start_date', errors={'end_date': ['Must be after start_date']})


def create_discount(session: Session, data: Dict[str, Any]) -> DiscountCode:
    """Create a discount code from admin input and commit."""
    code = normalize_code(data.get('code'))
    if not code:
        raise InvalidInputError('Discount code is required', errors={'code': ['This field is required.']})
    if data.get('discount_value') in (None, ''):
        raise InvalidInputError('discount_value is required', errors={'discount_value': ['This field is required.']})

    if find_discount(session, code, include_retired=True):
        raise InvalidInputError('Discount code already exists', errors={'code': ['Already exists']})

    discount = DiscountCode(
        code=code,
        discount_type=DiscountType.PERCENTAGE,
        min_purchase_amount=ZERO,
        start_date=datetime.now(),
        is_active=True,
        usage_count=0,
        specific_products=[],
        specific_customers=[],
    )
    try:
        _apply_fields(discount, data)
        session.add(discount)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[DISCOUNT] Created {discount.code} ({discount.discount_type.value} {discount.discount_value})")
    return discount


def create_legacy_discount(
    session: Session,
    code: str,
    percentage,
    usage_limit: int,
    code_length: int = 5,
    max_usage_limit: int = 10
) -> DiscountCode:
    """
    Storefront admin shortcut: fixed-length alphanumeric code, percentage
    discount, small usage limit, no expiry.
    """
    raw_code = (code or '').strip()
    if len(raw_code) != code_length or not _ALPHANUMERIC.match(raw_code):
        raise InvalidInputError(
            f'Code must be a {code_length}-character alphanumeric string',
            errors={'code': [f'Exactly {code_length} letters or digits']}
        )
    if usage_limit is None or int(usage_limit) < 1 or int(usage_limit) > max_usage_limit:
        raise InvalidInputError(
            f'Usage limit must be between 1 and {max_usage_limit}',
            errors={'usageLimit': [f'Must be between 1 and {max_usage_limit}']}
        )
    value = _parse_amount(percentage, 'discount_percentage')
    if value <= 0 or value > 100:
        raise InvalidInputError(
            'Percentage must be greater than 0 and at most 100',
            errors={'discount_percentage': ['Must be in (0, 100]']}
        )
    return create_discount(session, {
        'code': raw_code,
        'description': f'Storefront code {raw_code.upper()}',
        'discount_type': DiscountType.PERCENTAGE,
        'discount_value': value,
        'usage_limit': int(usage_limit),
    })


def get_discount(session: Session, discount_id: int) -> DiscountCode:
    discount = session.query(DiscountCode).filter(DiscountCode.id == discount_id).first()
    if not discount:
        raise NotFoundError('Discount not found')
    return discount


def list_discounts(session: Session, include_retired: bool = False) -> List[DiscountCode]:
    query = session.query(DiscountCode)
    if not include_retired:
        query = query.filter(DiscountCode.retired_at.is_(None))
    return query.order_by(DiscountCode.created_at.desc(), DiscountCode.id.desc()).all()


def update_discount(session: Session, discount_id: int, data: Dict[str, Any]) -> DiscountCode:
    """Partial update. The usage counter is never writable from here."""
    discount = get_discount(session, discount_id)
    if discount.is_retired:
        raise InvalidInputError('Retired discount codes cannot be modified')

    data = {k: v for k, v in data.items() if k != 'usage_count'}
    if 'code' in data and data['code'] is not None:
        new_code = normalize_code(data['code'])
        if new_code != discount.code and find_discount(session, new_code, include_retired=True):
            raise InvalidInputError('Discount code already exists', errors={'code': ['Already exists']})

    try:
        _apply_fields(discount, data)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return discount


def retire_discount(session: Session, discount_id: int) -> DiscountCode:
    """Soft delete: keep the row for historical orders, make it unusable."""
    discount = get_discount(session, discount_id)
    if discount.is_retired:
        return discount
    discount.is_active = False
    discount.retired_at = datetime.now()
    session.commit()
    logger.info(f"[DISCOUNT] Retired {discount.code}")
    return discount


def generate_bulk_discounts(
    session: Session,
    prefix: str,
    count: int,
    discount_type: str = 'percentage',
    discount_value=10,
    min_purchase_amount=None,
    max_discount_amount=None,
    start_date=None,
    end_date=None,
    usage_limit: int = 1,
    description: Optional[str] = None,
    max_count: int = 100,
    default_days: int = 30,
    suffix_length: int = 6
) -> Dict[str, Any]:
    """
    Generate `count` codes of the form PREFIX + random suffix.

    Collisions are reported in 'errors' and do not abort the batch.
    """
    prefix = normalize_code(prefix)
    if not prefix or not _ALPHANUMERIC.match(prefix):
        raise InvalidInputError('Prefix is required and must be alphanumeric')
    try:
        count = int(count)
    except (TypeError, ValueError):
        raise InvalidInputError('count must be an integer')
    if count <= 0 or count > max_count:
        raise InvalidInputError(f'count must be between 1 and {max_count}')

    start = _parse_datetime(start_date, 'start_date') or datetime.now()
    end = _parse_datetime(end_date, 'end_date') or start + timedelta(days=default_days)

    generated, errors = [], []
    seen = set()
    try:
        for _ in range(count):
            code = prefix + ''.join(secrets.choice(_BULK_ALPHABET) for _ in range(suffix_length))
            if code in seen or find_discount(session, code, include_retired=True):
                errors.append({'code': code, 'error': 'Code already exists'})
                continue
            seen.add(code)

            discount = DiscountCode(
                code=code,
                description=description or f'Generated discount code {code}',
                discount_type=DiscountType.PERCENTAGE,
                min_purchase_amount=ZERO,
                start_date=start,
                is_active=True,
                usage_count=0,
                specific_products=[],
                specific_customers=[],
            )
            _apply_fields(discount, {
                'discount_type': discount_type or 'percentage',
                'discount_value': discount_value if discount_value is not None else 10,
                'min_purchase_amount': min_purchase_amount,
                'max_discount_amount': max_discount_amount,
                'end_date': end,
                'usage_limit': usage_limit or 1,
            })
            session.add(discount)
            generated.append(discount)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[DISCOUNT] Generated {len(generated)} codes with prefix {prefix} ({len(errors)} collisions)")
    return {'generated': generated, 'errors': errors}


def serialize_discount(discount: DiscountCode) -> Dict[str, Any]:
    """JSON representation for admin endpoints."""
    return {
        'id': discount.id,
        'code': discount.code,
        'description': discount.description,
        'discountType': discount.discount_type.value,
        'discountValue': float(discount.discount_value),
        'minPurchaseAmount': float(discount.min_purchase_amount or 0),
        'maxDiscountAmount': float(discount.max_discount_amount) if discount.max_discount_amount is not None else None,
        'startDate': discount.start_date.isoformat() if discount.start_date else None,
        'endDate': discount.end_date.isoformat() if discount.end_date else None,
        'isActive': discount.is_active,
        'usageLimit': discount.usage_limit,
        'usageCount': discount.usage_count,
        'remainingUses': discount.remaining_uses,
        'specificProducts': list(discount.specific_products or []),
        'specificCustomers': list(discount.specific_customers or []),
        'retiredAt': discount.retired_at.isoformat() if discount.retired_at else None,
    }
