"""
Loyalty service - point balances, transaction history and tiers.

Every balance change is a single conditional UPDATE on loyalty_account
followed by an appended PointsTransaction carrying the resulting balance,
so the balance always equals the sum of the history and never goes
negative. Ledger primitives flush but do not commit; the caller owns the
transaction.
"""
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from storefront.models import Customer, LoyaltyAccount, PointsTransaction
from storefront.exceptions import (
    InvalidInputError, InsufficientPointsError, LoyaltyInactiveError, NotFoundError
)
from storefront.utils.money import to_decimal, floor_int, money_float

logger = logging.getLogger(__name__)

CACHE_MODULE = 'loyalty'


@dataclass(frozen=True)
class Tier:
    name: str
    min_points: int
    discount_percentage: Decimal = Decimal('0')
    benefits: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'minPoints': self.min_points,
            'discountPercentage': float(self.discount_percentage),
            'benefits': list(self.benefits),
        }


@dataclass(frozen=True)
class LoyaltySettings:
    """Program settings, loaded once at startup and never written at runtime."""
    points_per_dollar: Decimal = Decimal('1')
    point_value: Decimal = Decimal('0.01')
    is_active: bool = True
    tiers: Tuple[Tier, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pointsPerDollar': float(self.points_per_dollar),
            'pointValue': float(self.point_value),
            'isActive': self.is_active,
            'tiers': [t.to_dict() for t in self.tiers],
        }


DEFAULT_TIERS = (
    Tier('Bronze', 0, Decimal('0'), ('Welcome Gift',)),
    Tier('Silver', 1000, Decimal('5'), ('5% Discount', 'Free Shipping')),
    Tier('Gold', 5000, Decimal('10'), ('10% Discount', 'Free Shipping', 'Priority Support')),
    Tier('Platinum', 10000, Decimal('15'), ('15% Discount', 'Free Shipping', 'Priority Support', 'Exclusive Offers')),
)

DEFAULT_SETTINGS = LoyaltySettings(tiers=DEFAULT_TIERS)


# =====================================================
# SETTINGS
# =====================================================

def _parse_tiers(raw) -> Tuple[Tier, ...]:
    if not raw:
        return DEFAULT_TIERS
    entries = json.loads(raw) if isinstance(raw, str) else raw
    tiers = []
    for entry in entries:
        tiers.append(Tier(
            name=str(entry['name']),
            min_points=int(entry.get('minPoints', entry.get('min_points', 0))),
            discount_percentage=Decimal(str(entry.get('discountPercentage', entry.get('discount_percentage', 0)))),
            benefits=tuple(entry.get('benefits', ())),
        ))
    if not tiers:
        raise ValueError('LOYALTY_TIERS must define at least one tier')
    return tuple(sorted(tiers, key=lambda t: t.min_points))


def load_settings(config) -> LoyaltySettings:
    """Build LoyaltySettings from a Flask config mapping."""
    points_per_dollar = to_decimal(config.get('LOYALTY_POINTS_PER_DOLLAR', '1'), 'LOYALTY_POINTS_PER_DOLLAR')
    point_value = to_decimal(config.get('LOYALTY_POINT_VALUE', '0.01'), 'LOYALTY_POINT_VALUE')
    if points_per_dollar < 0 or point_value < 0:
        raise ValueError('Loyalty rates cannot be negative')
    return LoyaltySettings(
        points_per_dollar=points_per_dollar,
        point_value=point_value,
        is_active=bool(config.get('LOYALTY_ACTIVE', True)),
        tiers=_parse_tiers(config.get('LOYALTY_TIERS')),
    )


def init_loyalty(app) -> LoyaltySettings:
    settings = load_settings(app.config)
    app.extensions['loyalty_settings'] = settings
    app.logger.info(
        f"[LOYALTY] Program {'active' if settings.is_active else 'inactive'}: "
        f"{settings.points_per_dollar} pt/$, {len(settings.tiers)} tiers"
    )
    return settings


def get_settings() -> LoyaltySettings:
    if has_app_context():
        return current_app.extensions.get('loyalty_settings', DEFAULT_SETTINGS)
    return DEFAULT_SETTINGS


# =====================================================
# TIERS
# =====================================================

def tier_for(balance: int, tiers=DEFAULT_TIERS) -> Tier:
    """Highest tier whose min_points <= balance; the lowest tier otherwise."""
    ordered = sorted(tiers, key=lambda t: t.min_points)
    current = ordered[0]
    for tier in ordered:
        if tier.min_points <= balance:
            current = tier
    return current


def next_tier(balance: int, tiers=DEFAULT_TIERS) -> Optional[Tier]:
    for tier in sorted(tiers, key=lambda t: t.min_points):
        if tier.min_points > balance:
            return tier
    return None


def points_value(points: int, settings: Optional[LoyaltySettings] = None) -> Decimal:
    """Dollar value of a number of points."""
    settings = settings or get_settings()
    return Decimal(int(points)) * settings.point_value


# =====================================================
# LEDGER
# =====================================================

def get_account(session: Session, customer_id: int) -> Optional[LoyaltyAccount]:
    return session.query(LoyaltyAccount).filter(LoyaltyAccount.customer_id == customer_id).first()


def get_or_create_account(
    session: Session,
    customer_id: int,
    settings: Optional[LoyaltySettings] = None
) -> LoyaltyAccount:
    """Return the customer's account, creating one with zero points in the base tier."""
    account = get_account(session, customer_id)
    if account:
        return account

    settings = settings or get_settings()
    account = LoyaltyAccount(
        customer_id=customer_id,
        points=0,
        total_spent=Decimal('0'),
        current_tier=tier_for(0, settings.tiers).name,
    )
    session.add(account)
    session.flush()
    logger.info(f"[LOYALTY] Created account for customer {customer_id}")
    return account


def _apply_delta(
    session: Session,
    account: LoyaltyAccount,
    delta: int,
    reason: str,
    order_number: Optional[str],
    settings: LoyaltySettings,
    spent: Decimal = Decimal('0')
) -> Optional[PointsTransaction]:
    """
    Move the balance by delta with one guarded UPDATE.

    Debits only match while points >= -delta, so the check happens against
    the row at write time. Returns None when the guard refused the debit.
    """
    values = {LoyaltyAccount.points: LoyaltyAccount.points + delta}
    if spent:
        values[LoyaltyAccount.total_spent] = LoyaltyAccount.total_spent + spent

    query = session.query(LoyaltyAccount).filter(LoyaltyAccount.id == account.id)
    if delta < 0:
        query = query.filter(LoyaltyAccount.points >= -delta)
    updated = query.update(values, synchronize_session=False)

    session.refresh(account)
    if updated == 0:
        return None

    account.current_tier = tier_for(account.points, settings.tiers).name
    transaction = PointsTransaction(
        account_id=account.id,
        customer_id=account.customer_id,
        points=delta,
        reason=reason,
        order_number=order_number,
        balance_after=account.points,
    )
    session.add(transaction)
    session.flush()
    return transaction


def earn_points(
    session: Session,
    customer_id: int,
    purchase_amount,
    order_number: Optional[str] = None,
    settings: Optional[LoyaltySettings] = None,
    reason: str = 'Purchase'
) -> Optional[PointsTransaction]:
    """
    Credit floor(purchase_amount * points_per_dollar) points.

    Returns the transaction, or None when nothing was earned (program
    inactive or zero points).
    """
    settings = settings or get_settings()
    purchase_amount = Decimal(str(purchase_amount))
    if purchase_amount < 0:
        raise InvalidInputError('purchase_amount cannot be negative')
    if not settings.is_active:
        return None

    points = floor_int(purchase_amount * settings.points_per_dollar)
    if points <= 0:
        return None

    account = get_or_create_account(session, customer_id, settings)
    transaction = _apply_delta(session, account, points, reason, order_number, settings, spent=purchase_amount)
    logger.info(f"[LOYALTY] Customer {customer_id} earned {points} points (balance {account.points})")
    return transaction


def redeem_points(
    session: Session,
    customer_id: int,
    points: int,
    reason: str = 'Redeemed at checkout',
    order_number: Optional[str] = None,
    settings: Optional[LoyaltySettings] = None
) -> PointsTransaction:
    """
    Debit points from the balance.

    Raises:
        InvalidInputError: points is not a positive integer
        InsufficientPointsError: balance is lower than points; unchanged
    """
    settings = settings or get_settings()
    if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
        raise InvalidInputError('Points to redeem must be a positive integer')

    account = get_or_create_account(session, customer_id, settings)
    transaction = _apply_delta(session, account, -points, reason, order_number, settings)
    if transaction is None:
        raise InsufficientPointsError(points, account.points)

    logger.info(f"[LOYALTY] Customer {customer_id} redeemed {points} points (balance {account.points})")
    return transaction


def refund_points(
    session: Session,
    customer_id: int,
    points: int,
    reason: str = 'Refund',
    order_number: Optional[str] = None,
    settings: Optional[LoyaltySettings] = None
) -> Optional[PointsTransaction]:
    """Credit previously redeemed points back."""
    if points <= 0:
        return None
    settings = settings or get_settings()
    account = get_or_create_account(session, customer_id, settings)
    transaction = _apply_delta(session, account, int(points), reason, order_number, settings)
    logger.info(f"[LOYALTY] Refunded {points} points to customer {customer_id}")
    return transaction


def claw_back_points(
    session: Session,
    customer_id: int,
    points: int,
    reason: str = 'Clawback',
    order_number: Optional[str] = None,
    settings: Optional[LoyaltySettings] = None,
    spent: Optional[Decimal] = None
) -> Optional[PointsTransaction]:
    """
    Debit previously earned points, floored at the current balance.

    spent is the purchase amount the points were earned on; it comes off
    total_spent (never below zero) even when no points are left to take.
    The transaction records the amount actually removed; None when the
    balance was already zero.
    """
    if points <= 0:
        return None
    settings = settings or get_settings()
    account = get_or_create_account(session, customer_id, settings)
    session.refresh(account)

    spent = min(Decimal(str(spent or 0)), account.total_spent or Decimal('0'))
    amount = min(int(points), account.points)
    if amount <= 0:
        if spent > 0:
            session.query(LoyaltyAccount).filter(LoyaltyAccount.id == account.id).update(
                {LoyaltyAccount.total_spent: LoyaltyAccount.total_spent - spent},
                synchronize_session=False
            )
            session.refresh(account)
        logger.info(f"[LOYALTY] Nothing to claw back from customer {customer_id} (balance 0)")
        return None

    transaction = _apply_delta(session, account, -amount, reason, order_number, settings, spent=-spent)
    if transaction is None:
        raise InsufficientPointsError(amount, account.points)

    if amount < points:
        logger.warning(
            f"[LOYALTY] Claw-back for customer {customer_id} floored: {amount} of {points} points removed"
        )
    return transaction


def credit_purchase(
    session: Session,
    customer_id: int,
    amount,
    order_number: Optional[str] = None,
    reason: Optional[str] = None,
    settings: Optional[LoyaltySettings] = None
) -> Optional[PointsTransaction]:
    """
    Credit points for a purchase made outside checkout (in store, phone
    orders). Returns None when the amount is too small to earn a point.

    Raises:
        LoyaltyInactiveError: program disabled
        NotFoundError: no such customer
        InvalidInputError: amount not positive
    """
    settings = settings or get_settings()
    if not settings.is_active:
        raise LoyaltyInactiveError()
    if session.get(Customer, customer_id) is None:
        raise NotFoundError(f'Customer {customer_id} not found')
    try:
        amount = to_decimal(amount, 'amount')
    except ValueError as e:
        raise InvalidInputError(str(e))
    if amount <= 0:
        raise InvalidInputError('amount must be positive')

    return earn_points(session, customer_id, amount, order_number, settings, reason=reason or 'Purchase')


def redeem_reward(
    session: Session,
    customer_id: int,
    points: int,
    reward_id: str,
    reward_name: Optional[str] = None,
    settings: Optional[LoyaltySettings] = None
) -> PointsTransaction:
    """
    Spend points on a reward.

    Raises:
        NotFoundError: the customer has no loyalty account
        InsufficientPointsError: balance lower than points; unchanged
    """
    if get_account(session, customer_id) is None:
        raise NotFoundError(f'No loyalty account for customer {customer_id}')
    reason = f'Reward {reward_name or reward_id}'[:120]
    transaction = redeem_points(session, customer_id, points, reason=reason, settings=settings)
    logger.info(f"[LOYALTY] Customer {customer_id} redeemed reward {reward_id} for {points} points")
    return transaction


# =====================================================
# READ MODELS
# =====================================================

def serialize_transaction(transaction: PointsTransaction) -> Dict[str, Any]:
    return {
        'id': transaction.id,
        'points': transaction.points,
        'reason': transaction.reason,
        'orderNumber': transaction.order_number,
        'balanceAfter': transaction.balance_after,
        'createdAt': transaction.created_at.isoformat() if transaction.created_at else None,
    }


def _build_summary(account: LoyaltyAccount, settings: LoyaltySettings) -> Dict[str, Any]:
    tier = tier_for(account.points, settings.tiers)
    upcoming = next_tier(account.points, settings.tiers)
    return {
        'customerId': account.customer_id,
        'points': account.points,
        'pointsValue': money_float(points_value(account.points, settings)),
        'totalSpent': money_float(account.total_spent),
        'tier': tier.to_dict(),
        'nextTier': dict(upcoming.to_dict(), pointsNeeded=upcoming.min_points - account.points) if upcoming else None,
        'programActive': settings.is_active,
    }


def _cache():
    if has_app_context():
        return current_app.extensions.get('cache')
    return None


def account_summary(
    session: Session,
    customer_id: int,
    settings: Optional[LoyaltySettings] = None
) -> Dict[str, Any]:
    """Points, value, spend and tier progress; cached per customer."""
    settings = settings or get_settings()

    def _load():
        account = get_or_create_account(session, customer_id, settings)
        session.commit()
        return _build_summary(account, settings)

    cache = _cache()
    if cache is None:
        return _load()
    ttl = current_app.config.get('CACHE_LOYALTY_TTL', 60)
    return cache.memoize(customer_id, CACHE_MODULE, 'summary', _load, ttl)


def invalidate_loyalty_cache(customer_id: int) -> None:
    cache = _cache()
    if cache is not None:
        cache.invalidate_module(customer_id, CACHE_MODULE)


def list_transactions(session: Session, customer_id: int, limit: int = 50, offset: int = 0) -> List[PointsTransaction]:
    return session.query(PointsTransaction).filter(
        PointsTransaction.customer_id == customer_id
    ).order_by(PointsTransaction.id.desc()).limit(limit).offset(offset).all()


def list_accounts(session: Session, limit: int = 100, offset: int = 0) -> List[LoyaltyAccount]:
    return session.query(LoyaltyAccount).order_by(
        LoyaltyAccount.points.desc(), LoyaltyAccount.id
    ).limit(limit).offset(offset).all()


def serialize_account(account: LoyaltyAccount, settings: Optional[LoyaltySettings] = None) -> Dict[str, Any]:
    return _build_summary(account, settings or get_settings())
