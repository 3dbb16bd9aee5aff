"""
Unit tests for the loyalty ledger and tiers.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from storefront.database import db_session
from storefront.exceptions import InsufficientPointsError, InvalidInputError, LoyaltyInactiveError, NotFoundError
from storefront.models import LoyaltyAccount, PointsTransaction
from storefront.services import loyalty_service
from storefront.services.loyalty_service import Tier, tier_for, next_tier

THREE_TIERS = (Tier('Bronze', 0), Tier('Silver', 1000), Tier('Gold', 5000))


def history_sum(session, customer_id):
    return sum(t.points for t in session.query(PointsTransaction).filter_by(customer_id=customer_id))


class TestTiers:
    """Tests for tier_for() and next_tier()."""

    @pytest.mark.parametrize('balance,expected', [
        (0, 'Bronze'), (999, 'Bronze'), (1000, 'Silver'), (4999, 'Silver'), (5000, 'Gold'), (90000, 'Gold'),
    ])
    def test_tier_for_balance(self, balance, expected):
        assert tier_for(balance, THREE_TIERS).name == expected

    def test_tier_order_does_not_matter(self):
        assert tier_for(1200, tuple(reversed(THREE_TIERS))).name == 'Silver'

    def test_below_every_threshold_falls_back_to_lowest(self):
        tiers = (Tier('Member', 100), Tier('Elite', 500))
        assert tier_for(10, tiers).name == 'Member'

    def test_next_tier(self):
        assert next_tier(1200, THREE_TIERS).name == 'Gold'
        assert next_tier(5000, THREE_TIERS) is None


class TestSettings:
    """Tests for load_settings()."""

    def test_defaults(self):
        settings = loyalty_service.load_settings({})
        assert settings.points_per_dollar == Decimal('1')
        assert settings.point_value == Decimal('0.01')
        assert settings.is_active is True
        assert [t.name for t in settings.tiers] == ['Bronze', 'Silver', 'Gold', 'Platinum']

    def test_tiers_from_json(self):
        settings = loyalty_service.load_settings({
            'LOYALTY_TIERS': '[{"name": "Gold", "minPoints": 500}, {"name": "Basic", "minPoints": 0}]'
        })
        assert [t.name for t in settings.tiers] == ['Basic', 'Gold']
        assert settings.tiers[1].min_points == 500

    def test_negative_rate_rejected(self):
        with pytest.raises(ValueError):
            loyalty_service.load_settings({'LOYALTY_POINTS_PER_DOLLAR': '-1'})

    def test_points_value(self, settings):
        assert loyalty_service.points_value(250, settings) == Decimal('2.50')


class TestLedger:
    """Tests for earning, redeeming, refunding and clawing back points."""

    def test_earn_floors_points(self, session, customer, settings):
        transaction = loyalty_service.earn_points(session, customer.id, Decimal('49.99'), 'ORD-1', settings)
        session.commit()

        assert transaction.points == 49
        assert transaction.balance_after == 49
        account = loyalty_service.get_account(session, customer.id)
        assert account.points == 49
        assert account.total_spent == Decimal('49.99')

    def test_earning_nothing_writes_nothing(self, session, customer, settings):
        assert loyalty_service.earn_points(session, customer.id, Decimal('0.50'), settings=settings) is None
        session.commit()
        assert history_sum(session, customer.id) == 0

    def test_inactive_program_earns_nothing(self, session, customer):
        inactive = loyalty_service.load_settings({'LOYALTY_ACTIVE': False})
        assert loyalty_service.earn_points(session, customer.id, Decimal('100'), settings=inactive) is None

    def test_redeem_updates_tier_downwards(self, session, customer):
        settings = loyalty_service.LoyaltySettings(tiers=THREE_TIERS)
        loyalty_service.earn_points(session, customer.id, Decimal('1200'), settings=settings)
        account = loyalty_service.get_account(session, customer.id)
        assert account.current_tier == 'Silver'

        loyalty_service.redeem_points(session, customer.id, 400, settings=settings)
        session.commit()

        assert account.points == 800
        assert account.current_tier == 'Bronze'

    def test_insufficient_points_leave_balance_unchanged(self, session, customer, settings):
        loyalty_service.earn_points(session, customer.id, Decimal('100'), settings=settings)
        session.commit()

        with pytest.raises(InsufficientPointsError) as exc:
            loyalty_service.redeem_points(session, customer.id, 101, settings=settings)
        session.rollback()

        assert exc.value.to_dict()['available'] == 100
        session.expire_all()
        assert loyalty_service.get_account(session, customer.id).points == 100

    @pytest.mark.parametrize('points', [0, -5, 1.5, True, '10'])
    def test_redeem_requires_positive_integer(self, session, customer, settings, points):
        with pytest.raises(InvalidInputError):
            loyalty_service.redeem_points(session, customer.id, points, settings=settings)

    def test_claw_back_is_floored_at_balance(self, session, customer, settings):
        loyalty_service.earn_points(session, customer.id, Decimal('100'), settings=settings)
        loyalty_service.redeem_points(session, customer.id, 70, settings=settings)

        transaction = loyalty_service.claw_back_points(session, customer.id, 100, settings=settings)
        session.commit()

        assert transaction.points == -30
        assert loyalty_service.get_account(session, customer.id).points == 0

    def test_claw_back_from_empty_account(self, session, customer, settings):
        assert loyalty_service.claw_back_points(session, customer.id, 50, settings=settings) is None

    def test_refund_credits_points(self, session, customer, settings):
        loyalty_service.earn_points(session, customer.id, Decimal('100'), settings=settings)
        loyalty_service.redeem_points(session, customer.id, 60, settings=settings)
        loyalty_service.refund_points(session, customer.id, 60, settings=settings)
        session.commit()

        assert loyalty_service.get_account(session, customer.id).points == 100

    def test_balance_equals_sum_of_history(self, session, customer, settings):
        loyalty_service.earn_points(session, customer.id, Decimal('250'), settings=settings)
        loyalty_service.redeem_points(session, customer.id, 80, settings=settings)
        loyalty_service.earn_points(session, customer.id, Decimal('19.99'), settings=settings)
        loyalty_service.refund_points(session, customer.id, 30, settings=settings)
        loyalty_service.claw_back_points(session, customer.id, 500, settings=settings)
        loyalty_service.earn_points(session, customer.id, Decimal('12'), settings=settings)
        session.commit()
        session.expire_all()

        account = session.query(LoyaltyAccount).filter_by(customer_id=customer.id).one()
        assert account.points == history_sum(session, customer.id) == 12
        assert account.points >= 0

    def test_claw_back_removes_the_spend(self, session, customer, settings):
        loyalty_service.earn_points(session, customer.id, Decimal('250'), 'ORD-1', settings)
        loyalty_service.earn_points(session, customer.id, Decimal('90.50'), 'ORD-2', settings)

        loyalty_service.claw_back_points(session, customer.id, 90, 'Clawback', 'ORD-2', settings, spent=Decimal('90.50'))
        session.commit()

        account = loyalty_service.get_account(session, customer.id)
        assert account.points == 250
        assert account.total_spent == Decimal('250')

    def test_claw_back_of_spend_with_no_points_left(self, session, customer, settings):
        loyalty_service.earn_points(session, customer.id, Decimal('40'), settings=settings)
        loyalty_service.redeem_points(session, customer.id, 40, settings=settings)

        assert loyalty_service.claw_back_points(
            session, customer.id, 40, settings=settings, spent=Decimal('60')
        ) is None
        session.commit()

        account = loyalty_service.get_account(session, customer.id)
        assert account.points == 0
        assert account.total_spent == Decimal('0')

    def test_parallel_redemptions_cannot_overdraw(self, session, customer, settings):
        """Ten concurrent 300-point debits against 1000 points: exactly three win."""
        loyalty_service.earn_points(session, customer.id, Decimal('1000'), settings=settings)
        session.commit()
        customer_id = customer.id

        def attempt(_):
            try:
                loyalty_service.redeem_points(db_session, customer_id, 300, settings=settings)
                db_session.commit()
                return True
            except InsufficientPointsError:
                db_session.rollback()
                return False
            finally:
                db_session.remove()

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(10)))

        assert results.count(True) == 3
        session.expire_all()
        account = loyalty_service.get_account(session, customer.id)
        assert account.points == 100
        assert account.points == history_sum(session, customer.id)

    def test_account_summary(self, app, session, customer, settings):
        loyalty_service.earn_points(session, customer.id, Decimal('1200'), settings=settings)
        session.commit()

        summary = loyalty_service.account_summary(session, customer.id, settings)

        assert summary['points'] == 1200
        assert summary['pointsValue'] == 12.0
        assert summary['tier']['name'] == 'Silver'
        assert summary['nextTier']['name'] == 'Gold'
        assert summary['nextTier']['pointsNeeded'] == 3800


class TestManualAdjustments:
    """Tests for credit_purchase() and redeem_reward()."""

    def test_credit_purchase(self, session, customer, settings):
        transaction = loyalty_service.credit_purchase(session, customer.id, '80.40', 'POS-1', settings=settings)
        session.commit()

        assert transaction.points == 80
        assert transaction.reason == 'Purchase'
        assert loyalty_service.get_account(session, customer.id).total_spent == Decimal('80.40')

    def test_credit_while_program_inactive(self, session, customer):
        inactive = loyalty_service.load_settings({'LOYALTY_ACTIVE': False})
        with pytest.raises(LoyaltyInactiveError):
            loyalty_service.credit_purchase(session, customer.id, 50, settings=inactive)
        assert loyalty_service.get_account(session, customer.id) is None

    def test_credit_unknown_customer(self, session, settings):
        with pytest.raises(NotFoundError):
            loyalty_service.credit_purchase(session, 424242, 50, settings=settings)

    def test_redeem_reward_records_the_reward(self, session, customer, settings):
        loyalty_service.earn_points(session, customer.id, Decimal('400'), settings=settings)

        transaction = loyalty_service.redeem_reward(session, customer.id, 250, 'TOTE', 'Canvas tote', settings)
        session.commit()

        assert transaction.points == -250
        assert transaction.reason == 'Reward Canvas tote'
        assert loyalty_service.get_account(session, customer.id).points == 150

    def test_redeem_reward_needs_an_account(self, session, customer, settings):
        with pytest.raises(NotFoundError):
            loyalty_service.redeem_reward(session, customer.id, 10, 'TOTE', settings=settings)
