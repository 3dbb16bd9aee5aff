"""
Unit tests for the price composer.
"""

import pytest
from decimal import Decimal

from storefront.services.pricing_service import (
    compose, calculate_subtotal, points_earning_basis, points_to_earn
)


def lines_for(subtotal):
    return [{'price': subtotal, 'quantity': 1}]


class TestCompose:
    """Tests for compose()."""

    def test_reference_breakdown(self):
        """subtotal 100, $10 off, $5 of points, 10% tax, $5 shipping."""
        breakdown = compose(
            lines_for('100'),
            discount_amount=Decimal('10'),
            points_discount_value=Decimal('5'),
            tax_rate=Decimal('0.1'),
            shipping_fee=Decimal('5'),
        )

        assert breakdown.subtotal == Decimal('100')
        assert breakdown.after_discounts == Decimal('85')
        assert breakdown.taxes == Decimal('8.5')
        assert breakdown.total == Decimal('98.5')

    def test_discount_exceeding_subtotal_is_void(self):
        breakdown = compose(
            lines_for('50'),
            discount_amount=Decimal('60'),
            tax_rate=Decimal('0.1'),
            shipping_fee=Decimal('5'),
        )

        assert breakdown.after_discounts == Decimal('0')
        assert breakdown.taxes == Decimal('0')
        assert breakdown.total == Decimal('5')

    def test_combined_discounts_floor_at_zero(self):
        breakdown = compose(
            lines_for('20'),
            discount_amount=Decimal('15'),
            points_discount_value=Decimal('10'),
            tax_rate=Decimal('0.1'),
            shipping_fee=Decimal('0'),
        )

        assert breakdown.after_discounts == Decimal('0')
        assert breakdown.total == Decimal('0')

    def test_subtotal_sums_price_times_quantity(self):
        lines = [
            {'price': '19.99', 'quantity': 3},
            {'unit_price': Decimal('0.01'), 'quantity': 7},
        ]
        assert calculate_subtotal(lines) == Decimal('60.04')

    def test_full_precision_until_presentation(self):
        """Rounding happens in to_dict(), not in the arithmetic."""
        breakdown = compose(
            [{'price': '10.005', 'quantity': 1}],
            tax_rate=Decimal('0.0825'),
        )

        assert breakdown.taxes == Decimal('10.005') * Decimal('0.0825')
        rendered = breakdown.to_dict()
        assert rendered['taxes'] == 0.83
        assert rendered['total'] == 10.83

    def test_to_dict_keys(self):
        rendered = compose(lines_for('10')).to_dict()
        assert set(rendered) == {
            'subtotal', 'discountApplied', 'pointsDiscount', 'afterDiscounts',
            'taxes', 'shippingFee', 'total'
        }

    def test_negative_discount_rejected(self):
        with pytest.raises(ValueError):
            compose(lines_for('10'), discount_amount=Decimal('-1'))

    def test_negative_tax_rate_rejected(self):
        with pytest.raises(ValueError):
            compose(lines_for('10'), tax_rate=Decimal('-0.1'))

    def test_empty_cart_is_shipping_only(self):
        breakdown = compose([], shipping_fee=Decimal('5'))
        assert breakdown.subtotal == Decimal('0')
        assert breakdown.total == Decimal('5')


class TestPointsBasis:
    """Tests for the points-earning basis."""

    def test_basis_ignores_points_redemption(self):
        with_points = compose(lines_for('100'), discount_amount=Decimal('10'), points_discount_value=Decimal('30'))
        without_points = compose(lines_for('100'), discount_amount=Decimal('10'))

        assert points_to_earn(with_points, Decimal('1')) == 90
        assert points_to_earn(without_points, Decimal('1')) == 90

    def test_points_are_floored(self):
        breakdown = compose(lines_for('99.99'))
        assert points_to_earn(breakdown, Decimal('1')) == 99
        assert points_to_earn(breakdown, Decimal('1.5')) == 149

    def test_basis_never_negative(self):
        assert points_earning_basis(Decimal('50'), Decimal('60')) == Decimal('0')
