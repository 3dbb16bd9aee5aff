"""
Pricing service - composes the price breakdown of a cart or order.

The order of operations is fixed:
    1. subtotal        = sum(price * quantity)
    2. after_discounts = subtotal - discount - points discount, floored at 0
    3. taxes           = after_discounts * tax_rate
    4. total           = after_discounts + taxes + shipping_fee

Everything is computed with Decimal at full precision; rounding to cents
happens only in PriceBreakdown.to_dict().
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Dict, Any

from storefront.utils.money import quantize_money, money_float, floor_int

ZERO = Decimal('0')


@dataclass(frozen=True)
class PriceBreakdown:
    """Result of compose(), unrounded."""
    subtotal: Decimal
    discount_amount: Decimal
    points_discount: Decimal
    after_discounts: Decimal
    taxes: Decimal
    shipping_fee: Decimal
    total: Decimal

    def rounded(self) -> 'PriceBreakdown':
        """Copy with every amount rounded to cents."""
        return PriceBreakdown(
            subtotal=quantize_money(self.subtotal),
            discount_amount=quantize_money(self.discount_amount),
            points_discount=quantize_money(self.points_discount),
            after_discounts=quantize_money(self.after_discounts),
            taxes=quantize_money(self.taxes),
            shipping_fee=quantize_money(self.shipping_fee),
            total=quantize_money(self.total),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'subtotal': money_float(self.subtotal),
            'discountApplied': money_float(self.discount_amount),
            'pointsDiscount': money_float(self.points_discount),
            'afterDiscounts': money_float(self.after_discounts),
            'taxes': money_float(self.taxes),
            'shippingFee': money_float(self.shipping_fee),
            'total': money_float(self.total),
        }


def _line_amount(line) -> Decimal:
    """Accept CartLine/OrderLine objects or {'price', 'quantity'} dicts."""
    if isinstance(line, dict):
        price = line.get('price', line.get('unit_price'))
        quantity = line['quantity']
    else:
        price = line.unit_price
        quantity = line.quantity
    return Decimal(str(price)) * Decimal(quantity)


def calculate_subtotal(lines: Iterable) -> Decimal:
    """Sum of price * quantity over the lines."""
    subtotal = ZERO
    for line in lines:
        subtotal += _line_amount(line)
    return subtotal


def compose(
    lines: Iterable,
    discount_amount: Decimal = ZERO,
    points_discount_value: Decimal = ZERO,
    tax_rate: Decimal = ZERO,
    shipping_fee: Decimal = ZERO,
) -> PriceBreakdown:
    """
    Combine item lines, discounts, tax and shipping into a PriceBreakdown.

    If the promotional and points discounts together exceed the subtotal,
    the excess is void (never a credit).
    """
    discount_amount = Decimal(str(discount_amount or 0))
    points_discount_value = Decimal(str(points_discount_value or 0))
    tax_rate = Decimal(str(tax_rate or 0))
    shipping_fee = Decimal(str(shipping_fee or 0))

    if discount_amount < 0 or points_discount_value < 0:
        raise ValueError('Discounts cannot be negative')
    if tax_rate < 0 or shipping_fee < 0:
        raise ValueError('Tax rate and shipping fee cannot be negative')

    subtotal = calculate_subtotal(lines)
    after_discounts = max(subtotal - discount_amount - points_discount_value, ZERO)
    taxes = after_discounts * tax_rate
    total = after_discounts + taxes + shipping_fee

    return PriceBreakdown(
        subtotal=subtotal,
        discount_amount=discount_amount,
        points_discount=points_discount_value,
        after_discounts=after_discounts,
        taxes=taxes,
        shipping_fee=shipping_fee,
        total=total,
    )


def points_earning_basis(subtotal: Decimal, discount_amount: Decimal) -> Decimal:
    """
    Spend that earns loyalty points: net of the promotional discount, gross
    of the customer's own points redemption.
    """
    return max(Decimal(subtotal) - Decimal(discount_amount), ZERO)


def points_to_earn(breakdown: PriceBreakdown, points_per_dollar: Decimal) -> int:
    """floor((subtotal - discount_amount) * points_per_dollar)"""
    basis = points_earning_basis(breakdown.subtotal, breakdown.discount_amount)
    return floor_int(basis * Decimal(str(points_per_dollar)))
