"""
Money helpers.

Amounts travel as Decimal at full precision; rounding to cents happens only
when a value is stored or rendered.
"""
from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP
from typing import Union

CENTS = Decimal('0.01')

Number = Union[int, float, Decimal, str]


def to_decimal(value: Number, field: str = 'amount') -> Decimal:
    """
    Convert a JSON/number value to Decimal without binary float artifacts.

    Raises:
        ValueError: if the value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f'{field} must be a number')
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError(f'{field} must be a number')
    if not result.is_finite():
        raise ValueError(f'{field} must be a finite number')
    return result


def quantize_money(value: Decimal) -> Decimal:
    """Round to cents, half-up."""
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def money_float(value) -> float:
    """Presentation value for JSON responses."""
    if value is None:
        return 0.0
    return float(quantize_money(Decimal(value)))


def floor_int(value: Decimal) -> int:
    """Floor a Decimal to an int (points are whole numbers)."""
    return int(Decimal(value).to_integral_value(rounding=ROUND_FLOOR))


def mask_payment_reference(reference: str) -> str:
    """
    Mask a payment reference, keeping only the last 4 characters.

    Examples:
        mask_payment_reference('4111 1111 1111 1234') -> '************1234'
        mask_payment_reference('abc') -> '***'
    """
    compact = ''.join(str(reference).split())
    if len(compact) <= 4:
        return '*' * len(compact)
    return '*' * (len(compact) - 4) + compact[-4:]
