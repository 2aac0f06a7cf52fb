"""
Booking price composition and platform commission
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union

Number = Union[Decimal, int, str, float]

CENT = Decimal("0.01")


def to_decimal(value: Number) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # str() keeps 2.55 as 2.55 instead of its binary float expansion
    return Decimal(str(value))


def round_money(value: Number) -> Decimal:
    """Round to two decimal places, half up"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _require_non_negative(name: str, value: Decimal) -> Decimal:
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def urgent_fee_applies(is_urgent: bool, allow_urgent: bool) -> bool:
    """The urgent fee is only charged when the customer asks and the service allows it"""
    return bool(is_urgent) and bool(allow_urgent)


def calculate_total(
    base_price: Number,
    apply_urgent_fee: bool,
    urgent_fee: Number,
    addon_prices: Iterable[Number] = (),
) -> Decimal:
    """base + (urgent fee if applied) + sum of add-ons, rounded once at the end"""
    total = _require_non_negative("base_price", to_decimal(base_price))

    if apply_urgent_fee:
        total += _require_non_negative("urgent_fee", to_decimal(urgent_fee))

    for price in addon_prices:
        total += _require_non_negative("addon price", to_decimal(price))

    return round_money(total)


def calculate_commission(total_amount: Number, commission_rate: Number) -> Decimal:
    """Commission as a percentage of the booking total"""
    total = _require_non_negative("total_amount", to_decimal(total_amount))
    rate = _require_non_negative("commission_rate", to_decimal(commission_rate))
    return round_money(total * rate / Decimal(100))
