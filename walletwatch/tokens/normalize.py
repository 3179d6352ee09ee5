"""Raw integer balances -> human units, USD values and display strings.

All unit conversion uses ``decimal.Decimal`` with enough precision for a full
uint256 balance, so 18-decimal chains never pick up binary rounding drift.
Floats only appear for the final USD value handed to display aggregation.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, localcontext

MIN_DISPLAY_VALUE = Decimal("0.01")
USD_PLACES = 2

# uint256 has 78 digits; leave headroom for the price multiplication
_PRECISION = 100


@dataclass(frozen=True)
class NormalizedAmount:
    formatted_balance: str
    usd_value: float
    usd_value_formatted: str


ZERO_AMOUNT = NormalizedAmount(formatted_balance="0", usd_value=0.0, usd_value_formatted="0.00")


def _to_decimal(value) -> Decimal:
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal(0)


def is_zero_balance(raw_balance: str | int | None) -> bool:
    if raw_balance is None or str(raw_balance).strip() == "":
        return True
    return _to_decimal(raw_balance) == 0


def to_units(raw_balance: str | int, decimals: int) -> Decimal:
    """raw / 10**decimals, exact."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return _to_decimal(raw_balance).scaleb(-decimals)


def format_balance(raw_balance: str | int | None, decimals: int) -> str:
    """Fixed point at ``decimals`` places with trailing zeros and point stripped."""
    if is_zero_balance(raw_balance):
        return "0"
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        text = f"{to_units(raw_balance, decimals):.{decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_with_min_value(
    value: Decimal | float | str,
    min_value: Decimal = MIN_DISPLAY_VALUE,
    places: int = USD_PLACES,
) -> str:
    """Two-place string, or ``"< 0.01"`` for non-zero values below the minimum."""
    value = _to_decimal(value)
    if value != 0 and abs(value) < min_value:
        return f"< {min_value}"
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return f"{value:.{places}f}"


def normalize(
    raw_balance: str | int | None,
    decimals: int,
    unit_price: float | None,
    min_value: Decimal = MIN_DISPLAY_VALUE,
) -> NormalizedAmount:
    """Normalize one token balance.

    ``usd_value`` keeps the exact product even when the formatted string is
    ``"< 0.01"``; display code must check for the ``"<"`` prefix before
    parsing ``usd_value_formatted`` as a number.
    """
    if is_zero_balance(raw_balance):
        return ZERO_AMOUNT

    formatted = format_balance(raw_balance, decimals)
    if not unit_price:
        return NormalizedAmount(formatted_balance=formatted, usd_value=0.0, usd_value_formatted="0.00")

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        value = to_units(raw_balance, decimals) * _to_decimal(unit_price)

    return NormalizedAmount(
        formatted_balance=formatted,
        usd_value=float(value),
        usd_value_formatted=format_with_min_value(value, min_value),
    )


def is_positive_balance(raw_balance: str | int | None) -> bool:
    return not is_zero_balance(raw_balance) and _to_decimal(raw_balance) > 0
