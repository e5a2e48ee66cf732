"""
Conversion between decimal amounts and integer minor units.

Every ledger amount is an int number of cents. Entered amounts must be
whole cents; only derived amounts (rate * quantity) are rounded. Decimals
exist only at the edges: request parsing on the way in, display on the way
out. All currencies this system bills in have two decimal places.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

MINOR_UNITS = 100
_CENT = Decimal("0.01")


def _as_decimal(amount: Decimal | int | str | float) -> Decimal:
    if isinstance(amount, Decimal):
        value = amount
    else:
        try:
            # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
            value = Decimal(str(amount))
        except InvalidOperation:
            raise ValueError(f"Not a monetary amount: {amount!r}")

    if not value.is_finite():
        raise ValueError(f"Not a monetary amount: {amount!r}")
    return value


def to_cents_exact(amount: Decimal | int | str | float) -> int:
    """
    Convert a decimal amount to cents without rounding.

    Raises:
        ValueError: If the amount has more precision than one cent
    """
    value = _as_decimal(amount) * MINOR_UNITS
    if value != value.to_integral_value():
        raise ValueError(f"Amount {amount} is more precise than one cent")
    return int(value)


def from_cents(cents: int) -> Decimal:
    """Cents as a two-place Decimal for display and JSON output."""
    return (Decimal(cents) / MINOR_UNITS).quantize(_CENT)


def line_amount_cents(rate_cents: int, quantity: Decimal) -> int:
    """Amount of a line item: rate times quantity, rounded to the cent."""
    value = Decimal(rate_cents) * _as_decimal(quantity)
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def average_cents(total_cents: int, count: int) -> int:
    """Mean of `count` amounts totalling `total_cents`, rounded half up. 0 when count is 0."""
    if count == 0:
        return 0
    value = Decimal(total_cents) / count
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def format_amount(cents: int, currency: str) -> str:
    """Human-readable amount, e.g. 'USD 1,250.00'."""
    return f"{currency} {from_cents(cents):,.2f}"
