"""Fixed-point helpers shared by every monetary calculation."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    """Coerce loosely typed input into a Decimal without binary float drift."""

    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def quantize_cents(value: Decimal | int | float | str | None) -> Decimal:
    """Round to two decimal places, half-up."""

    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage_of(amount: Decimal, rate: Decimal) -> Decimal:
    """Return ``amount * rate / 100`` rounded to cents."""

    return quantize_cents(to_decimal(amount) * to_decimal(rate) / HUNDRED)


def to_cents(amount: Decimal) -> int:
    """Normalize decimal currency amounts to Stripe-compatible integer cents."""

    return int((quantize_cents(amount) * 100).to_integral_value())


def from_cents(amount: int | None) -> Decimal:
    """Convert Stripe integer cents into Decimal amounts."""

    return quantize_cents(Decimal(amount or 0) / HUNDRED)


__all__ = ["CENT", "HUNDRED", "ZERO", "from_cents", "percentage_of", "quantize_cents", "to_cents", "to_decimal"]
