from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

HUNDRED = Decimal("100")


def to_cents(value) -> int:
    """Round a Decimal amount of cents to a whole cent (half-up)."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def extend_cents(unit_cents: int, quantity) -> int:
    """unit price x quantity, rounded to the cent."""
    return to_cents(Decimal(unit_cents) * Decimal(quantity))


def percent_of(amount_cents: int, percent) -> int:
    """percent (0-100) of an amount in cents, rounded to the cent."""
    return to_cents(Decimal(amount_cents) * Decimal(percent) / HUNDRED)


def format_cents(cents: int | None) -> str:
    """
    Render cents as a decimal string: 1234 -> "12.34", -5 -> "-0.05".
    """
    if cents is None:
        return ""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"
