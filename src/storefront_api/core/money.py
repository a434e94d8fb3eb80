"""Two-decimal money helpers shared by pricing, vouchers and the wallet."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(value: Decimal | int | float | str | None) -> Decimal:
    """Quantize ``value`` to cents, rounding half away from zero."""

    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Decimal]) -> Decimal:
    return round_money(sum(values, start=ZERO))


def format_money(value: Decimal) -> str:
    return f"${round_money(value):.2f}"


__all__ = ["CENT", "ZERO", "format_money", "round_money", "sum_money"]
