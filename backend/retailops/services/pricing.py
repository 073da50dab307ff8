# Overview: Pure line-item and sale-total arithmetic (integer cents, no I/O).

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class LinePrice:
    total_price_cents: int
    profit_cents: int


@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    total_amount_cents: int


def price_line(quantity: int, unit_price_cents: int, cost_price_cents: int) -> LinePrice:
    """
    total = quantity * unit_price
    profit = (unit_price - cost_price) * quantity

    Callers reject negative quantity and unit price before calling; profit
    may legitimately be negative when selling below cost.
    """
    return LinePrice(
        total_price_cents=quantity * unit_price_cents,
        profit_cents=(unit_price_cents - cost_price_cents) * quantity,
    )


def sale_totals(
    line_totals: Iterable[int],
    discount_cents: int | None = 0,
    tax_cents: int | None = 0,
) -> SaleTotals:
    """
    subtotal = sum(line totals)
    total = subtotal - discount + tax

    Not clamped: a discount larger than subtotal + tax yields a negative
    total, which the caller surfaces.
    """
    subtotal = sum(line_totals)
    return SaleTotals(
        subtotal_cents=subtotal,
        total_amount_cents=subtotal - (discount_cents or 0) + (tax_cents or 0),
    )
