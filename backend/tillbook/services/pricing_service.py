# Overview: Pure totals computation for carts, sale bills and return bills.

"""
All amounts are integer cents. The tax rate is given in basis points
(1800 = 18%). Tax is rounded half-up to the nearest cent, away from zero for
negative amounts, so a return of a line always mirrors the sale of that line.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    tax_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal_cents / 100,
            "tax": self.tax_cents / 100,
            "total": self.total_cents / 100,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


def rate_to_bps(rate) -> int:
    """Decimal("0.18") -> 1800."""
    bps = (Decimal(str(rate)) * 10000).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    if bps < 0:
        raise ValueError("tax rate cannot be negative")
    return int(bps)


def compute_tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    magnitude = (Decimal(abs(subtotal_cents)) * tax_rate_bps / 10000).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(magnitude) if subtotal_cents >= 0 else -int(magnitude)


def compute_totals(line_totals_cents: Iterable[int], tax_rate_bps: int) -> Totals:
    subtotal = sum(line_totals_cents)
    tax = compute_tax_cents(subtotal, tax_rate_bps)
    return Totals(subtotal_cents=subtotal, tax_cents=tax, total_cents=subtotal + tax)


def compute_return_totals(line_totals_cents: Iterable[int], tax_rate_bps: int) -> Totals:
    """Totals for a return bill: every component is <= 0 whatever the input signs."""
    subtotal = -abs(sum(abs(c) for c in line_totals_cents))
    tax = -abs(compute_tax_cents(subtotal, tax_rate_bps))
    return Totals(subtotal_cents=subtotal, tax_cents=tax, total_cents=subtotal + tax)


def tax_label(tax_rate_bps: int, name: str = "GST") -> str:
    """Receipt label derived from the same rate used to compute tax."""
    percent = Decimal(tax_rate_bps) / 100
    return f"{name} ({percent.normalize():f}%)"
