"""
Module: dispatch_engines.pricing
Responsibility:
    Tax split of document totals.  Catalog prices include IGV; the
    document shows the taxable subtotal and the IGV separately.
"""

from __future__ import annotations

from decimal import Decimal

from dispatch_kernel.db.types import round_money

DEFAULT_IGV_RATE = Decimal("0.18")


def split_igv(total: Decimal, igv_rate: Decimal = DEFAULT_IGV_RATE) -> tuple[Decimal, Decimal]:
    """
    subtotal = total / (1 + rate), igv = total - subtotal.

    Both are rounded to cents and always add back up to the total.
    """
    if igv_rate < 0:
        raise ValueError(f"IGV rate cannot be negative: {igv_rate}")
    subtotal = round_money(total / (Decimal("1") + igv_rate))
    return subtotal, round_money(total - subtotal)
