"""
Module: dispatch_kernel.db.types
Responsibility: Annotated type aliases and utility functions for column types
    and document-amount rounding.  Centralizes precision so that every model,
    engine and service rounds money identically.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and the engines.  MUST NOT import from any of those.

Invariants enforced:
    - No floats anywhere.  All monetary amounts are Decimal.
    - round_money() is the ONLY sanctioned rounding function for document
      amounts (two decimals, ROUND_HALF_UP).
    - MONEY_TOLERANCE is the epsilon for the money-conservation check.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String

# Monetary amount stored with high precision
Money = Annotated[Decimal, Numeric(38, 9)]

# Base-unit stock quantity (never fractional)
Quantity = Annotated[int, BigInteger]

# Short identifier strings (codes, series, statuses)
ShortCode = Annotated[str, String(50)]

# Long text for reasons and messages
LongText = Annotated[str, String(4000)]


MONEY_DECIMAL_PLACES = 2
MONEY_TOLERANCE = Decimal("0.01")
DEFAULT_ROUNDING = ROUND_HALF_UP

_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)


def round_money(
    value: Decimal | int,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a money value to document precision (ROUND_HALF_UP by default)."""
    quantum = _QUANTUM if decimal_places == MONEY_DECIMAL_PLACES else Decimal(1).scaleb(-decimal_places)
    return Decimal(value).quantize(quantum, rounding=rounding)


def within_tolerance(a: Decimal, b: Decimal, tolerance: Decimal = MONEY_TOLERANCE) -> bool:
    """True if two money values differ by no more than the tolerance."""
    return abs(Decimal(a) - Decimal(b)) <= tolerance
